import logging

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.cache.decorators import async_cached, async_cached_expire
from app.cache.layer import CacheLayer, project_key, task_key
from app.core.errors import NotFound
from app.database import store_errors
from app.models import (
    Project,
    Task,
    TaskCreate,
    TaskPriority,
    TaskRead,
    TaskStatus,
    TaskUpdate,
    User,
    get_utc_now,
)
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)


class TaskService:
    def __init__(self, db: AsyncSession, cache: CacheLayer, email_service: EmailService):
        self.db = db
        self.cache = cache
        self.email_service = email_service

    @staticmethod
    def cache_keys(result) -> list[str]:
        # The parent project's snapshot embeds its tasks
        project_id = getattr(result, "project_id", None)
        return [project_key(project_id)] if project_id else []

    async def _get_or_404(self, task_id: str) -> Task:
        with store_errors("get task"):
            task = await self.db.get(Task, task_id)
        if not task:
            raise NotFound(f"Task with id {task_id} not found")
        return task

    async def _commit(self, operation: str):
        with store_errors(operation):
            try:
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

    @async_cached_expire(lambda task_data: [])
    async def create_task(self, task_data: TaskCreate) -> TaskRead:
        with store_errors("get project"):
            project = await self.db.get(Project, task_data.project_id)
        if project is None:
            raise NotFound(f"Project {task_data.project_id} not found")

        task = Task.model_validate(task_data)
        self.db.add(task)
        await self._commit("create task")

        if task.assignee_id:
            await self._notify_assignee(task, project)
        return TaskRead.model_validate(task)

    async def _notify_assignee(self, task: Task, project: Project):
        with store_errors("get assignee"):
            assignee = await self.db.get(User, task.assignee_id)
        if assignee is None:
            logger.warning(f"Task {task.id} assigned to unknown user {task.assignee_id}")
            return
        await self.email_service.send_task_assignment(
            assignee.email,
            task_title=task.title,
            project_name=project.name,
            assignee_name=assignee.name,
        )

    async def list_tasks(
        self,
        skip: int,
        limit: int,
        project_id: str | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
    ) -> list[TaskRead]:
        query = select(Task)
        if project_id is not None:
            query = query.where(Task.project_id == project_id)
        if status is not None:
            query = query.where(Task.status == status)
        if priority is not None:
            query = query.where(Task.priority == priority)
        query = query.offset(skip).limit(limit).order_by(Task.created_at.desc())

        with store_errors("list tasks"):
            result = await self.db.exec(query)
            tasks = result.all()
        return [TaskRead.model_validate(t) for t in tasks]

    @async_cached(lambda task_id, **kw: task_key(task_id), TaskRead)
    async def get_task(self, task_id: str):
        with store_errors("get task"):
            return await self.db.get(Task, task_id)

    @async_cached_expire(lambda task_id, *_, **__: task_key(task_id))
    async def update_task(self, task_id: str, task_data: TaskUpdate) -> TaskRead:
        task = await self._get_or_404(task_id)
        update_data = task_data.model_dump(exclude_unset=True)
        reassigned = (
            "assignee_id" in update_data
            and update_data["assignee_id"]
            and update_data["assignee_id"] != task.assignee_id
        )
        task.sqlmodel_update(update_data)
        task.updated_at = get_utc_now()
        await self._commit("update task")

        if reassigned:
            with store_errors("get project"):
                project = await self.db.get(Project, task.project_id)
            await self._notify_assignee(task, project)
        return TaskRead.model_validate(task)

    @async_cached_expire(lambda task_id, *_, **__: task_key(task_id))
    async def delete_task(self, task_id: str) -> TaskRead:
        task = await self._get_or_404(task_id)
        deleted = TaskRead.model_validate(task)
        with store_errors("delete task"):
            await self.db.delete(task)
        await self._commit("delete task")
        return deleted

    @async_cached_expire(lambda task_id, *_, **__: task_key(task_id))
    async def complete_task(self, task_id: str) -> TaskRead:
        task = await self._get_or_404(task_id)

        task.status = TaskStatus.COMPLETED
        task.updated_at = get_utc_now()

        await self._commit("complete task")
        return TaskRead.model_validate(task)
