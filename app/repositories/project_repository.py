"""
Project aggregate repository.

Owns the cache-aside protocol for projects and triggers post-create
provisioning:

- reads check the cache first and fall back to the store, populating the
  cache on the way out;
- writes go to the store first and then invalidate (never overwrite) the
  cached snapshot;
- after a successful insert the project is cached and a projectSetup job is
  enqueued. Side-effect failures are logged, never rolled back.

Store failures propagate as typed errors; cache failures are absorbed by the
cache layer.
"""

import logging
from datetime import timedelta
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.cache.layer import CacheLayer, project_key
from app.core.errors import (
    NotFound,
    QueueUnavailable,
    StoreUnavailable,
    ValidationFailed,
)
from app.database import store_errors
from app.events import ProjectEvent, ProjectEvents
from app.models import (
    Project,
    ProjectCreate,
    ProjectDetail,
    ProjectMetrics,
    ProjectRead,
    ProjectStatus,
    ProjectUpdate,
    Task,
    TaskRead,
    TaskStatus,
    get_utc_now,
)
from app.queues.project_queue import PROJECT_SETUP, ProjectQueue

logger = logging.getLogger(__name__)


def _validate(schema, data):
    if isinstance(data, schema):
        return data
    if hasattr(data, "model_dump"):
        data = data.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise ValidationFailed.from_pydantic(e) from e


class ProjectRepository:
    def __init__(
        self,
        db: AsyncSession,
        cache: CacheLayer,
        queue: ProjectQueue,
        events: ProjectEvents,
    ):
        self.db = db
        self.cache = cache
        self.queue = queue
        self.events = events

    def _detail_query(self):
        return select(Project).options(
            selectinload(Project.tasks), selectinload(Project.owner)
        )

    async def _load_detail(self, project_id: str) -> ProjectDetail | None:
        with store_errors("load project"):
            result = await self.db.exec(
                self._detail_query()
                .where(Project.id == project_id)
                .execution_options(populate_existing=True)
            )
            project = result.first()
        if project is None:
            return None
        return ProjectDetail.model_validate(project)

    async def _require(self, project_id: str) -> Project:
        with store_errors("get project"):
            project = await self.db.get(Project, project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found")
        return project

    async def create(self, data: ProjectCreate | dict[str, Any]) -> ProjectDetail:
        payload = _validate(ProjectCreate, data)

        project = Project(
            name=payload.name,
            description=payload.description,
            owner_id=payload.owner_id,
            status=ProjectStatus.ACTIVE,
        )
        with store_errors("create project"):
            self.db.add(project)
            try:
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        logger.info(f"Project created: {project.id}")

        # The row is durable from here on; nothing below rolls it back or raises.
        detail = await self._created_snapshot(project)
        self.events.publish(ProjectEvent.CREATED, detail)
        if detail.owner is not None:
            await self.cache.set(project_key(project.id), detail, local=False)

        try:
            await self.queue.enqueue(
                PROJECT_SETUP, {"project_id": project.id, "owner_id": project.owner_id}
            )
        except QueueUnavailable as e:
            logger.error(
                f"Provisioning enqueue failed for project {project.id}, "
                f"setup will not run: {e}"
            )

        return detail

    async def _created_snapshot(self, project: Project) -> ProjectDetail:
        """
        Reload the new project with its owner. If the store fails after the
        commit, fall back to the columns already in the session; such a
        snapshot has no owner and is not cached.
        """
        try:
            detail = await self._load_detail(project.id)
        except (StoreUnavailable, SQLAlchemyError) as e:
            logger.error(f"Reloading project {project.id} after create failed: {e}")
            detail = None
        if detail is None:
            detail = ProjectDetail.model_validate(
                ProjectRead.model_validate(project).model_dump()
            )
        return detail

    async def find_by_id(self, project_id: str) -> ProjectDetail:
        project = await self.cache.get(
            project_key(project_id),
            schema=ProjectDetail,
            loader=lambda: self._load_detail(project_id),
            local=False,
        )
        if project is None:
            raise NotFound(f"Project {project_id} not found")
        return project

    async def find_by_owner(self, owner_id: str) -> list[ProjectDetail]:
        with store_errors("list projects"):
            result = await self.db.exec(
                self._detail_query()
                .where(Project.owner_id == owner_id)
                .order_by(Project.created_at, Project.id)
            )
            projects = result.all()
        return [ProjectDetail.model_validate(p) for p in projects]

    async def update(
        self, project_id: str, fields: ProjectUpdate | dict[str, Any]
    ) -> ProjectDetail:
        changes = _validate(ProjectUpdate, fields).model_dump(exclude_unset=True)

        project = await self._require(project_id)
        if (
            project.status == ProjectStatus.ARCHIVED
            and changes.get("status") == ProjectStatus.ACTIVE
        ):
            raise ValidationFailed(
                "Archived projects cannot be re-activated",
                errors=[
                    {
                        "field": "status",
                        "message": "ARCHIVED -> ACTIVE is not supported",
                        "code": "validation.status_transition",
                    }
                ],
            )

        with store_errors("update project"):
            project.sqlmodel_update(changes)
            project.updated_at = get_utc_now()
            try:
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        await self.cache.delete(project_key(project_id))

        detail = await self._load_detail(project_id)
        self.events.publish(ProjectEvent.UPDATED, detail)
        return detail

    async def delete(self, project_id: str) -> None:
        await self._require(project_id)

        with store_errors("delete project"):
            try:
                await self.db.execute(delete(Task).where(Task.project_id == project_id))
                await self.db.execute(delete(Project).where(Project.id == project_id))
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        logger.info(f"Project deleted: {project_id}")

        await self.cache.delete(project_key(project_id))
        self.events.publish(ProjectEvent.DELETED, {"id": project_id})

    async def get_project_metrics(self, project_id: str) -> ProjectMetrics:
        await self._require(project_id)

        with store_errors("project metrics"):
            result = await self.db.exec(
                select(Task.status, func.count(Task.id))
                .where(Task.project_id == project_id)
                .group_by(Task.status)
            )
            counts = {status: count for status, count in result.all()}

        total_tasks = sum(counts.values())
        completed_tasks = counts.get(TaskStatus.COMPLETED, 0)
        progress = 0.0 if total_tasks == 0 else completed_tasks / total_tasks * 100

        return ProjectMetrics(
            total_tasks=total_tasks,
            completed_tasks=completed_tasks,
            pending_tasks=total_tasks - completed_tasks,
            progress_percentage=float(progress),
        )

    async def archive_inactive_projects(self, days_inactive_threshold: int) -> int:
        """Archive ACTIVE projects not updated for the given number of days."""
        now = get_utc_now()
        cutoff = now - timedelta(days=days_inactive_threshold)

        with store_errors("archive projects"):
            try:
                result = await self.db.exec(
                    select(Project.id).where(
                        Project.status == ProjectStatus.ACTIVE,
                        Project.updated_at < cutoff,
                    )
                )
                project_ids = list(result.all())
                if project_ids:
                    await self.db.execute(
                        update(Project)
                        .where(
                            Project.id.in_(project_ids),
                            Project.status == ProjectStatus.ACTIVE,
                        )
                        .values(status=ProjectStatus.ARCHIVED, updated_at=now)
                    )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        if project_ids:
            await self.cache.delete(*(project_key(pid) for pid in project_ids))
        logger.info(
            f"Archived {len(project_ids)} projects inactive for {days_inactive_threshold} days"
        )
        return len(project_ids)

    async def get_project_timeline(self, project_id: str) -> list[TaskRead]:
        await self._require(project_id)

        with store_errors("project timeline"):
            result = await self.db.exec(
                select(Task)
                .where(Task.project_id == project_id)
                .order_by(Task.created_at, Task.id)
            )
            tasks = result.all()
        return [TaskRead.model_validate(t) for t in tasks]
