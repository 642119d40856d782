from fastapi import APIRouter, Query, Response, status

from app.core.errors import NotFound
from app.dependencies import CurrentUser, ProjectRepositoryDep, TaskServiceDep, ensure_owner
from app.models import TaskCreate, TaskPriority, TaskRead, TaskStatus, TaskUpdate

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


async def _owned_task(task_id: str, user, tasks, projects) -> TaskRead:
    task = await tasks.get_task(task_id)
    if not task:
        raise NotFound(f"Task with id {task_id} not found")
    ensure_owner(await projects.find_by_id(task.project_id), user)
    return task


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    user: CurrentUser,
    tasks: TaskServiceDep,
    projects: ProjectRepositoryDep,
):
    """Create a new task"""
    ensure_owner(await projects.find_by_id(task_data.project_id), user, "update")
    return await tasks.create_task(task_data)


@router.get("", response_model=list[TaskRead])
async def get_tasks(
    user: CurrentUser,
    tasks: TaskServiceDep,
    projects: ProjectRepositoryDep,
    project_id: str,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=100),
    task_status: TaskStatus | None = Query(default=None, alias="status"),
    priority: TaskPriority | None = None,
):
    ensure_owner(await projects.find_by_id(project_id), user)
    return await tasks.list_tasks(skip, limit, project_id, task_status, priority)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(
    task_id: str, user: CurrentUser, tasks: TaskServiceDep, projects: ProjectRepositoryDep
):
    """Get a specific task by ID"""
    return await _owned_task(task_id, user, tasks, projects)


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: str,
    task_data: TaskUpdate,
    user: CurrentUser,
    tasks: TaskServiceDep,
    projects: ProjectRepositoryDep,
):
    await _owned_task(task_id, user, tasks, projects)
    return await tasks.update_task(task_id, task_data)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str, user: CurrentUser, tasks: TaskServiceDep, projects: ProjectRepositoryDep
):
    """Delete a task"""
    await _owned_task(task_id, user, tasks, projects)
    await tasks.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{task_id}/complete", response_model=TaskRead)
async def mark_task_complete(
    task_id: str, user: CurrentUser, tasks: TaskServiceDep, projects: ProjectRepositoryDep
):
    """Mark a task as completed"""
    await _owned_task(task_id, user, tasks, projects)
    return await tasks.complete_task(task_id)
