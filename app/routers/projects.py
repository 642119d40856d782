from fastapi import APIRouter, Response, status

from app.dependencies import CurrentUser, ProjectRepositoryDep, ensure_owner
from app.models import ProjectBase, ProjectUpdate

router = APIRouter(prefix="/api/projects", tags=["projects"])


def envelope(data):
    return {"status": "success", "data": data}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectBase, user: CurrentUser, repo: ProjectRepositoryDep
):
    """Create a project owned by the caller and schedule its setup"""
    project = await repo.create({**project_data.model_dump(), "owner_id": user.id})
    return envelope(project)


@router.get("")
async def get_projects(user: CurrentUser, repo: ProjectRepositoryDep):
    return envelope(await repo.find_by_owner(user.id))


@router.get("/{project_id}")
async def get_project(project_id: str, user: CurrentUser, repo: ProjectRepositoryDep):
    project = await repo.find_by_id(project_id)
    ensure_owner(project, user)
    return envelope(project)


@router.put("/{project_id}")
async def update_project(
    project_id: str,
    project_data: ProjectUpdate,
    user: CurrentUser,
    repo: ProjectRepositoryDep,
):
    ensure_owner(await repo.find_by_id(project_id), user, "update")
    project = await repo.update(project_id, project_data)
    return envelope(project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: str, user: CurrentUser, repo: ProjectRepositoryDep):
    ensure_owner(await repo.find_by_id(project_id), user, "delete")
    await repo.delete(project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{project_id}/metrics")
async def get_project_metrics(
    project_id: str, user: CurrentUser, repo: ProjectRepositoryDep
):
    ensure_owner(await repo.find_by_id(project_id), user)
    return envelope(await repo.get_project_metrics(project_id))


@router.get("/{project_id}/timeline")
async def get_project_timeline(
    project_id: str, user: CurrentUser, repo: ProjectRepositoryDep
):
    ensure_owner(await repo.find_by_id(project_id), user)
    return envelope(await repo.get_project_timeline(project_id))
