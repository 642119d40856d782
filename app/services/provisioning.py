"""
Post-creation project provisioning.

Runs inside the projectSetup job. Delivery is at-least-once and two deliveries
of the same job may run at once, so a run first claims the project by setting
provisioned_at where it is still NULL. Only the run that wins the claim
inserts default tasks and sends the welcome email.
"""

import asyncio
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select

from app.cache.layer import CacheLayer, project_key
from app.core.errors import PreconditionFailed
from app.database import store_errors
from app.models import (
    Project,
    ProjectSetupPayload,
    Task,
    TaskPriority,
    TaskStatus,
    User,
    get_utc_now,
)
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)

DEFAULT_TASKS = (
    ("Project Setup", "Initial project setup and configuration"),
    ("Project Planning", "Create project timeline and milestones"),
)


class ProvisioningHandler:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        cache: CacheLayer,
        email_service: EmailService,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.email_service = email_service

    async def _load(self, model, key: str):
        async with self.session_factory() as session:
            return await session.get(model, key)

    async def handle(self, payload: ProjectSetupPayload) -> dict:
        """
        Create the default tasks for a new project and welcome its owner.

        Raises:
            PreconditionFailed: the project or the owner does not exist (yet)
        """
        with store_errors("projectSetup load"):
            project, owner = await asyncio.gather(
                self._load(Project, payload.project_id),
                self._load(User, payload.owner_id),
            )
        if project is None or owner is None:
            raise PreconditionFailed(
                f"Project {payload.project_id} or owner {payload.owner_id} not found"
            )

        claimed, created = await self._claim_and_create_tasks(payload)

        if claimed:
            await self.email_service.send_project_welcome(
                owner.email, project_name=project.name, owner_name=owner.name
            )
        else:
            logger.info(f"Project {payload.project_id} already provisioned, skipping")
        await self.cache.delete(project_key(payload.project_id))

        logger.info(
            f"Project setup completed for project {payload.project_id} "
            f"({created} default tasks created)"
        )
        return {"project_id": payload.project_id, "created_tasks": created}

    async def _claim_and_create_tasks(self, payload: ProjectSetupPayload) -> tuple[bool, int]:
        """
        Set provisioned_at and insert the missing default tasks in one
        transaction. The conditional UPDATE is the claim: of two concurrent
        deliveries only one sees a row change, the other blocks on the row
        and then matches nothing.
        """
        titles = [title for title, _ in DEFAULT_TASKS]
        async with self.session_factory() as session:
            with store_errors("projectSetup claim"):
                try:
                    result = await session.execute(
                        update(Project)
                        .where(
                            Project.id == payload.project_id,
                            Project.provisioned_at.is_(None),
                        )
                        .values(provisioned_at=get_utc_now())
                    )
                    if result.rowcount != 1:
                        await session.rollback()
                        return False, 0

                    rows = await session.exec(
                        select(Task.title).where(
                            Task.project_id == payload.project_id,
                            Task.title.in_(titles),
                        )
                    )
                    existing = set(rows.all())
                    missing = [
                        Task(
                            title=title,
                            description=description,
                            status=TaskStatus.PENDING,
                            priority=TaskPriority.HIGH,
                            project_id=payload.project_id,
                            assignee_id=payload.owner_id,
                        )
                        for title, description in DEFAULT_TASKS
                        if title not in existing
                    ]
                    session.add_all(missing)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        return True, len(missing)
