"""
projectSetup job: provisions default tasks for a newly created project.

Delivery is at-least-once (late acks, requeue on worker loss). A failed
attempt is retried with exponential backoff (1s, 2s, 4s, ...) until
job_max_attempts is reached; the terminal failure is logged by the
task_failure signal in app.celery_app.
"""

import asyncio
import logging

from celery import shared_task

from app.cache.layer import CacheLayer
from app.core.config import get_settings
from app.database import dispose_engine, get_session_local
from app.models import ProjectSetupPayload
from app.queues.project_queue import PROJECT_SETUP
from app.services.email_service import EmailService
from app.services.provisioning import ProvisioningHandler

logger = logging.getLogger(__name__)

settings = get_settings()


async def _run_project_setup(payload: ProjectSetupPayload) -> dict:
    cache = CacheLayer()
    try:
        handler = ProvisioningHandler(get_session_local(), cache, EmailService())
        return await handler.handle(payload)
    finally:
        await cache.close()
        await dispose_engine()


@shared_task(
    name=PROJECT_SETUP,
    bind=True,
    autoretry_for=(Exception,),
    max_retries=settings.job_max_attempts - 1,
    retry_backoff=settings.job_backoff_seconds,
    retry_backoff_max=settings.job_backoff_max_seconds,
    retry_jitter=False,
    acks_late=True,
    reject_on_worker_lost=True,
)
def project_setup(self, project_id: str, owner_id: str) -> dict:
    """
    Celery entry point for the projectSetup job.

    Args:
        project_id: Project created by the API
        owner_id: The project's owner, assigned to the default tasks

    Returns:
        Dict with the project id and how many default tasks were created.
    """
    logger.info(
        f"Running {PROJECT_SETUP} for project {project_id} "
        f"(attempt {self.request.retries + 1}/{settings.job_max_attempts})"
    )
    payload = ProjectSetupPayload(project_id=project_id, owner_id=owner_id)
    return asyncio.run(_run_project_setup(payload))
