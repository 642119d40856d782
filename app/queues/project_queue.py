import asyncio
import logging
from typing import Any

from celery import Celery
from kombu.exceptions import OperationalError as BrokerError
from pydantic import BaseModel, ValidationError

from app.core.errors import QueueUnavailable, ValidationFailed
from app.models import ProjectSetupPayload

logger = logging.getLogger(__name__)

PROJECT_SETUP = "projectSetup"

# Registered job types and the payload each one accepts
JOB_PAYLOADS: dict[str, type[BaseModel]] = {
    PROJECT_SETUP: ProjectSetupPayload,
}


class ProjectQueue:
    """
    Durable dispatch of background jobs through Celery.

    Retry policy, backoff and acknowledgement mode are declared on the task
    itself (see app.tasks.project_setup); this class only validates and
    publishes.
    """

    def __init__(self, celery: Celery | None = None):
        self._celery = celery

    @property
    def celery(self) -> Celery:
        if self._celery is None:
            from app.celery_app import get_celery_app

            self._celery = get_celery_app()
        return self._celery

    async def enqueue(self, job_type: str, payload: dict[str, Any] | BaseModel) -> str:
        """
        Publish a job and return its id.

        Raises:
            ValueError: job_type has no registered handler
            ValidationFailed: payload does not match the job's schema
            QueueUnavailable: the broker rejected or could not take the job
        """
        schema = JOB_PAYLOADS.get(job_type)
        if schema is None:
            raise ValueError(f"Unknown job type: {job_type}")

        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        try:
            data = schema.model_validate(payload).model_dump(mode="json")
        except ValidationError as e:
            raise ValidationFailed.from_pydantic(e) from e

        try:
            result = await asyncio.to_thread(
                self.celery.send_task, job_type, kwargs=data
            )
        except (BrokerError, ConnectionError, OSError) as e:
            raise QueueUnavailable(f"Could not enqueue {job_type}: {e}") from e

        logger.info(f"Enqueued {job_type} job {result.id}")
        return result.id


project_queue = ProjectQueue()
