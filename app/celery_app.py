import logging

from celery import Celery, signals
from celery.schedules import crontab

from app.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


@signals.worker_process_init.connect
def init_worker_process(**kwargs):
    """
    Reset the async engine after fork so each worker process builds its own
    connections instead of inheriting the parent's.
    """
    import app.database as database

    database._engine = None
    database._async_session = None
    logger.info("Worker process initialized, database engine reset")


@signals.setup_logging.connect
def setup_worker_logging(**kwargs):
    from app.core.logging import configure_logging

    configure_logging()


@signals.task_retry.connect
def log_task_retry(request=None, reason=None, **kwargs):
    logger.warning(
        f"Job retry scheduled: id={getattr(request, 'id', None)} "
        f"name={getattr(request, 'task', None)} reason={reason}"
    )


@signals.task_failure.connect
def log_task_failure(sender=None, task_id=None, exception=None, **kwargs):
    """Terminal job failure: retries are exhausted and nothing requeues it."""
    logger.error(
        f"Job failed: id={task_id} name={getattr(sender, 'name', sender)} "
        f"error={exception!r}"
    )


def _build_broker_url() -> str:
    return settings.celery_broker_url or settings.redis_dsn


def _build_result_backend() -> str:
    return settings.celery_result_backend or _build_broker_url()


celery_app = Celery(
    "project_management",
    broker=_build_broker_url(),
    backend=_build_result_backend(),
    include=["app.tasks.project_setup", "app.tasks.maintenance"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "archive-inactive-projects": {
            "task": "projects.archive_inactive",
            "schedule": crontab(hour=3, minute=0),  # Daily at 03:00 UTC
        },
    },
)


def get_celery_app() -> Celery:
    return celery_app
