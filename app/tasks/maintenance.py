"""
Periodic sweep that archives projects with no recent activity.

Runs daily via Celery Beat.
"""

import asyncio
import logging

from celery import shared_task

from app.cache.layer import CacheLayer
from app.core.config import get_settings
from app.database import dispose_engine, get_session_local
from app.events import project_events
from app.queues.project_queue import ProjectQueue
from app.repositories.project_repository import ProjectRepository

logger = logging.getLogger(__name__)


async def _archive_inactive_projects(days_inactive: int) -> dict:
    cache = CacheLayer()
    try:
        async with get_session_local()() as session:
            repo = ProjectRepository(session, cache, ProjectQueue(), project_events)
            archived = await repo.archive_inactive_projects(days_inactive)
        return {"archived": archived, "days_inactive": days_inactive}
    except Exception as exc:
        logger.error(f"Archive sweep failed: {exc}", exc_info=True)
        raise
    finally:
        await cache.close()
        await dispose_engine()


@shared_task(name="projects.archive_inactive")
def archive_inactive_projects(days_inactive: int | None = None) -> dict:
    """
    Celery task to archive ACTIVE projects not updated for `days_inactive`
    days (defaults to the archive_after_days setting).
    """
    days = days_inactive if days_inactive is not None else get_settings().archive_after_days
    return asyncio.run(_archive_inactive_projects(days))
