import logging

from app.core.config import get_settings


class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.getMessage().find("/health") == -1


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process or a Celery worker."""
    level = level or get_settings().log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())
