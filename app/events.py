import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ProjectEvent(str, Enum):
    CREATED = "project:created"
    UPDATED = "project:updated"
    DELETED = "project:deleted"


Listener = Callable[[ProjectEvent, Any], None]


class ProjectEvents:
    """
    In-process notification of project lifecycle changes.

    Listeners run synchronously, in subscription order, after the change has
    been committed. Nothing is persisted and a listener that raises is logged
    and skipped.
    """

    def __init__(self):
        self._listeners: dict[ProjectEvent, list[Listener]] = defaultdict(list)

    def subscribe(self, event: ProjectEvent, listener: Listener) -> None:
        self._listeners[ProjectEvent(event)].append(listener)

    def unsubscribe(self, event: ProjectEvent, listener: Listener) -> None:
        listeners = self._listeners[ProjectEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    def publish(self, event: ProjectEvent, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(event, payload)
            except Exception:
                logger.exception(
                    f"Listener {getattr(listener, '__name__', listener)!r} failed for {event.value}"
                )


def audit_log_listener(event: ProjectEvent, payload: Any) -> None:
    project_id = payload.get("id") if isinstance(payload, dict) else getattr(payload, "id", None)
    logger.info(f"{event.value} id={project_id}")


def build_project_events() -> ProjectEvents:
    events = ProjectEvents()
    for event in ProjectEvent:
        events.subscribe(event, audit_log_listener)
    return events


project_events = build_project_events()
