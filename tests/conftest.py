"""
Shared test fixtures.

Uses SQLite (aiosqlite) on a per-test temp file with tables created from the
SQLModel metadata, an in-memory Redis stand-in, and a recording queue in
place of the Celery broker.
"""

import asyncio
import os
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

os.environ.setdefault("SEND_EMAILS", "false")

from app.cache.layer import CacheLayer  # noqa: E402
from app.core.config import Settings  # noqa: E402
from app.core.errors import QueueUnavailable  # noqa: E402
from app.events import ProjectEvents  # noqa: E402
from app.models import Project, Task, TaskPriority, TaskStatus, User  # noqa: E402
from app.repositories.project_repository import ProjectRepository  # noqa: E402
from app.services.email_service import EmailService  # noqa: E402


# ---------------------------------------------------------------------------
# Redis stand-in
# ---------------------------------------------------------------------------


class FakeRedis:
    """The subset of redis.asyncio.Redis the app uses, backed by a dict."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False
        self.delay = 0.0

    async def _io(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def ping(self):
        await self._io()
        return True

    async def get(self, key):
        await self._io()
        value = self.store.get(key)
        if isinstance(value, bytes):
            # Same strict decoding as decode_responses=True
            return value.decode("utf-8")
        return value

    async def set(self, key, value, ex=None):
        await self._io()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        await self._io()
        return sum(self.store.pop(k, None) is not None for k in keys)

    async def incr(self, key):
        await self._io()
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def expire(self, key, seconds):
        await self._io()
        self.ttls[key] = seconds
        return True

    async def ttl(self, key):
        await self._io()
        if key not in self.store:
            return -2
        ttl = self.ttls.get(key)
        return -1 if ttl is None else ttl

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        return None


class FakePipeline:
    """Queues commands and runs them in order on execute()."""

    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.commands: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.commands.clear()

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self

        return queue

    async def execute(self):
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.commands.clear()
        return results


class FakeQueue:
    """Records enqueued jobs instead of publishing them."""

    def __init__(self):
        self.jobs: list[tuple[str, dict[str, Any]]] = []
        self.fail = False

    async def enqueue(self, job_type, payload):
        if self.fail:
            raise QueueUnavailable("broker unreachable")
        self.jobs.append((job_type, dict(payload)))
        return f"job-{len(self.jobs)}"


# ---------------------------------------------------------------------------
# Settings, cache, queue, events
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        l1_maxsize=0,
        cache_timeout_seconds=0.2,
        send_emails=False,
    )


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def cache(fake_redis, settings):
    return CacheLayer(redis=fake_redis, settings=settings)


@pytest.fixture()
def queue():
    return FakeQueue()


@pytest.fixture()
def recorded_events():
    events = ProjectEvents()
    seen: list[tuple[Any, Any]] = []

    def record(event, payload):
        seen.append((event, payload))

    from app.events import ProjectEvent

    for event in ProjectEvent:
        events.subscribe(event, record)
    events.seen = seen
    return events


@pytest.fixture()
def email_service():
    service = AsyncMock(spec=EmailService)
    service.send_project_welcome.return_value = True
    service.send_task_assignment.return_value = True
    return service


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def test_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def owner(session_factory):
    user = User(id="u1", email="owner@example.com", name="Olive Owner")
    async with session_factory() as session:
        session.add(user)
        await session.commit()
    return user


@pytest_asyncio.fixture()
async def other_user(session_factory):
    user = User(id="u2", email="other@example.com", name="Oscar Other")
    async with session_factory() as session:
        session.add(user)
        await session.commit()
    return user


@pytest.fixture()
def repo(db_session, cache, queue, recorded_events):
    return ProjectRepository(db_session, cache, queue, recorded_events)


@pytest.fixture()
def project_factory(session_factory):
    """Insert a project row directly, bypassing the repository."""

    async def _create(**overrides) -> Project:
        fields = {"name": "Seeded", "owner_id": "u1"}
        fields.update(overrides)
        project = Project(**fields)
        async with session_factory() as session:
            session.add(project)
            await session.commit()
        return project

    return _create


@pytest.fixture()
def task_factory(session_factory):
    async def _create(project_id: str, **overrides) -> Task:
        fields = {
            "title": "Task",
            "status": TaskStatus.PENDING,
            "priority": TaskPriority.MEDIUM,
            "project_id": project_id,
        }
        fields.update(overrides)
        task = Task(**fields)
        async with session_factory() as session:
            session.add(task)
            await session.commit()
        return task

    return _create
