import logging
from contextlib import contextmanager

from dotenv import load_dotenv
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import get_settings
from app.core.errors import Conflict, StoreUnavailable

load_dotenv()

logger = logging.getLogger(__name__)

_engine = None
_async_session = None


def get_engine():
    """Get or create the async engine lazily (Celery workers rebuild it after fork)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            future=True,
            pool_pre_ping=True,
        )
        logger.info("Async database engine created")
    return _engine


def get_session_local():
    """Get or create the async session factory."""
    global _async_session
    if _async_session is None:
        _async_session = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
    return _async_session


# Dependency for getting DB session
async def get_db():
    async with get_session_local()() as session:
        yield session


async def dispose_engine():
    """Dispose of the engine and forget the session factory."""
    global _engine, _async_session
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session = None


@contextmanager
def store_errors(operation: str):
    """Translate SQLAlchemy failures into the application's store errors."""
    try:
        yield
    except IntegrityError as e:
        logger.warning(f"Constraint violation during {operation}: {e.orig}")
        raise Conflict("Unique constraint violation") from e
    except (OperationalError, InterfaceError) as e:
        logger.error(f"Store unavailable during {operation}: {e}")
        raise StoreUnavailable("Database unavailable") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            logger.error(f"Store connection lost during {operation}: {e}")
            raise StoreUnavailable("Database unavailable") from e
        raise
