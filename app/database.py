import asyncio
import functools
import logging
from contextlib import asynccontextmanager

from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from app.config import get_settings
from app.errors import PersistenceError

settings = get_settings()
logger = logging.getLogger(__name__)

def build_engine_url(raw_url: str):
    """
    Transforms the DATABASE_URL for asyncpg compatibility:
    - Replaces postgres:// with postgresql+asyncpg://
    - Strips ?sslmode=require from query params and passes it as connect_args instead
    """
    url = make_url(raw_url)
    if url.drivername in ("postgres", "postgresql"):
        url = url.set(drivername="postgresql+asyncpg")

    connect_args = {}
    if url.get_backend_name() in ("postgres", "postgresql"):
        sslmode = url.query.get("sslmode")
        url = url.difference_update_query(["sslmode"])
        if sslmode == "require":
            connect_args["ssl"] = "require"

    return url, connect_args

database_url, connect_args = build_engine_url(settings.DATABASE_URL)

engine = create_async_engine(database_url, echo=False, connect_args=connect_args)

AsyncSessionLocal = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

Base = declarative_base()

async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(session: AsyncSession):
    """Commit everything written inside the block together, or nothing."""
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise


def persistence_guard(func):
    """Bound a service coroutine by DB_TIMEOUT_SECONDS and surface store
    failures as a retryable PersistenceError."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await asyncio.wait_for(
                func(self, *args, **kwargs), timeout=get_settings().DB_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            logger.exception("Persistence timeout in %s", func.__qualname__)
            await _safe_rollback(self)
            raise PersistenceError("Storage operation timed out, please retry")
        except (OperationalError, DBAPIError):
            logger.exception("Persistence failure in %s", func.__qualname__)
            await _safe_rollback(self)
            raise PersistenceError()

    return wrapper


async def _safe_rollback(service):
    db = getattr(service, "db", None)
    if db is None:
        return
    try:
        await db.rollback()
    except (OperationalError, DBAPIError):
        logger.warning("Rollback after persistence failure also failed")
