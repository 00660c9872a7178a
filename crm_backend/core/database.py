"""
Async engine & session management.

`get_db` is the FastAPI dependency every controller uses; it yields a
session per request and rolls back if the handler raises.

`store_errors` wraps raw SQLAlchemy and connection failures into the domain
`StoreError` so callers never see driver exceptions.
"""

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crm_backend.core.config import settings
from crm_backend.core.errors import StoreError

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Re-raise any SQLAlchemy or socket-level failure inside the block as `StoreError`."""
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Store failure during %s: %s", operation, exc)
        raise StoreError(f"{operation} failed") from exc
