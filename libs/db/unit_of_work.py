"""All-or-nothing units of work over an async session factory.

Usage:
    async def _apply(session: AsyncSession) -> Order:
        ...

    order = await run_in_transaction(session_factory, _apply)

The callable runs inside a single transaction. Nothing it writes is visible unless it
returns normally and the commit succeeds. On a write conflict the whole attempt is
discarded and the callable is run again from scratch with a fresh session; sub-writes are
never retried on their own.
"""

from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from libs.common.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Unique-key races, serialization failures / deadlocks, and optimistic version conflicts.
RETRYABLE_ERRORS = (IntegrityError, OperationalError, StaleDataError)

DEFAULT_MAX_ATTEMPTS = 3


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    label: str = "unit of work",
) -> T:
    """Run ``fn`` in one transaction, retrying the whole attempt on write conflicts."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        async with session_factory() as session:
            try:
                async with session.begin():
                    result = await fn(session)
                return result
            except RETRYABLE_ERRORS as exc:
                if attempt >= max_attempts:
                    logger.error(
                        "%s failed after %d attempts: %s", label, attempt, exc
                    )
                    raise
                logger.warning(
                    "%s conflicted on attempt %d/%d, retrying: %s",
                    label,
                    attempt,
                    max_attempts,
                    exc.__class__.__name__,
                )
        attempt += 1
