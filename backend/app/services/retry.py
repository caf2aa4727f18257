from __future__ import annotations
import asyncio
import random
from typing import Awaitable, Callable, TypeVar
from sqlalchemy.exc import DBAPIError, OperationalError
import structlog

from app.config import settings

log = structlog.get_logger()

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}


def is_transient(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    if isinstance(exc, OperationalError) or exc.connection_invalidated:
        return True
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is None and orig is not None:
        code = getattr(orig.__cause__, "sqlstate", None)
    return code in _TRANSIENT_SQLSTATES


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float = 1.0,
    op: str = "db_op",
) -> T:
    """
    Run `fn` and retry transient database failures with exponential backoff.

    Non-transient errors (including every EngineError) propagate immediately;
    the last transient error propagates once attempts are used up.
    """
    attempts = attempts or settings.retry_attempts
    base_delay = settings.retry_base_delay_seconds if base_delay is None else base_delay
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except DBAPIError as e:
            if not is_transient(e) or attempt >= attempts:
                raise
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            delay += random.uniform(0, delay / 10) if delay else 0.0
            log.warning("transient_db_error_retry", op=op, attempt=attempt, delay=round(delay, 4), error=str(e.orig))
            await asyncio.sleep(delay)
    raise RuntimeError("unreachable")
