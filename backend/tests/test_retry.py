from __future__ import annotations
import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from app.errors import DuplicateVote
from app.services.retry import is_transient, with_retry


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _dbapi(sqlstate) -> DBAPIError:
    return DBAPIError("UPDATE submissions", {}, _PgError(sqlstate))


def test_transient_classification():
    assert is_transient(OperationalError("SELECT 1", {}, Exception("connection reset")))
    assert is_transient(_dbapi("40001"))
    assert is_transient(_dbapi("40P01"))
    assert not is_transient(_dbapi("23505"))
    assert not is_transient(IntegrityError("INSERT", {}, Exception("unique")))
    assert not is_transient(ValueError("nope"))


@pytest.mark.asyncio
async def test_retries_transient_then_succeeds():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise _dbapi("40001")
        return "ok"

    assert await with_retry(flaky, attempts=3, base_delay=0) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_gives_up_after_attempts():
    calls = []

    async def always():
        calls.append(1)
        raise _dbapi("40P01")

    with pytest.raises(DBAPIError):
        await with_retry(always, attempts=2, base_delay=0)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_engine_errors_are_not_retried():
    calls = []

    async def dup():
        calls.append(1)
        raise DuplicateVote()

    with pytest.raises(DuplicateVote):
        await with_retry(dup, attempts=3, base_delay=0)
    assert calls == [1]
