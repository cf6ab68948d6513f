import asyncio

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from infrastructure.resilience import is_transient_error, retry_transient
from tests.fakes import NoSleep


class FakePgError(Exception):
    def __init__(self, sqlstate):
        super().__init__("server closed")
        self.sqlstate = sqlstate


def test_connection_errors_are_transient():
    assert is_transient_error(ConnectionResetError())
    assert is_transient_error(ConnectionRefusedError())
    assert is_transient_error(asyncio.TimeoutError())
    assert is_transient_error(httpx.ConnectTimeout("slow"))
    assert is_transient_error(RuntimeError("Connection terminated unexpectedly"))
    assert is_transient_error(FakePgError("57P01"))


def test_wrapped_errors_are_unwrapped():
    wrapped = OperationalError("SELECT 1", {}, FakePgError("08006"))
    assert is_transient_error(wrapped)

    try:
        try:
            raise ConnectionResetError("reset by peer")
        except ConnectionResetError as exc:
            raise RuntimeError("query failed") from exc
    except RuntimeError as outer:
        assert is_transient_error(outer)


def test_other_errors_are_not_transient():
    assert not is_transient_error(None)
    assert not is_transient_error(ValueError("bad amount"))
    assert not is_transient_error(FakePgError("23505"))
    assert not is_transient_error(KeyError("id"))


@pytest.mark.asyncio
async def test_retry_transient_recovers():
    sleep = NoSleep()
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionResetError("ECONNRESET")
        return "ok"

    assert await retry_transient(flaky, attempts=3, initial_delay=1, sleep=sleep) == "ok"
    assert len(calls) == 3
    assert sleep.delays == [1, 2]


@pytest.mark.asyncio
async def test_retry_transient_gives_up_with_original_error():
    sleep = NoSleep()

    async def down():
        raise ConnectionRefusedError("ECONNREFUSED")

    with pytest.raises(ConnectionRefusedError):
        await retry_transient(down, attempts=3, initial_delay=1, sleep=sleep)
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_retry_transient_does_not_retry_business_errors():
    sleep = NoSleep()
    calls = []

    async def invalid():
        calls.append(1)
        raise ValueError("bad state")

    with pytest.raises(ValueError):
        await retry_transient(invalid, attempts=3, initial_delay=1, sleep=sleep)
    assert len(calls) == 1
    assert sleep.delays == []
