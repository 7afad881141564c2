from __future__ import annotations

import pytest

from shared.retry import RetryPolicy, async_retry


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    delays: list[float] = []

    async def record(delay):
        delays.append(delay)

    monkeypatch.setattr("shared.retry.asyncio.sleep", record)
    return delays


def test_delay_doubles_up_to_the_cap():
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0)
    assert [policy.delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]


async def test_succeeds_after_transient_failures(no_sleep):
    calls = []

    @async_retry(max_retries=3, base_delay=0.5)
    async def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3
    assert no_sleep == [0.5, 1.0]


async def test_other_exception_types_propagate_at_once():
    calls = []

    @async_retry(max_retries=3, exceptions=(ConnectionError,))
    async def broken() -> None:
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await broken()
    assert len(calls) == 1


async def test_retry_if_can_refuse():
    calls = []

    @async_retry(max_retries=3, retry_if=lambda exc: "temporary" in str(exc))
    async def permanent() -> None:
        calls.append(1)
        raise RuntimeError("permanent")

    with pytest.raises(RuntimeError):
        await permanent()
    assert len(calls) == 1
