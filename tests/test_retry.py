import asyncio
from unittest.mock import patch

import pytest

from services.retry import backoff_delay, retry_with_backoff, retry_with_backoff_async


def test_backoff_delay_is_capped():
    assert backoff_delay(0, 1.0, 10.0, jitter=False) == 1.0
    assert backoff_delay(3, 1.0, 10.0, jitter=False) == 8.0
    assert backoff_delay(10, 1.0, 10.0, jitter=False) == 10.0


def test_retry_succeeds_after_transient_failures():
    calls = []

    @retry_with_backoff(max_retries=3, base_delay=0, jitter=False)
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    with patch("services.retry.time.sleep") as sleep:
        assert flaky() == "ok"
    assert len(calls) == 3
    assert sleep.call_count == 2


def test_retry_gives_up_and_reraises():
    @retry_with_backoff(max_retries=1, base_delay=0)
    def always_down():
        raise TimeoutError("slow")

    with patch("services.retry.time.sleep"):
        with pytest.raises(TimeoutError):
            always_down()


def test_other_exceptions_are_not_retried():
    calls = []

    @retry_with_backoff(max_retries=3, base_delay=0)
    def broken():
        calls.append(1)
        raise KeyError("x")

    with pytest.raises(KeyError):
        broken()
    assert len(calls) == 1


def test_async_retry_calls_on_retry():
    seen = []

    @retry_with_backoff_async(max_retries=2, base_delay=0, on_retry=lambda e, n, d: seen.append(n))
    async def flaky():
        if len(seen) < 2:
            raise ConnectionError("reset")
        return "ok"

    assert asyncio.run(flaky()) == "ok"
    assert seen == [1, 2]
