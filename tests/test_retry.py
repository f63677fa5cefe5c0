"""Tests for the retry budget and the polling loop."""

import asyncio

import pytest

from relaypake.protocol.errors import Timeout
from relaypake.protocol.retry import RetryPolicy, poll


class TestRetryPolicy:

    def test_five_second_delay(self):
        assert RetryPolicy.from_delay_seconds(5).max_tries == 180

    def test_two_second_delay(self):
        policy = RetryPolicy.from_delay_seconds(2)
        assert policy.max_tries == 450
        assert policy.interval_ms == 2000
        assert policy.interval_s == 2.0

    def test_budget_rounds_up(self):
        assert RetryPolicy.from_delay_seconds(7).max_tries == 129

    @pytest.mark.parametrize("delay", [0, -1])
    def test_rejects_non_positive_delay(self, delay):
        with pytest.raises(ValueError):
            RetryPolicy.from_delay_seconds(delay)


class TestPoll:

    def test_returns_first_ready_value(self):
        values = iter([None, None, "ready", "later"])
        slept = []

        async def sleep(s):
            slept.append(s)

        policy = RetryPolicy(interval_ms=1500, max_tries=10)
        result = asyncio.run(poll(lambda: next(values), policy, "value", sleep))
        assert result == "ready"
        assert slept == [1.5, 1.5, 1.5]

    def test_sleeps_before_first_read(self):
        events = []

        async def sleep(_s):
            events.append("sleep")

        def fetch():
            events.append("read")
            return 1

        asyncio.run(poll(fetch, RetryPolicy(interval_ms=1, max_tries=3), "value", sleep))
        assert events == ["sleep", "read"]

    def test_timeout_after_exactly_max_tries(self):
        calls = []

        def fetch():
            calls.append(1)
            return None

        async def sleep(_s):
            return None

        with pytest.raises(Timeout, match="GitHub App"):
            asyncio.run(poll(fetch, RetryPolicy(interval_ms=1, max_tries=4), "GitHub App", sleep))
        assert len(calls) == 4

    def test_fatal_fetch_error_propagates_immediately(self):
        calls = []

        def fetch():
            calls.append(1)
            raise ValueError("bad relay text")

        async def sleep(_s):
            return None

        with pytest.raises(ValueError):
            asyncio.run(poll(fetch, RetryPolicy(interval_ms=1, max_tries=5), "value", sleep))
        assert len(calls) == 1
