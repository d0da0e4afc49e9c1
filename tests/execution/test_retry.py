"""Tests for the retry executor."""

from __future__ import annotations

import asyncio

import pytest
from conftest import conflict, not_found, rate_limited

from facebatch.core.errors import ErrorCode, OperationCancelled, RemoteError
from facebatch.execution.cancellation import CancellationToken
from facebatch.execution.observer import LogLevel
from facebatch.execution.retry import (
    DEFAULT_TRANSIENT_CODES,
    Disposition,
    RetryExecutor,
    RetryPolicy,
    classify,
    run_void_with_retry,
    run_with_retry,
    with_retry,
)


# ── Helpers ──────────────────────────────────────────────────────────────


class Scripted:
    """Async callable that raises the scripted errors, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


# ── classify ─────────────────────────────────────────────────────────────


class TestClassify:
    def test_listed_code_is_transient(self):
        assert classify(rate_limited(), DEFAULT_TRANSIENT_CODES) is Disposition.TRANSIENT
        assert classify(conflict(), DEFAULT_TRANSIENT_CODES) is Disposition.TRANSIENT

    def test_unlisted_code_is_fatal(self):
        assert classify(not_found(), DEFAULT_TRANSIENT_CODES) is Disposition.FATAL

    def test_enum_members_match_codes(self):
        assert classify(not_found(), {ErrorCode.LARGE_PERSON_GROUP_NOT_FOUND}) is Disposition.TRANSIENT

    def test_exception_types(self):
        assert classify(ConnectionError(), {ConnectionError}) is Disposition.TRANSIENT
        assert classify(ValueError(), {ConnectionError}) is Disposition.FATAL

    def test_empty_set_is_always_fatal(self):
        assert classify(rate_limited(), frozenset()) is Disposition.FATAL

    def test_pure(self):
        err = rate_limited()
        assert {classify(err, DEFAULT_TRANSIENT_CODES) for _ in range(5)} == {Disposition.TRANSIENT}


# ── RetryPolicy ──────────────────────────────────────────────────────────


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 60
        assert policy.retry_delay == 1.0
        assert policy.max_attempts == 61
        assert policy.transient_codes == DEFAULT_TRANSIENT_CODES

    def test_codes_normalized(self):
        policy = RetryPolicy(transient_codes=frozenset({ErrorCode.PERSON_NOT_FOUND}))
        assert policy.transient_codes == frozenset({"PersonNotFound"})

    @pytest.mark.parametrize("kwargs", [{"max_retries": -1}, {"retry_delay": -0.1}])
    def test_rejects_negative(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


# ── run_with_retry ───────────────────────────────────────────────────────


class TestRunWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self, observer):
        op = Scripted([], result=42)
        assert await run_with_retry(op, RetryPolicy(retry_delay=0), observer=observer) == 42
        assert op.calls == 1
        assert observer.notifications == []

    @pytest.mark.asyncio
    async def test_transient_then_success(self, observer):
        op = Scripted([rate_limited(), rate_limited()], result="done")
        result = await run_with_retry(op, RetryPolicy(max_retries=5, retry_delay=0), observer=observer)
        assert result == "done"
        assert op.calls == 3
        assert observer.levels == [LogLevel.WARNING, LogLevel.WARNING]
        assert "Attempt 1/6" in observer.messages[0]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self, observer):
        errors = [rate_limited() for _ in range(10)]
        last = errors[3]
        op = Scripted(errors)
        with pytest.raises(RemoteError) as exc_info:
            await run_with_retry(op, RetryPolicy(max_retries=3, retry_delay=0), observer=observer)
        assert exc_info.value is last
        assert op.calls == 4
        assert len(observer.notifications) == 4

    @pytest.mark.asyncio
    async def test_fatal_raises_immediately(self, observer):
        err = not_found()
        op = Scripted([err])
        with pytest.raises(RemoteError) as exc_info:
            await run_with_retry(op, RetryPolicy(retry_delay=0), observer=observer)
        assert exc_info.value is err
        assert op.calls == 1
        assert observer.levels == [LogLevel.ERROR]

    @pytest.mark.asyncio
    async def test_zero_retries_means_one_attempt(self):
        op = Scripted([rate_limited()])
        with pytest.raises(RemoteError):
            await run_with_retry(op, RetryPolicy(max_retries=0, retry_delay=0))
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_empty_transient_set_never_retries(self):
        op = Scripted([rate_limited()])
        with pytest.raises(RemoteError):
            await run_with_retry(op, RetryPolicy(transient_codes=frozenset(), retry_delay=0))
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_non_remote_errors_propagate(self):
        op = Scripted([KeyError("x")])
        with pytest.raises(KeyError):
            await run_with_retry(op, RetryPolicy(retry_delay=0))

    @pytest.mark.asyncio
    async def test_delay_between_attempts(self):
        loop = asyncio.get_running_loop()
        stamps: list[float] = []

        async def op():
            stamps.append(loop.time())
            if len(stamps) < 3:
                raise rate_limited()
            return "ok"

        await run_with_retry(op, RetryPolicy(max_retries=5, retry_delay=0.05))
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        assert all(gap >= 0.04 for gap in gaps)

    @pytest.mark.asyncio
    async def test_attempts_are_sequential(self):
        active = 0
        peak = 0

        async def op():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1
            raise conflict()

        with pytest.raises(RemoteError):
            await run_with_retry(op, RetryPolicy(max_retries=4, retry_delay=0))
        assert peak == 1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        op = Scripted([])
        with pytest.raises(OperationCancelled):
            await run_with_retry(op, cancel=token)
        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_cancel_interrupts_delay(self):
        token = CancellationToken()
        op = Scripted([rate_limited() for _ in range(100)])

        async def fire():
            await asyncio.sleep(0.02)
            token.cancel()

        asyncio.get_running_loop().create_task(fire())
        with pytest.raises(OperationCancelled):
            await asyncio.wait_for(
                run_with_retry(op, RetryPolicy(retry_delay=10.0), cancel=token),
                timeout=2.0,
            )
        assert op.calls == 1


class TestVariants:
    @pytest.mark.asyncio
    async def test_void_variant_discards_result(self):
        op = Scripted([conflict()], result="ignored")
        assert await run_void_with_retry(op, RetryPolicy(retry_delay=0)) is None
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_executor(self, observer, fast_retry):
        executor = RetryExecutor(fast_retry, observer)
        op = Scripted([rate_limited()], result=7)
        assert await executor.run(op) == 7
        assert len(observer.notifications) == 1
        await executor.run_void(Scripted([]))

    @pytest.mark.asyncio
    async def test_decorator(self, fast_retry):
        calls = []

        @with_retry(fast_retry)
        async def train(group_id):
            calls.append(group_id)
            if len(calls) == 1:
                raise conflict()
            return group_id

        assert await train("g1") == "g1"
        assert calls == ["g1", "g1"]

    def test_decorator_rejects_sync_functions(self):
        with pytest.raises(TypeError):
            with_retry()(lambda: None)


class TestWorkedExamples:
    @pytest.mark.asyncio
    async def test_retry_then_succeed(self, observer):
        loop = asyncio.get_running_loop()
        op = Scripted([rate_limited(), rate_limited()], result=42)
        start = loop.time()

        result = await run_with_retry(op, RetryPolicy(max_retries=3, retry_delay=0.01), observer=observer)

        assert result == 42
        assert len(observer.notifications) == 2
        assert loop.time() - start >= 0.019

    @pytest.mark.asyncio
    async def test_exhaustion_after_three_invocations(self):
        op = Scripted([rate_limited() for _ in range(10)])
        with pytest.raises(RemoteError) as exc_info:
            await run_with_retry(op, RetryPolicy(max_retries=2, retry_delay=0))
        assert exc_info.value.code == "RateLimitExceeded"
        assert op.calls == 3
