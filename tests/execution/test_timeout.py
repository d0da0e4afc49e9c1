"""Tests for async deadlines."""

from __future__ import annotations

import asyncio

import pytest

from facebatch.execution.timeout import TimeoutExpired, run_with_timeout_async


class TestRunWithTimeoutAsync:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def quick():
            return 5

        assert await run_with_timeout_async(quick(), 1.0) == 5

    @pytest.mark.asyncio
    async def test_expires(self):
        with pytest.raises(TimeoutExpired) as exc_info:
            await run_with_timeout_async(asyncio.sleep(1.0), 0.01, operation="detect")
        err = exc_info.value
        assert isinstance(err, TimeoutError)
        assert err.operation == "detect"
        assert err.timeout == 0.01
        assert err.elapsed is not None

    @pytest.mark.asyncio
    async def test_rejects_non_positive(self):
        coro = asyncio.sleep(0)
        with pytest.raises(ValueError):
            await run_with_timeout_async(coro, 0)
        coro.close()

