"""Deadlines for in-flight remote calls.

The HTTP transport has its own timeout, but a single in-flight slot can still
hang across retries and rate-limit waits.  These helpers bound the total
time one dispatcher slot may be occupied.

Examples:
    >>> faces = await run_with_timeout_async(client.detect(image), 10.0, "detect")

Tags:
    timeout, deadline, resilience, execution, facebatch
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Inherits from built-in TimeoutError for broad exception handling.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"

        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg)


async def run_with_timeout_async(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    operation: str | None = None,
) -> T:
    """Await ``awaitable`` with a timeout.

    Raises:
        TimeoutExpired: If execution exceeds timeout
        ValueError: If timeout_seconds is not positive
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except TimeoutExpired:
        raise
    except TimeoutError:
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation or "operation",
        ) from None


__all__ = [
    "TimeoutExpired",
    "run_with_timeout_async",
]
