"""Retry executor for calls to the face-recognition service.

Wraps one asynchronous remote operation, retrying it with a fixed delay while
it keeps failing with a transient error, and surfacing every other failure
(or the last error once retries run out) to the caller unchanged.

Which errors count as transient is decided by the *caller* through a
:class:`RetryPolicy`, because it varies per endpoint: rate limiting is always
retryable, "group not found" never is for a GET.

Example:
    >>> from facebatch.execution.retry import RetryPolicy, run_with_retry
    >>>
    >>> policy = RetryPolicy(max_retries=5, retry_delay=0.5)
    >>> faces = await run_with_retry(lambda: client.detect(image), policy)
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from facebatch.core.errors import ErrorCode, error_code
from facebatch.core.logging import get_logger
from facebatch.execution.cancellation import CancellationToken, pause
from facebatch.execution.observer import LogLevel, Observer, notify

T = TypeVar("T")

logger = get_logger(__name__)

DEFAULT_TRANSIENT_CODES: frozenset[str] = frozenset(
    {
        ErrorCode.RATE_LIMIT_EXCEEDED.value,
        ErrorCode.CONCURRENT_OPERATION_CONFLICT.value,
    }
)


class Disposition(str, Enum):
    """Outcome of classifying one failure."""

    TRANSIENT = "transient"
    FATAL = "fatal"


def _normalize(entries: Iterable[Any]) -> frozenset[Any]:
    return frozenset(e.value if isinstance(e, Enum) else e for e in entries)


def classify(error: BaseException, transient: Iterable[Any]) -> Disposition:
    """Classify ``error`` as transient or fatal.

    ``transient`` may hold service error codes (strings or :class:`ErrorCode`)
    and exception types.  A :class:`RemoteError` is transient when its
    ``code`` is listed; any error is transient when it is an instance of a
    listed type.  Pure: never looks at attempt counts or time.
    """
    entries = _normalize(transient)
    code = error_code(error)
    if code is not None and code in entries:
        return Disposition.TRANSIENT
    for entry in entries:
        if isinstance(entry, type) and isinstance(error, entry):
            return Disposition.TRANSIENT
    return Disposition.FATAL


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry configuration.

    Attributes:
        transient_codes: Error codes and/or exception types that trigger a retry
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        retry_delay: Delay between attempts in seconds
    """

    transient_codes: frozenset[Any] = field(default=DEFAULT_TRANSIENT_CODES)
    max_retries: int = 60
    retry_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")
        object.__setattr__(self, "transient_codes", _normalize(self.transient_codes))

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def classify(self, error: BaseException) -> Disposition:
        return classify(error, self.transient_codes)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    observer: Observer | None = None,
    cancel: CancellationToken | None = None,
) -> T:
    """Invoke ``operation`` until it succeeds, fails fatally, or retries run out.

    The observer is notified once per failed attempt, before the decision to
    retry or propagate.  Attempts are strictly sequential.

    Args:
        operation: Zero-argument async callable
        policy: Retry configuration (default: RetryPolicy())
        observer: Optional observer for failed attempts
        cancel: Optional token; when it fires no further attempt is made

    Returns:
        The operation's result.

    Raises:
        OperationCancelled: If ``cancel`` fires before an attempt or during a delay
        Exception: The fatal error, or the last transient error once
            ``max_retries`` retries are exhausted
    """
    policy = policy or RetryPolicy()
    attempt = 0

    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()

        try:
            return await operation()
        except Exception as exc:
            attempt += 1
            disposition = policy.classify(exc)

            if disposition is Disposition.FATAL:
                notify(observer, LogLevel.ERROR, f"Error: {exc}. Attempt {attempt}/{policy.max_attempts}", exc)
                raise

            notify(observer, LogLevel.WARNING, f"Error: {exc}. Attempt {attempt}/{policy.max_attempts}", exc)

            if attempt >= policy.max_attempts:
                logger.warning(
                    "retry.exhausted",
                    attempts=attempt,
                    code=error_code(exc),
                    error=str(exc),
                )
                raise

            logger.debug(
                "retry.scheduled",
                attempt=attempt,
                code=error_code(exc),
                delay=policy.retry_delay,
            )

        await pause(policy.retry_delay, cancel)


async def run_void_with_retry(
    operation: Callable[[], Awaitable[Any]],
    policy: RetryPolicy | None = None,
    *,
    observer: Observer | None = None,
    cancel: CancellationToken | None = None,
) -> None:
    """Same as :func:`run_with_retry` but discards the result.

    Used for fire-and-forget calls such as triggering training.
    """
    await run_with_retry(operation, policy, observer=observer, cancel=cancel)


@dataclass(frozen=True)
class RetryExecutor:
    """Injectable retry executor bound to one policy and observer.

    Example:
        >>> executor = RetryExecutor(RetryPolicy(max_retries=3), LoggingObserver())
        >>> person = await executor.run(lambda: client.create_person(group, name))
    """

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    observer: Observer | None = None

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        cancel: CancellationToken | None = None,
    ) -> T:
        return await run_with_retry(operation, self.policy, observer=self.observer, cancel=cancel)

    async def run_void(
        self,
        operation: Callable[[], Awaitable[Any]],
        cancel: CancellationToken | None = None,
    ) -> None:
        await run_void_with_retry(operation, self.policy, observer=self.observer, cancel=cancel)


def with_retry(
    policy: RetryPolicy | None = None,
    observer: Observer | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator factory adding retry logic to a coroutine function.

    Example:
        >>> @with_retry(RetryPolicy(max_retries=3))
        ... async def train(group_id):
        ...     await client.train_large_person_group(group_id)
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"with_retry requires a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await run_with_retry(lambda: func(*args, **kwargs), policy, observer=observer)

        return wrapper

    return decorator


__all__ = [
    "DEFAULT_TRANSIENT_CODES",
    "Disposition",
    "classify",
    "RetryPolicy",
    "run_with_retry",
    "run_void_with_retry",
    "RetryExecutor",
    "with_retry",
]
