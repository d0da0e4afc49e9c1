"""
Shared pytest fixtures for facebatch tests.

This module provides:
- RecordingObserver, an observer that keeps every notification
- Settings cache and structlog configuration isolation between tests
- Zero-delay retry / dispatch policies so tests never sleep for real
"""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest
import structlog

from facebatch.core.errors import ErrorCode, RemoteError
from facebatch.core.settings import get_settings
from facebatch.execution.dispatcher import DispatchPolicy
from facebatch.execution.observer import LogLevel
from facebatch.execution.retry import RetryPolicy


@dataclass
class Notification:
    level: LogLevel
    message: str
    error: BaseException | None


@dataclass
class RecordingObserver:
    """Observer that records notifications for assertions."""

    notifications: list[Notification] = field(default_factory=list)

    def record(self, level, message, error=None):
        self.notifications.append(Notification(level, message, error))

    @property
    def messages(self) -> list[str]:
        return [n.message for n in self.notifications]

    @property
    def levels(self) -> list[LogLevel]:
        return [n.level for n in self.notifications]


def rate_limited() -> RemoteError:
    return RemoteError(ErrorCode.RATE_LIMIT_EXCEEDED, "Rate limit is exceeded.", http_status=429)


def conflict() -> RemoteError:
    return RemoteError(ErrorCode.CONCURRENT_OPERATION_CONFLICT, "There is a conflict operation.", http_status=409)


def not_found() -> RemoteError:
    return RemoteError(ErrorCode.LARGE_PERSON_GROUP_NOT_FOUND, "Large person group is not found.", http_status=404)


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    """Each test sees a fresh settings object built from its own environment."""
    for name in (
        "FACEBATCH_SUBSCRIPTION_KEY",
        "FACEBATCH_ENDPOINT",
        "FACEBATCH_MAX_CONCURRENCY",
        "FACEBATCH_MAX_RETRIES",
        "FACEBATCH_RETRY_DELAY",
        "FACEBATCH_MAX_REQUEUES",
        "FACEBATCH_ITEM_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    structlog.reset_defaults()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=3, retry_delay=0)


@pytest.fixture
def fast_dispatch() -> DispatchPolicy:
    return DispatchPolicy(max_concurrency=2, rate_limit_delay=0)
