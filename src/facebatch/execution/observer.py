"""Observers notified by the retry executor and the batch dispatcher.

An observer has one method, ``record(level, message, error)``.  The retry
executor calls it once per failed attempt; the dispatcher calls it for every
re-queue and every dropped item.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from facebatch.core.errors import FaceBatchError
from facebatch.core.logging import get_logger


class LogLevel(str, Enum):
    """Log levels matching Python logging."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@runtime_checkable
class Observer(Protocol):
    """Receives retry / dispatch notifications."""

    def record(self, level: LogLevel, message: str, error: BaseException | None = None) -> None:
        ...


class NullObserver:
    """Observer that discards everything."""

    def record(self, level: LogLevel, message: str, error: BaseException | None = None) -> None:
        return None


class LoggingObserver:
    """Forward notifications to a structlog logger.

    Remote error ``code`` and ``message`` are logged exactly as received.
    """

    def __init__(self, logger: Any = None, event: str = "facebatch.observed") -> None:
        self._logger = logger or get_logger("facebatch.observer")
        self._event = event

    def record(self, level: LogLevel, message: str, error: BaseException | None = None) -> None:
        fields: dict[str, Any] = {"detail": message}
        if isinstance(error, FaceBatchError):
            fields["error"] = error.to_dict()
        elif error is not None:
            fields["error"] = {"error_type": type(error).__name__, "message": str(error)}
        log = getattr(self._logger, LogLevel(level).value.lower())
        log(self._event, **fields)


def notify(
    observer: Observer | None,
    level: LogLevel,
    message: str,
    error: BaseException | None = None,
) -> None:
    """Call ``observer.record`` when an observer is present."""
    if observer is not None:
        observer.record(level, message, error)


__all__ = ["LogLevel", "Observer", "NullObserver", "LoggingObserver", "notify"]
