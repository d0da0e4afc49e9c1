"""facebatch core -- errors, logging and settings shared by every layer.

Layout::

    errors.py     Typed error hierarchy (RemoteError, UnprocessableInputError)
    logging.py    structlog configuration + get_logger
    settings.py   pydantic-settings FaceBatchSettings (FACEBATCH_* env vars)

``settings`` is not imported here because it depends on the execution layer.
"""

from facebatch.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorCode,
    FaceBatchError,
    OperationCancelled,
    RemoteError,
    UnprocessableInputError,
)
from facebatch.core.logging import configure_logging, get_logger

__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ErrorCode",
    "FaceBatchError",
    "OperationCancelled",
    "RemoteError",
    "UnprocessableInputError",
    "configure_logging",
    "get_logger",
]
