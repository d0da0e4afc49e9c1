"""Environment-driven settings for facebatch.

All tuning knobs for the retry executor and the batch dispatcher, plus the
service endpoint and key, come from ``FACEBATCH_*`` environment variables
or a ``.env`` file.

Examples:
    >>> import os
    >>> os.environ["FACEBATCH_MAX_CONCURRENCY"] = "8"
    >>> get_settings.cache_clear()
    >>> get_settings().dispatch_policy().max_concurrency
    8

Tags:
    settings, configuration, pydantic, environment, facebatch
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from facebatch.core.errors import ConfigError
from facebatch.execution.dispatcher import DispatchPolicy
from facebatch.execution.retry import DEFAULT_TRANSIENT_CODES, RetryPolicy

DEFAULT_ENDPOINT = "https://westus.api.cognitive.microsoft.com/face/v1.0"


class FaceBatchSettings(BaseSettings):
    """Settings for the face service client, retries and dispatch.

    Fields
    ──────
    endpoint          : Face service API root
    subscription_key  : Service key, sent as ``Ocp-Apim-Subscription-Key``
    request_timeout   : Transport timeout per HTTP request (seconds)
    retry_delay       : Fixed delay between retry attempts (seconds)
    max_retries       : Retries after the first attempt
    max_concurrency   : In-flight operations per batch
    rate_limit_delay  : Launch pause after a rate-limited item (seconds)
    max_requeues      : Re-queues per item before it is given up
    item_timeout      : Deadline per in-flight item (seconds, unset = none)
    log_level         : Structlog log level
    json_logs         : Force JSON (true) or console (false) rendering
    """

    model_config = SettingsConfigDict(
        env_prefix="FACEBATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Service ──────────────────────────────────────────────────
    endpoint: str = DEFAULT_ENDPOINT
    subscription_key: SecretStr | None = None
    request_timeout: float = Field(default=30.0, gt=0)

    # ── Retry ────────────────────────────────────────────────────
    retry_delay: float = Field(default=1.0, ge=0)
    max_retries: int = Field(default=60, ge=0)

    # ── Dispatch ─────────────────────────────────────────────────
    max_concurrency: int = Field(default=4, gt=0)
    rate_limit_delay: float = Field(default=1.0, ge=0)
    max_requeues: int | None = Field(default=100, ge=0)
    item_timeout: float | None = Field(default=None, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    def retry_policy(self, transient_codes: frozenset | None = None) -> RetryPolicy:
        """Build a :class:`RetryPolicy` from these settings."""
        return RetryPolicy(
            transient_codes=transient_codes if transient_codes is not None else DEFAULT_TRANSIENT_CODES,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
        )

    def dispatch_policy(self) -> DispatchPolicy:
        """Build a :class:`DispatchPolicy` from these settings."""
        return DispatchPolicy(
            max_concurrency=self.max_concurrency,
            rate_limit_delay=self.rate_limit_delay,
            max_requeues=self.max_requeues,
            item_timeout=self.item_timeout,
        )

    def require_key(self) -> str:
        """Return the subscription key or raise :class:`ConfigError`."""
        if self.subscription_key is None or not self.subscription_key.get_secret_value():
            raise ConfigError("FACEBATCH_SUBSCRIPTION_KEY is not set")
        return self.subscription_key.get_secret_value()


@lru_cache(maxsize=1)
def get_settings() -> FaceBatchSettings:
    """Process-wide settings, read once from the environment."""
    return FaceBatchSettings()
