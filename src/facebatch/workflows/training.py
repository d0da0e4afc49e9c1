"""Train a large person group and wait for training to finish."""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

from facebatch.client.face_service import FaceServiceClient
from facebatch.core.errors import FaceBatchError, RemoteError
from facebatch.core.logging import get_logger
from facebatch.execution.cancellation import CancellationToken, pause
from facebatch.execution.observer import Observer
from facebatch.execution.retry import RetryPolicy, run_void_with_retry
from facebatch.execution.timeout import run_with_timeout_async

logger = get_logger(__name__)


class TrainingStatus(str, Enum):
    NOT_STARTED = "notstarted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TrainingFailed(FaceBatchError):
    """The service reported ``failed`` for a training run."""

    def __init__(self, group_id: str, message: str | None = None):
        super().__init__(f"Training of group {group_id!r} failed: {message or 'no details'}")
        self.group_id = group_id


async def train_and_wait(
    client: FaceServiceClient,
    group_id: str,
    *,
    retry_policy: RetryPolicy | None = None,
    poll_interval: float = 1.0,
    timeout: float | None = None,
    observer: Observer | None = None,
    cancel: CancellationToken | None = None,
) -> dict[str, Any]:
    """Start training ``group_id`` and poll until it is no longer in progress.

    The train request goes through the retry executor.  Poll errors are
    logged and polling continues.

    Returns:
        The final training status body.

    Raises:
        TrainingFailed: If the service reports ``failed``
        TimeoutExpired: If ``timeout`` elapses first
        OperationCancelled: If ``cancel`` fires
    """
    logger.info("training.request", group_id=group_id)
    await run_void_with_retry(
        lambda: client.train_large_person_group(group_id),
        retry_policy,
        observer=observer,
        cancel=cancel,
    )

    async def _poll() -> dict[str, Any]:
        while True:
            await pause(poll_interval, cancel)
            try:
                status = await client.get_training_status(group_id)
            except (RemoteError, httpx.HTTPError) as exc:
                logger.warning("training.poll_failed", group_id=group_id, error=str(exc))
                continue

            state = str(status.get("status", "")).lower()
            logger.info("training.status", group_id=group_id, status=state)

            if state == TrainingStatus.FAILED.value:
                raise TrainingFailed(group_id, status.get("message"))
            if state not in (TrainingStatus.RUNNING.value, TrainingStatus.NOT_STARTED.value):
                return status

    if timeout is not None:
        return await run_with_timeout_async(_poll(), timeout, operation=f"training {group_id}")
    return await _poll()


__all__ = ["TrainingStatus", "TrainingFailed", "train_and_wait"]
