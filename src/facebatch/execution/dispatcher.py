"""Batch Dispatcher — bounded-concurrency fan-out with re-queueing.

WHY
───
Folder scans and group enrolment push hundreds of images through the face
service.  The service rejects bursts with ``RateLimitExceeded`` and rejects
writes to a group that is busy with ``ConcurrentOperationConflict``.  Neither
should fail the batch: the item goes back into the queue and is tried again.

ARCHITECTURE
────────────
::

    BatchDispatcher(operation, DispatchPolicy)
      ├── WorkQueue           ─ pending items (re-queued items go back here)
      ├── in-flight tasks     ─ at most ``max_concurrency`` at any instant
      ├── .stream(items)      ─ async iterator of completed items
      └── .run(items)         ─ drain stream → DispatchResult

    Per-item state machine
    ──────────────────────
    PENDING → IN_FLIGHT → COMPLETED
                        → PENDING         (conflict: immediately)
                        → PENDING         (rate limit: launches paused)
                        → UNPROCESSABLE   (e.g. more than one face)
                        → FAILED          (any other error)
                        → EXHAUSTED       (re-queued max_requeues times)
                        → PENDING         (cancelled by the batch token)

    Sliding window: a new item is launched as soon as any slot frees,
    rather than launching N and waiting for all N.

Related modules:
    retry.py       — per-call retry used inside item operations
    work_queue.py  — thread-safe pending set
    timeout.py     — per-item deadline

Example::

    async def add_face(path):
        return await client.add_person_face(group_id, person_id, path)

    dispatcher = BatchDispatcher(add_face, DispatchPolicy(max_concurrency=4),
                                 on_success=lambda path, face: print(path))
    result = await dispatcher.run(paths)
    print(result.succeeded, result.unprocessable)
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from facebatch.core.errors import ErrorCode, OperationCancelled, error_code, is_unprocessable
from facebatch.core.logging import get_logger
from facebatch.execution.cancellation import CancellationToken
from facebatch.execution.observer import LogLevel, Observer, notify
from facebatch.execution.timeout import run_with_timeout_async
from facebatch.execution.work_queue import WorkQueue

logger = get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

SuccessCallback = Callable[[Any, Any], Awaitable[None] | None]


class ItemStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    UNPROCESSABLE = "unprocessable"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


class ItemOutcome(str, Enum):
    """How one finished attempt is handled."""

    COMPLETED = "completed"
    REQUEUE_CONFLICT = "requeue_conflict"
    REQUEUE_RATE_LIMIT = "requeue_rate_limit"
    UNPROCESSABLE = "unprocessable"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


def _codes(values: Iterable[Any]) -> frozenset[str]:
    return frozenset(v.value if isinstance(v, Enum) else str(v) for v in values)


@dataclass(frozen=True)
class DispatchPolicy:
    """Dispatch configuration.

    Attributes:
        max_concurrency: Maximum simultaneously in-flight operations
        conflict_codes: Codes re-queued immediately
        rate_limit_codes: Codes re-queued with a launch pause
        rate_limit_delay: Pause (seconds) before launching more work after a rate limit
        max_requeues: Re-queues allowed per item (None = unbounded)
        item_timeout: Deadline (seconds) for one in-flight attempt (None = none)
    """

    max_concurrency: int = 4
    conflict_codes: frozenset[str] = field(
        default=frozenset({ErrorCode.CONCURRENT_OPERATION_CONFLICT.value})
    )
    rate_limit_codes: frozenset[str] = field(
        default=frozenset({ErrorCode.RATE_LIMIT_EXCEEDED.value})
    )
    rate_limit_delay: float = 1.0
    max_requeues: int | None = None
    item_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError(f"max_concurrency must be > 0, got {self.max_concurrency}")
        if self.rate_limit_delay < 0:
            raise ValueError(f"rate_limit_delay must be >= 0, got {self.rate_limit_delay}")
        if self.max_requeues is not None and self.max_requeues < 0:
            raise ValueError(f"max_requeues must be >= 0, got {self.max_requeues}")
        if self.item_timeout is not None and self.item_timeout <= 0:
            raise ValueError(f"item_timeout must be > 0, got {self.item_timeout}")
        object.__setattr__(self, "conflict_codes", _codes(self.conflict_codes))
        object.__setattr__(self, "rate_limit_codes", _codes(self.rate_limit_codes))


def classify_outcome(error: BaseException, policy: DispatchPolicy) -> ItemOutcome:
    """Map an item failure onto re-queue / drop.  Pure function of the error."""
    code = error_code(error)
    if code is not None:
        if code in policy.conflict_codes:
            return ItemOutcome.REQUEUE_CONFLICT
        if code in policy.rate_limit_codes:
            return ItemOutcome.REQUEUE_RATE_LIMIT
    if is_unprocessable(error):
        return ItemOutcome.UNPROCESSABLE
    return ItemOutcome.FAILED


@dataclass
class DispatchItem(Generic[ItemT]):
    """One work item and its bookkeeping."""

    payload: ItemT
    status: ItemStatus = ItemStatus.PENDING
    result: Any = None
    error: str | None = None
    error_code: str | None = None
    attempts: int = 0
    requeues: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock duration of the last attempt."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class DispatchResult:
    """Aggregate result of one dispatched batch."""

    batch_id: str
    items: list[DispatchItem]
    started_at: datetime
    completed_at: datetime
    cancelled: bool = False

    def _count(self, status: ItemStatus) -> int:
        return sum(1 for i in self.items if i.status is status)

    @property
    def succeeded(self) -> int:
        return self._count(ItemStatus.COMPLETED)

    @property
    def unprocessable(self) -> int:
        return self._count(ItemStatus.UNPROCESSABLE)

    @property
    def failed(self) -> int:
        return self._count(ItemStatus.FAILED)

    @property
    def exhausted(self) -> int:
        return self._count(ItemStatus.EXHAUSTED)

    @property
    def pending(self) -> list[Any]:
        """Payloads never completed because the batch was cancelled."""
        return [i.payload for i in self.items if i.status is ItemStatus.PENDING]

    @property
    def requeues(self) -> int:
        return sum(i.requeues for i in self.items)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / CLI output."""
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "unprocessable": self.unprocessable,
            "failed": self.failed,
            "exhausted": self.exhausted,
            "pending": len(self.pending),
            "requeues": self.requeues,
            "cancelled": self.cancelled,
            "duration_seconds": self.duration_seconds,
        }


class BatchDispatcher(Generic[ItemT, ResultT]):
    """Drain a batch of items through ``operation`` with bounded concurrency.

    Per-item failures never escape: conflicts and rate limits re-queue the
    item, everything else drops it (counted and logged).  ``on_success`` runs
    exactly once for each completed item, never for dropped or re-queued ones.

    Parameters
    ----------
    operation : Callable[[ItemT], Awaitable[ResultT]]
        Per-item async operation.
    policy : DispatchPolicy
        Concurrency / re-queue configuration (default DispatchPolicy()).
    on_success : Callable[[ItemT, ResultT], None | Awaitable[None]]
        Optional callback for completed items.
    observer : Observer
        Notified of every re-queue and drop.
    cancel : CancellationToken
        When fired, no new items are launched; in-flight items finish.
        Items whose operation stops with ``OperationCancelled`` are reported
        as pending, not failed.
    """

    def __init__(
        self,
        operation: Callable[[ItemT], Awaitable[ResultT]],
        policy: DispatchPolicy | None = None,
        *,
        on_success: SuccessCallback | None = None,
        observer: Observer | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        self._operation = operation
        self._policy = policy or DispatchPolicy()
        self._on_success = on_success
        self._observer = observer
        self._cancel = cancel
        self._last_result: DispatchResult | None = None

    @property
    def policy(self) -> DispatchPolicy:
        return self._policy

    @property
    def last_result(self) -> DispatchResult | None:
        """Result of the most recently finished ``stream``/``run``."""
        return self._last_result

    @property
    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.cancelled

    # ── Execution ────────────────────────────────────────────────────

    async def run(self, items: Iterable[ItemT]) -> DispatchResult:
        """Dispatch every item and return the aggregate result."""
        async for _ in self.stream(items):
            pass
        if self._last_result is None:  # pragma: no cover
            raise RuntimeError("dispatch finished without a result")
        return self._last_result

    async def stream(self, items: Iterable[ItemT]) -> AsyncIterator[DispatchItem[ItemT]]:
        """Dispatch ``items``, yielding each one as it completes successfully."""
        batch_id = str(uuid.uuid4())
        entries = [DispatchItem(payload=p) for p in items]
        queue: WorkQueue[DispatchItem[ItemT]] = WorkQueue(entries)
        in_flight: dict[asyncio.Task[Any], DispatchItem[ItemT]] = {}
        loop = asyncio.get_running_loop()
        resume_at = 0.0
        finished = False
        started_at = datetime.now(UTC)
        max_concurrency = self._policy.max_concurrency

        logger.info(
            "dispatch.start",
            batch_id=batch_id,
            items=len(entries),
            max_concurrency=max_concurrency,
        )

        try:
            while True:
                while not queue.is_empty() and len(in_flight) < max_concurrency and not self._cancelled:
                    delay = resume_at - loop.time()
                    if delay > 0:
                        if in_flight:
                            break
                        await self._sleep(delay)
                        continue
                    entry = queue.take()
                    in_flight[self._launch(entry)] = entry

                if not in_flight:
                    break

                # Wake up when a slot frees, or when a rate-limit pause ends
                # while slots are still free.
                timeout = None
                if not queue.is_empty() and len(in_flight) < max_concurrency and not self._cancelled:
                    timeout = max(resume_at - loop.time(), 0.0)

                done, _ = await asyncio.wait(
                    set(in_flight), timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    entry = in_flight.pop(task)
                    outcome = self._settle(batch_id, entry, task, queue)
                    if outcome is ItemOutcome.REQUEUE_RATE_LIMIT:
                        resume_at = loop.time() + self._policy.rate_limit_delay
                    elif outcome is ItemOutcome.COMPLETED:
                        await self._notify_success(batch_id, entry)
                        yield entry
            finished = all(e.status is not ItemStatus.PENDING for e in entries)
        finally:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
                for entry in in_flight.values():
                    entry.status = ItemStatus.PENDING
            unlaunched = queue.drain()

            result = DispatchResult(
                batch_id=batch_id,
                items=entries,
                started_at=started_at,
                completed_at=datetime.now(UTC),
                cancelled=not finished,
            )
            if result.cancelled:
                logger.warning(
                    "dispatch.cancelled",
                    batch_id=batch_id,
                    pending=len(result.pending),
                    unlaunched=len(unlaunched),
                )
            self._last_result = result
            self._log_summary(result)

    # ── Internals ────────────────────────────────────────────────────

    def _launch(self, entry: DispatchItem[ItemT]) -> asyncio.Task[Any]:
        entry.status = ItemStatus.IN_FLIGHT
        entry.attempts += 1
        entry.started_at = datetime.now(UTC)
        return asyncio.create_task(self._invoke(entry.payload))

    async def _invoke(self, payload: ItemT) -> ResultT:
        if self._policy.item_timeout is not None:
            return await run_with_timeout_async(
                self._operation(payload),
                self._policy.item_timeout,
                operation=f"dispatch item {payload!r}",
            )
        return await self._operation(payload)

    async def _sleep(self, seconds: float) -> None:
        if self._cancel is not None:
            await self._cancel.wait(seconds)
        else:
            await asyncio.sleep(seconds)

    def _settle(
        self,
        batch_id: str,
        entry: DispatchItem[ItemT],
        task: asyncio.Task[Any],
        queue: WorkQueue[DispatchItem[ItemT]],
    ) -> ItemOutcome:
        entry.completed_at = datetime.now(UTC)

        error: BaseException | None
        if task.cancelled():
            error = OperationCancelled("item task was cancelled")
        else:
            error = task.exception()

        if error is None:
            entry.status = ItemStatus.COMPLETED
            entry.result = task.result()
            entry.error = None
            entry.error_code = None
            return ItemOutcome.COMPLETED

        entry.error = str(error)
        entry.error_code = error_code(error)
        outcome = classify_outcome(error, self._policy)
        item = repr(entry.payload)

        if self._cancelled and isinstance(error, OperationCancelled):
            entry.status = ItemStatus.PENDING
            logger.info("dispatch.item_cancelled", batch_id=batch_id, item=item)
            return ItemOutcome.CANCELLED

        if outcome in (ItemOutcome.REQUEUE_CONFLICT, ItemOutcome.REQUEUE_RATE_LIMIT):
            limit = self._policy.max_requeues
            if limit is not None and entry.requeues >= limit:
                entry.status = ItemStatus.EXHAUSTED
                notify(self._observer, LogLevel.WARNING, f"Giving up on {item} after {entry.requeues} re-queues", error)
                logger.warning(
                    "dispatch.item_exhausted",
                    batch_id=batch_id,
                    item=item,
                    requeues=entry.requeues,
                    code=entry.error_code,
                )
                return ItemOutcome.EXHAUSTED

            entry.requeues += 1
            entry.status = ItemStatus.PENDING
            queue.put(entry)
            if outcome is ItemOutcome.REQUEUE_CONFLICT:
                message = "Concurrent Operation Conflict. Re-queuing"
            else:
                message = f"Rate Limit Exceeded. Re-queuing in {self._policy.rate_limit_delay:g} second(s)"
            notify(self._observer, LogLevel.INFO, f"{message}: {item}", error)
            logger.info(
                "dispatch.item_requeued",
                batch_id=batch_id,
                item=item,
                code=entry.error_code,
                requeues=entry.requeues,
            )
            return outcome

        if outcome is ItemOutcome.UNPROCESSABLE:
            entry.status = ItemStatus.UNPROCESSABLE
            notify(self._observer, LogLevel.WARNING, f"Unprocessable input {item}: {error}", error)
            logger.warning(
                "dispatch.item_unprocessable",
                batch_id=batch_id,
                item=item,
                code=entry.error_code,
                error=entry.error,
            )
            return outcome

        entry.status = ItemStatus.FAILED
        notify(self._observer, LogLevel.ERROR, f"Error: {error}", error)
        logger.error(
            "dispatch.item_failed",
            batch_id=batch_id,
            item=item,
            code=entry.error_code,
            error=entry.error,
            error_type=type(error).__name__,
        )
        return outcome

    async def _notify_success(self, batch_id: str, entry: DispatchItem[ItemT]) -> None:
        if self._on_success is None:
            return
        try:
            ret = self._on_success(entry.payload, entry.result)
            if inspect.isawaitable(ret):
                await ret
        except Exception as exc:
            # Completed stays completed; callback errors are only logged.
            logger.error(
                "dispatch.callback_failed",
                batch_id=batch_id,
                item=repr(entry.payload),
                error=str(exc),
                exc_info=True,
            )

    def _log_summary(self, result: DispatchResult) -> None:
        if result.unprocessable:
            logger.warning(
                "dispatch.unprocessable_summary",
                batch_id=result.batch_id,
                count=result.unprocessable,
            )
        if result.exhausted:
            logger.warning(
                "dispatch.exhausted_summary",
                batch_id=result.batch_id,
                count=result.exhausted,
                max_requeues=self._policy.max_requeues,
            )
        logger.info("dispatch.complete", **result.to_dict())


__all__ = [
    "ItemStatus",
    "ItemOutcome",
    "DispatchPolicy",
    "classify_outcome",
    "DispatchItem",
    "DispatchResult",
    "BatchDispatcher",
]
