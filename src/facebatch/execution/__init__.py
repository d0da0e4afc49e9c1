"""facebatch execution — retry executor and bounded batch dispatcher.

ARCHITECTURE
────────────
::

    BatchDispatcher (many items, bounded concurrency)
      │   conflict / rate limit  → re-queue in WorkQueue
      │   unprocessable / other  → drop, counted
      ▼
    item operation
      │
      ▼
    run_with_retry (one remote call, fixed-delay retries)
      │   transient code → wait retry_delay, try again
      │   anything else  → raise immediately
      ▼
    FaceServiceClient (facebatch.client)

MODULE MAP
──────────
  retry.py         ─ RetryPolicy, classify, run_with_retry, RetryExecutor
  dispatcher.py    ─ DispatchPolicy, BatchDispatcher, DispatchResult
  work_queue.py    ─ thread-safe pending multiset
  observer.py      ─ Observer protocol + LoggingObserver
  cancellation.py  ─ CancellationToken
  timeout.py       ─ per-item deadlines
"""

from facebatch.execution.cancellation import CancellationToken
from facebatch.execution.dispatcher import (
    BatchDispatcher,
    DispatchItem,
    DispatchPolicy,
    DispatchResult,
    ItemOutcome,
    ItemStatus,
    classify_outcome,
)
from facebatch.execution.observer import LoggingObserver, LogLevel, NullObserver, Observer
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
from facebatch.execution.timeout import TimeoutExpired, run_with_timeout_async
from facebatch.execution.work_queue import QueueEmpty, WorkQueue

__all__ = [
    "BatchDispatcher",
    "CancellationToken",
    "DEFAULT_TRANSIENT_CODES",
    "DispatchItem",
    "DispatchPolicy",
    "DispatchResult",
    "Disposition",
    "ItemOutcome",
    "ItemStatus",
    "LogLevel",
    "LoggingObserver",
    "NullObserver",
    "Observer",
    "QueueEmpty",
    "RetryExecutor",
    "RetryPolicy",
    "TimeoutExpired",
    "WorkQueue",
    "classify",
    "classify_outcome",
    "run_void_with_retry",
    "run_with_retry",
    "run_with_timeout_async",
    "with_retry",
]
