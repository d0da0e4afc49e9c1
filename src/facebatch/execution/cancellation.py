"""Cooperative cancellation for retry loops and batch dispatch.

Example::

    token = CancellationToken()
    task = asyncio.create_task(dispatcher.run(paths))
    ...
    token.cancel()      # dispatcher stops launching, retries stop waiting
"""

from __future__ import annotations

import asyncio

from facebatch.core.errors import OperationCancelled


class CancellationToken:
    """One-shot cancellation signal shared by cooperating coroutines.

    Must be used from the event loop thread.  From other threads use
    ``loop.call_soon_threadsafe(token.cancel)``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`OperationCancelled` when the token has fired."""
        if self._event.is_set():
            raise OperationCancelled()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancellation.

        Returns:
            True if the token fired, False if the full timeout elapsed.
        """
        if self._event.is_set():
            return True
        if timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True


async def pause(seconds: float, cancel: CancellationToken | None = None) -> None:
    """Non-blocking delay that raises :class:`OperationCancelled` if ``cancel`` fires."""
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    if await cancel.wait(seconds):
        raise OperationCancelled()


__all__ = ["CancellationToken", "pause"]
