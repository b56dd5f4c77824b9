"""Cooperative cancellation token threaded through every suspendable call of a job."""

import asyncio
from typing import Awaitable, TypeVar

from imagestudio.services.exceptions import JobAbortedError

T = TypeVar("T")


class CancellationToken:
    """Shared cancellation signal for one job's execution task.

    The token never interrupts code on its own: it is checked at the poll
    sleep boundary and raced against each in-flight network call.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobAbortedError("Aborted")

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking early with JobAbortedError on cancellation."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise JobAbortedError("Aborted")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first.

        When the token fires, the in-flight awaitable is cancelled and
        JobAbortedError is raised in the caller.
        """
        if self.cancelled:
            # Never scheduled, close it so it is not reported as unawaited
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise JobAbortedError("Aborted")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()

        await asyncio.gather(task, return_exceptions=True)
        raise JobAbortedError("Aborted")
