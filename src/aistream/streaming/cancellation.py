"""Cooperative cancellation for streaming calls."""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, TypeVar

T = TypeVar("T")


class CancellationToken:
    """A signal a caller can raise to stop a stream between frames.

    A deadline is the same signal raised by a timer::

        token = CancellationToken()
        token.cancel_after(30)
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel_after(self, delay: float) -> None:
        """Raise the signal after ``delay`` seconds. Needs a running loop."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self.cancel, "deadline exceeded")

    async def wait(self) -> None:
        await self._event.wait()


class Cancelled(Exception):
    """Raised internally when the token fires while waiting for data."""


END = object()


async def next_or_cancel(
    iterator: AsyncIterator[T],
    token: CancellationToken | None,
) -> T | object:
    """Await the next item, or raise :class:`Cancelled` if the token fires first.

    Returns the ``END`` marker when the iterator is exhausted. A signal
    raised before the wait starts wins; one raised while waiting unblocks it.
    """
    if token is None:
        return await anext(iterator, END)
    if token.cancelled:
        raise Cancelled(token.reason)
    read = asyncio.ensure_future(anext(iterator, END))
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        read.cancel()
        raise
    finally:
        waiter.cancel()
    if read in done:
        return read.result()
    read.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await read
    raise Cancelled(token.reason)


