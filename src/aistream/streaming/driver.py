"""Drives one streaming call: decode, merge, and republish fragments.

A single :class:`StreamDriver` loop serves both delivery modes:

* pull — :class:`EventStream`, an async iterator the caller consumes
* push — :func:`deliver`, which invokes a handler per fragment

Both observe the same merge results because both run the same loop.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import json
import logging
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Generic

import httpx

from aistream.core.errors import JobCancellationError, StreamDecodeError, from_transport
from aistream.core.headers import ResponseMetadata, parse_metadata
from aistream.llm.base import Accumulator, F, FragmentHandler, R
from aistream.llm.types import StreamEnd
from aistream.streaming.cancellation import END, Cancelled, CancellationToken, next_or_cancel
from aistream.streaming.frames import FrameDecoder

logger = logging.getLogger(__name__)

ResponseOpener = Callable[[], AbstractAsyncContextManager[httpx.Response]]
CancelHook = Callable[[Any], Awaitable[Any]]


class StreamState(str, Enum):
    IDLE = "idle"
    OPENING = "opening"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class StreamDriver(Generic[F, R]):
    """State machine for one streamed exchange.

    ``open_response`` issues the HTTP exchange and must raise an
    ``APIError`` for non-success statuses. ``parse`` turns one JSON payload
    into a fragment, raising ``ValueError`` for unusable payloads, which are
    skipped. ``on_cancel`` runs after a cancellation, with the partial result,
    to stop a server-side job.
    """

    def __init__(
        self,
        open_response: ResponseOpener,
        parse: Callable[[Any], F],
        accumulator: Accumulator[F, R],
        *,
        cancel: CancellationToken | None = None,
        on_cancel: CancelHook | None = None,
        max_consecutive_decode_errors: int | None = 8,
        debug: bool = False,
        label: str = "stream",
    ):
        self._open_response = open_response
        self._parse = parse
        self._accumulator = accumulator
        self._cancel = cancel
        self._on_cancel = on_cancel
        self._max_decode_errors = max_consecutive_decode_errors
        self._debug = debug
        self._label = label
        self._decode_errors = 0
        self.state = StreamState.IDLE
        self.decoder: FrameDecoder | None = None
        self.metadata: ResponseMetadata | None = None
        self.skipped = 0

    @property
    def terminated_cleanly(self) -> bool:
        return self.decoder is not None and self.decoder.done

    def _transition(self, state: StreamState) -> None:
        logger.debug("%s: %s -> %s", self._label, self.state.value, state.value)
        self.state = state

    def _end(self) -> StreamEnd | None:
        if self.state is StreamState.CANCELLED:
            return StreamEnd.CANCELLED
        if self.state is StreamState.COMPLETED:
            return StreamEnd.DONE if self.terminated_cleanly else StreamEnd.EOF
        return None

    def snapshot(self) -> R | None:
        """Merged result so far. None once the stream has failed."""
        if self.state is StreamState.FAILED:
            return None
        result = self._accumulator.snapshot()
        if dataclasses.is_dataclass(result):
            result = dataclasses.replace(result, metadata=self.metadata, end=self._end())
        return result

    def _decode(self, payload: str) -> F | None:
        if self._debug:
            logger.debug("%s frame: %s", self._label, payload)
        try:
            fragment = self._parse(json.loads(payload))
        except (ValueError, OverflowError, RecursionError) as exc:
            self._decode_errors += 1
            self.skipped += 1
            logger.warning(
                "%s: skipping undecodable payload (%s): %.200s", self._label, exc, payload
            )
            if self._max_decode_errors is not None and self._decode_errors >= self._max_decode_errors:
                raise StreamDecodeError(
                    f"{self._decode_errors} consecutive payloads could not be decoded",
                    last_payload=payload,
                ) from exc
            return None
        self._decode_errors = 0
        return fragment

    async def _propagate_cancel(self) -> None:
        if self._on_cancel is None:
            return
        partial = self.snapshot()
        logger.info("%s: cancelling server-side job", self._label)
        try:
            await self._on_cancel(partial)
        except JobCancellationError:
            raise
        except Exception as exc:
            logger.error("%s: remote cancel failed: %s", self._label, exc)
            raise JobCancellationError(
                f"{self._label}: stream cancelled but the remote job was not: {exc}",
                partial=partial,
                cause=exc,
            ) from exc

    async def _propagate_cancel_shielded(self) -> None:
        if self._on_cancel is None:
            return
        try:
            await asyncio.shield(self._propagate_cancel())
        except JobCancellationError as exc:
            logger.error("%s: %s", self._label, exc)

    async def run(self) -> AsyncIterator[F]:
        """Yield fragments as they are merged. Can only be consumed once."""
        if self.state is not StreamState.IDLE:
            raise RuntimeError(f"{self._label} has already been consumed")
        self._transition(StreamState.OPENING)
        try:
            async with self._open_response() as response:
                self.metadata = parse_metadata(response.headers)
                self._transition(StreamState.STREAMING)
                self.decoder = FrameDecoder(response.aiter_lines())
                payloads = aiter(self.decoder)
                try:
                    while True:
                        payload = await next_or_cancel(payloads, self._cancel)
                        if payload is END:
                            break
                        fragment = self._decode(payload)
                        if fragment is None:
                            continue
                        self._accumulator.feed(fragment)
                        yield fragment
                finally:
                    await payloads.aclose()
        except Cancelled:
            self._transition(StreamState.CANCELLED)
        except GeneratorExit:
            # The consumer stopped pulling.
            self._transition(StreamState.CANCELLED)
            await self._propagate_cancel()
            raise
        except asyncio.CancelledError:
            # The caller's task was cancelled; still try to stop the remote job.
            self._transition(StreamState.CANCELLED)
            await self._propagate_cancel_shielded()
            raise
        except httpx.TransportError as exc:
            self._transition(StreamState.FAILED)
            raise from_transport(exc) from exc
        except BaseException:
            self._transition(StreamState.FAILED)
            raise
        else:
            self._transition(StreamState.COMPLETED)
            return
        await self._propagate_cancel()


class EventStream(Generic[F, R]):
    """Pull-mode view of a stream::

        async with client.chat.stream(request) as stream:
            async for chunk in stream:
                print(chunk.content, end="")
        response = stream.snapshot()

    Iterating requires the ``async with`` block, which closes the exchange on
    exit. Leaving the loop early counts as cancellation.
    """

    def __init__(self, driver: StreamDriver[F, R]):
        self._driver = driver
        self._iterator: AsyncIterator[F] | None = None
        self._entered = False

    @property
    def state(self) -> StreamState:
        return self._driver.state

    @property
    def terminated_cleanly(self) -> bool:
        return self._driver.terminated_cleanly

    @property
    def metadata(self) -> ResponseMetadata | None:
        return self._driver.metadata

    def snapshot(self) -> R | None:
        return self._driver.snapshot()

    def __aiter__(self) -> EventStream[F, R]:
        return self

    async def __anext__(self) -> F:
        if not self._entered:
            raise RuntimeError(
                "Iterate the stream inside 'async with' so it is closed when you stop reading"
            )
        if self._iterator is None:
            self._iterator = self._driver.run()
        return await self._iterator.__anext__()

    async def aclose(self) -> None:
        if self._iterator is not None:
            await self._iterator.aclose()

    async def until_done(self) -> R | None:
        """Drain the remaining fragments and return the merged result."""
        if not self._entered:
            async with self:
                return await self.until_done()
        async for _ in self:
            pass
        return self.snapshot()

    async def __aenter__(self) -> EventStream[F, R]:
        self._entered = True
        return self

    async def __aexit__(self, *exc_info) -> None:
        try:
            await self.aclose()
        finally:
            self._entered = False


async def deliver(stream: EventStream[F, R], handler: FragmentHandler[F] | None) -> R:
    """Push-mode delivery: call ``handler`` per fragment, return the merged result.

    The next read waits until the handler (and any awaitable it returns)
    has finished.
    """
    async with stream:
        async for fragment in stream:
            if handler is None:
                continue
            result = handler(fragment)
            if inspect.isawaitable(result):
                await result
    return stream.snapshot()
