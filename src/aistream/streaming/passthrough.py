"""Low-latency relay of a raw response body to another destination."""

from __future__ import annotations

import inspect
import logging
from typing import AsyncIterable

import httpx

from aistream.core.errors import from_transport
from aistream.llm.base import StreamDestination
from aistream.streaming.cancellation import END, Cancelled, CancellationToken, next_or_cancel

logger = logging.getLogger(__name__)


async def _call(method, *args) -> None:
    result = method(*args)
    if inspect.isawaitable(result):
        await result


async def _flush(destination: StreamDestination) -> None:
    flush = getattr(destination, "flush", None)
    if flush is not None:
        await _call(flush)


async def relay(
    source: AsyncIterable[bytes],
    destination: StreamDestination,
    *,
    cancel: CancellationToken | None = None,
) -> int:
    """Forward every chunk of ``source`` to ``destination`` as it arrives.

    At most one chunk is held at a time; the destination is flushed after
    each chunk and again when the source ends. Returns the bytes forwarded.
    """
    forwarded = 0
    chunks = aiter(source)
    try:
        while True:
            chunk = await next_or_cancel(chunks, cancel)
            if chunk is END:
                break
            if not chunk:
                continue
            await _call(destination.write, chunk)
            await _flush(destination)
            forwarded += len(chunk)
    except Cancelled:
        logger.debug("Relay cancelled after %d bytes", forwarded)
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
    await _flush(destination)
    logger.debug("Relayed %d bytes", forwarded)
    return forwarded


async def relay_response(
    response: httpx.Response,
    destination: StreamDestination,
    *,
    cancel: CancellationToken | None = None,
) -> int:
    """Relay a streamed httpx response body without decoding it."""
    try:
        return await relay(response.aiter_raw(), destination, cancel=cancel)
    except httpx.TransportError as exc:
        raise from_transport(exc) from exc
