"""Line-delimited event stream decoding.

Each event arrives as ``data: <json>``. A ``data: [DONE]`` line ends the
stream. Blank lines, comments (``: keep-alive``) and other fields such as
``event:`` or ``id:`` are ignored.
"""

from __future__ import annotations

import logging
from typing import AsyncIterable, AsyncIterator, Iterable

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def extract_payload(line: str, prefix: str = DATA_PREFIX) -> str | None:
    """Return the payload of a data line, or None for lines to ignore.

    The sentinel is returned as-is; callers decide what it means.
    """
    if not line.startswith(prefix):
        return None
    payload = line[len(prefix):].strip()
    return payload or None


class FrameDecoder:
    """Lazily turns a source of text lines into JSON payload strings.

    Iterate it once. ``done`` becomes True when the sentinel was seen;
    ``exhausted`` becomes True when the source closed without it. A source
    fault propagates unchanged.
    """

    def __init__(
        self,
        lines: AsyncIterable[str],
        prefix: str = DATA_PREFIX,
        sentinel: str = DONE_SENTINEL,
    ):
        self._lines = lines
        self._prefix = prefix
        self._sentinel = sentinel
        self._started = False
        self.done = False
        self.exhausted = False
        self.frames = 0

    @property
    def terminated_cleanly(self) -> bool:
        return self.done

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("FrameDecoder can only be iterated once")
        self._started = True
        return self._payloads()

    async def _payloads(self) -> AsyncIterator[str]:
        async for line in self._lines:
            payload = extract_payload(line.rstrip("\r\n"), self._prefix)
            if payload is None:
                continue
            if payload == self._sentinel:
                self.done = True
                logger.debug("Sentinel received after %d frames", self.frames)
                return
            self.frames += 1
            yield payload
        self.exhausted = True
        logger.debug("Source closed without sentinel after %d frames", self.frames)


async def iter_lines(text: str | Iterable[str]) -> AsyncIterator[str]:
    """Adapt captured text (or an iterable of lines) to an async line source."""
    lines = text.splitlines() if isinstance(text, str) else text
    for line in lines:
        yield line
