"""Test fixtures for aistream."""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from aistream.core.client import APIClient
from aistream.core.config import ClientSettings


def sse_body(*payloads, done: bool = True) -> bytes:
    """Render payloads as ``data:`` lines, dicts as JSON and strings verbatim."""
    lines = []
    for payload in payloads:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {text}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def chat_chunk(content: str | None = None, *, index: int = 0, role: str | None = None,
               finish_reason: str | None = None, tool_calls: list | None = None,
               **extra) -> dict:
    delta: dict = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    chunk = {
        "id": "chatcmpl-1",
        "model": "gpt-4o-mini",
        "choices": [{"index": index, "delta": delta, "finish_reason": finish_reason}],
    }
    chunk.update(extra)
    return chunk


class RecordingTransport:
    """Serves canned responses through ``httpx.MockTransport`` and records requests."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self._handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def stream_response(body: bytes, status: int = 200, headers: dict | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status,
            content=body,
            headers={"content-type": "text/event-stream", **(headers or {})},
        )
    return handler


@pytest.fixture
def settings():
    return ClientSettings(api_key="test-key", base_url="https://api.test/v1")


@pytest.fixture
def make_client(settings):
    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> tuple[APIClient, RecordingTransport]:
        recorder = RecordingTransport(handler)
        client = APIClient(settings, transport=recorder.transport())
        return client, recorder

    return _make
