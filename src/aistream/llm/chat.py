"""Chat completions resource with streaming and tool calling."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from aistream.core.errors import APIError, ErrorKind, FragmentError
from aistream.llm.base import FragmentHandler
from aistream.llm.types import ChatChunk, ChatResponse, Message
from aistream.streaming.accumulator import ChatAccumulator
from aistream.streaming.cancellation import CancellationToken
from aistream.streaming.driver import EventStream, StreamDriver, deliver

if TYPE_CHECKING:
    from aistream.core.client import APIClient

COMPLETIONS_PATH = "/chat/completions"


class ChatRequest(BaseModel):
    model: str
    messages: list[Any]  # Message objects or wire-format dicts
    tools: list[dict] | None = None
    tool_choice: str | dict | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    user: str | None = None
    stream_options: dict | None = None

    def to_payload(self, stream: bool = False) -> dict:
        """Convert to the JSON body, dropping unset fields."""
        payload = self.model_dump(exclude_none=True, exclude={"messages"})
        payload["messages"] = [
            m.to_dict() if isinstance(m, Message) else m for m in self.messages
        ]
        if stream:
            payload["stream"] = True
        return payload


class ChatEndpoint:
    """``/chat/completions``: one-shot, push-mode and pull-mode calls."""

    def __init__(self, client: APIClient):
        self._client = client

    async def create(self, request: ChatRequest) -> ChatResponse:
        """Non-streaming chat completion."""
        data, metadata = await self._client.request_json(
            "POST", COMPLETIONS_PATH, json=request.to_payload()
        )
        try:
            response = ChatResponse.from_dict(data)
        except FragmentError as exc:
            raise APIError(
                ErrorKind.DECODE, f"Malformed chat completion: {exc}", body=str(data)
            ) from exc
        response.metadata = metadata
        return response

    def stream(
        self,
        request: ChatRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> EventStream[ChatChunk, ChatResponse]:
        """Pull mode: iterate chunks, then read ``snapshot()`` for the merged response."""
        payload = request.to_payload(stream=True)
        config = self._client.settings.stream
        driver = StreamDriver(
            lambda: self._client.stream("POST", COMPLETIONS_PATH, json=payload),
            ChatChunk.from_payload,
            ChatAccumulator(),
            cancel=cancel,
            max_consecutive_decode_errors=config.max_consecutive_decode_errors,
            debug=config.debug,
            label="chat",
        )
        return EventStream(driver)

    async def stream_completion(
        self,
        request: ChatRequest,
        handler: FragmentHandler[ChatChunk] | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> ChatResponse:
        """Push mode: call ``handler`` with each chunk and return the merged response.

        A cancelled call returns the partial response with ``end`` set to
        ``StreamEnd.CANCELLED``.
        """
        return await deliver(self.stream(request, cancel=cancel), handler)
