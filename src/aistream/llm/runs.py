"""Assistant thread runs: a long-running server-side job with a streamed event feed.

Run events reuse the chat frame format; each payload is a JSON object whose
``object`` field names its kind (``thread.run``, ``thread.message.delta``,
...). Cancelling the local stream also asks the server to cancel the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from aistream.core.errors import FragmentError, JobCancellationError
from aistream.core.headers import ResponseMetadata
from aistream.llm.base import FragmentHandler
from aistream.llm.types import StreamEnd
from aistream.streaming.cancellation import CancellationToken
from aistream.streaming.driver import EventStream, StreamDriver, deliver

if TYPE_CHECKING:
    from aistream.core.client import APIClient

logger = logging.getLogger(__name__)

ASSISTANTS_BETA = {"OpenAI-Beta": "assistants=v2"}

# Server-side failure in the event feed: a {"code", "message"} object with no "object" field.
ERROR_EVENT = "error"

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled", "expired", "incomplete"})
CANCEL_ACCEPTED = frozenset({"cancelling", "cancelled"}) | TERMINAL_STATUSES


def _error_detail(data: dict) -> dict | None:
    if isinstance(data.get("error"), dict):
        data = data["error"]
    if isinstance(data.get("message"), str) and "code" in data:
        return data
    return None


@dataclass
class RunEvent:
    object: str
    id: str | None = None
    data: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any) -> RunEvent:
        if not isinstance(data, dict):
            raise FragmentError("run event payload must be a JSON object")
        kind = data.get("object")
        if kind is None:
            error = _error_detail(data)
            if error is not None:
                return cls(object=ERROR_EVENT, data=error)
        if not isinstance(kind, str) or not kind:
            raise FragmentError("run event has no 'object' type")
        event_id = data.get("id")
        if kind == "thread.message.delta" and not isinstance(event_id, str):
            raise FragmentError("message delta without id")
        return cls(object=kind, id=event_id if isinstance(event_id, str) else None, data=data)


@dataclass
class RunSnapshot:
    thread_id: str
    run_id: str | None = None
    status: str | None = None
    last_error: dict | None = None
    messages: dict[str, str] = field(default_factory=dict)
    steps: dict[str, str] = field(default_factory=dict)
    metadata: ResponseMetadata | None = None
    end: StreamEnd | None = None

    def to_display_string(self) -> str:
        return "\n".join(text for text in self.messages.values() if text)


def _message_text(content: Any) -> list[str]:
    parts = []
    if not isinstance(content, list):
        return parts
    for item in content:
        if not isinstance(item, dict) or item.get("type") != "text":
            continue
        text = item.get("text")
        if isinstance(text, dict) and isinstance(text.get("value"), str):
            parts.append(text["value"])
    return parts


class RunAccumulator:
    """Folds run events into a :class:`RunSnapshot`.

    Run fields are last-writer-wins. Message text deltas are concatenated
    per message id; a completed message replaces them with its full text.
    """

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        self.run_id: str | None = None
        self.status: str | None = None
        self.last_error: dict | None = None
        self._messages: dict[str, list[str]] = {}
        self._steps: dict[str, str] = {}

    def feed(self, event: RunEvent) -> None:
        data = event.data
        if event.object == "thread.run":
            self.run_id = event.id or self.run_id
            if isinstance(data.get("thread_id"), str):
                self.thread_id = data["thread_id"]
            if data.get("status") is not None:
                self.status = data["status"]
            if data.get("last_error") is not None:
                self.last_error = data["last_error"]
        elif event.object == ERROR_EVENT:
            logger.warning("Run %s reported an error: %s", self.run_id, data.get("message"))
            self.last_error = data
        elif event.object == "thread.run.step":
            if event.id and data.get("status") is not None:
                self._steps[event.id] = data["status"]
            self._adopt_run_id(data)
        elif event.object == "thread.message.delta":
            delta = data.get("delta")
            parts = self._messages.setdefault(event.id, [])
            if isinstance(delta, dict):
                parts.extend(_message_text(delta.get("content")))
        elif event.object == "thread.message":
            if event.id is None:
                return
            self._adopt_run_id(data)
            parts = self._messages.setdefault(event.id, [])
            if data.get("status") == "completed":
                parts[:] = _message_text(data.get("content"))
        else:
            logger.debug("Ignoring run event of type %s", event.object)

    def _adopt_run_id(self, data: dict) -> None:
        if self.run_id is None and isinstance(data.get("run_id"), str):
            self.run_id = data["run_id"]

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            thread_id=self.thread_id,
            run_id=self.run_id,
            status=self.status,
            last_error=self.last_error,
            messages={mid: "".join(parts) for mid, parts in self._messages.items()},
            steps=dict(self._steps),
        )


class RunRequest(BaseModel):
    assistant_id: str
    model: str | None = None
    instructions: str | None = None
    additional_instructions: str | None = None
    tools: list[dict] | None = None
    metadata: dict | None = None
    temperature: float | None = None

    def to_payload(self, stream: bool = False) -> dict:
        payload = self.model_dump(exclude_none=True)
        if stream:
            payload["stream"] = True
        return payload


class RunsEndpoint:
    """``/threads/{thread_id}/runs``: streamed runs and cancellation."""

    def __init__(self, client: APIClient):
        self._client = client

    async def cancel(self, thread_id: str, run_id: str) -> dict:
        data, _ = await self._client.request_json(
            "POST",
            f"/threads/{thread_id}/runs/{run_id}/cancel",
            headers=ASSISTANTS_BETA,
        )
        return data

    async def _cancel_remote(self, snapshot: RunSnapshot) -> None:
        if not snapshot.run_id:
            raise JobCancellationError(
                "stream cancelled before the run id was known", partial=snapshot
            )
        if snapshot.status in TERMINAL_STATUSES:
            logger.info("Run %s already %s; nothing to cancel", snapshot.run_id, snapshot.status)
            return
        run = await self.cancel(snapshot.thread_id, snapshot.run_id)
        status = run.get("status") if isinstance(run, dict) else None
        if status not in CANCEL_ACCEPTED:
            raise JobCancellationError(
                f"run {snapshot.run_id} reported status {status!r} after cancel",
                partial=snapshot,
            )
        logger.info("Run %s is %s", snapshot.run_id, status)

    def stream(
        self,
        thread_id: str,
        request: RunRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> EventStream[RunEvent, RunSnapshot]:
        payload = request.to_payload(stream=True)
        config = self._client.settings.stream
        driver = StreamDriver(
            lambda: self._client.stream(
                "POST", f"/threads/{thread_id}/runs", json=payload, headers=ASSISTANTS_BETA
            ),
            RunEvent.from_payload,
            RunAccumulator(thread_id),
            cancel=cancel,
            on_cancel=self._cancel_remote,
            max_consecutive_decode_errors=config.max_consecutive_decode_errors,
            debug=config.debug,
            label=f"run[{thread_id}]",
        )
        return EventStream(driver)

    async def stream_run(
        self,
        thread_id: str,
        request: RunRequest,
        handler: FragmentHandler[RunEvent] | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> RunSnapshot:
        return await deliver(self.stream(thread_id, request, cancel=cancel), handler)
