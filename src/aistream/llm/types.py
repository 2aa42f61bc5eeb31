"""Chat data types: complete results and the fragments that build them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from aistream.core.errors import FragmentError
from aistream.core.headers import ResponseMetadata

# Choice and tool-call positions are materialized densely, so they are capped.
MAX_INDEX = 1024


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class StreamEnd(str, Enum):
    """How a streamed result came to an end."""
    DONE = "done"  # sentinel observed
    EOF = "eof"  # source closed before the sentinel
    CANCELLED = "cancelled"


def _opt_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise FragmentError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _opt_index(data: dict, key: str = "index") -> int | None:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise FragmentError(f"'{key}' must be a non-negative integer, got {value!r}")
    if value > MAX_INDEX:
        raise FragmentError(f"'{key}' {value} exceeds the limit of {MAX_INDEX}")
    return value


def _opt_role(data: dict) -> Role | None:
    value = _opt_str(data, "role")
    if not value:
        return None
    try:
        return Role(value)
    except ValueError:
        raise FragmentError(f"Unknown role: {value!r}") from None


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> Usage | None:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise FragmentError("'usage' must be an object")
        try:
            return cls(
                prompt_tokens=int(data.get("prompt_tokens") or 0),
                completion_tokens=int(data.get("completion_tokens") or 0),
                total_tokens=int(data.get("total_tokens") or 0),
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise FragmentError(f"Invalid usage counts: {e}") from e

    def to_display_string(self) -> str:
        return (
            f"prompt: {self.prompt_tokens} | completion: {self.completion_tokens}"
            f" | total: {self.total_tokens}"
        )


@dataclass
class FunctionCall:
    name: str = ""
    arguments: str = ""  # JSON text; only guaranteed complete once the stream ends


@dataclass
class ToolCall:
    id: str = ""
    type: str = "function"
    function: FunctionCall = field(default_factory=FunctionCall)
    index: int | None = None

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        return self.function.arguments

    def to_display_string(self) -> str:
        return f"{self.function.name}({self.function.arguments})"

    @classmethod
    def from_dict(cls, data: Any) -> ToolCall:
        if not isinstance(data, dict):
            raise FragmentError("tool call must be an object")
        function = data.get("function") or {}
        if not isinstance(function, dict):
            raise FragmentError("tool call 'function' must be an object")
        return cls(
            id=_opt_str(data, "id") or "",
            type=_opt_str(data, "type") or "function",
            function=FunctionCall(
                name=_opt_str(function, "name") or "",
                arguments=_opt_str(function, "arguments") or "",
            ),
            index=_opt_index(data),
        )


@dataclass
class ToolCallFragment:
    """Partial tool call. ``index`` is the merge key when present."""

    index: int | None = None
    id: str | None = None
    type: str | None = None
    name: str | None = None
    arguments: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ToolCallFragment:
        if not isinstance(data, dict):
            raise FragmentError("tool call fragment must be an object")
        function = data.get("function") or {}
        if not isinstance(function, dict):
            raise FragmentError("tool call fragment 'function' must be an object")
        return cls(
            index=_opt_index(data),
            id=_opt_str(data, "id"),
            type=_opt_str(data, "type"),
            name=_opt_str(function, "name"),
            arguments=_opt_str(function, "arguments"),
        )


@dataclass
class Delta:
    role: Role | None = None
    content: str | None = None
    name: str | None = None
    tool_calls: list[ToolCallFragment] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Delta:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise FragmentError("'delta' must be an object")
        raw_calls = data.get("tool_calls")
        if raw_calls is not None and not isinstance(raw_calls, list):
            raise FragmentError("'tool_calls' must be a list")
        return cls(
            role=_opt_role(data),
            content=_opt_str(data, "content"),
            name=_opt_str(data, "name"),
            tool_calls=[ToolCallFragment.from_dict(tc) for tc in raw_calls] if raw_calls else None,
        )


@dataclass
class ChoiceDelta:
    index: int
    delta: Delta
    finish_reason: str | None = None


@dataclass
class ChatChunk:
    """One decoded stream payload: zero or more choice deltas plus usage."""

    id: str | None = None
    created: int | None = None
    model: str | None = None
    choices: list[ChoiceDelta] = field(default_factory=list)
    usage: Usage | None = None

    @classmethod
    def from_payload(cls, data: Any) -> ChatChunk:
        if not isinstance(data, dict):
            raise FragmentError("chunk payload must be a JSON object")
        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise FragmentError("'choices' must be a list")
        choices = []
        for raw in raw_choices:
            if not isinstance(raw, dict):
                raise FragmentError("choice must be an object")
            index = _opt_index(raw)
            choices.append(ChoiceDelta(
                index=0 if index is None else index,
                delta=Delta.from_dict(raw.get("delta")),
                finish_reason=_opt_str(raw, "finish_reason"),
            ))
        created = data.get("created")
        return cls(
            id=_opt_str(data, "id"),
            created=created if isinstance(created, int) else None,
            model=_opt_str(data, "model"),
            choices=choices,
            usage=Usage.from_dict(data.get("usage")),
        )

    @property
    def content(self) -> str:
        """Text carried by the first choice's delta, if any."""
        for choice in self.choices:
            if choice.index == 0:
                return choice.delta.content or ""
        return ""


@dataclass
class Message:
    role: Role | None = None
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    name: str | None = None
    tool_call_id: str | None = None

    def to_display_string(self) -> str:
        return self.content

    def to_dict(self) -> dict:
        """Wire form for request payloads."""
        d: dict = {"role": self.role.value if self.role else Role.USER.value}
        d["content"] = self.content
        if self.tool_calls:
            d["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": tc.type,
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    },
                }
                for tc in self.tool_calls
            ]
        if self.tool_call_id is not None:
            d["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            d["name"] = self.name
        return d

    @classmethod
    def from_dict(cls, data: Any) -> Message:
        if not isinstance(data, dict):
            raise FragmentError("'message' must be an object")
        raw_calls = data.get("tool_calls")
        if raw_calls is not None and not isinstance(raw_calls, list):
            raise FragmentError("'tool_calls' must be a list")
        return cls(
            role=_opt_role(data),
            content=_opt_str(data, "content") or "",
            tool_calls=[ToolCall.from_dict(tc) for tc in raw_calls] if raw_calls else None,
            name=_opt_str(data, "name"),
            tool_call_id=_opt_str(data, "tool_call_id"),
        )


@dataclass
class Choice:
    index: int
    message: Message = field(default_factory=Message)
    finish_reason: str | None = None

    def to_display_string(self) -> str:
        return self.message.to_display_string()


@dataclass
class ChatResponse:
    id: str | None = None
    created: int | None = None
    model: str | None = None
    usage: Usage | None = None
    choices: list[Choice] = field(default_factory=list)
    metadata: ResponseMetadata | None = None
    end: StreamEnd | None = None  # None for non-streamed responses

    @property
    def first_choice(self) -> Choice | None:
        for choice in self.choices:
            if choice.index == 0:
                return choice
        return None

    def to_display_string(self) -> str:
        choice = self.first_choice
        return choice.to_display_string() if choice else ""

    def usage_summary(self) -> str:
        if self.usage is None:
            return ""
        return f"{self.id} | {self.model} | {self.usage.to_display_string()}"

    @classmethod
    def from_dict(cls, data: Any) -> ChatResponse:
        """Parse a complete (non-streamed) chat completion object."""
        if not isinstance(data, dict):
            raise FragmentError("response must be a JSON object")
        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise FragmentError("'choices' must be a list")
        choices = []
        for position, raw in enumerate(raw_choices):
            if not isinstance(raw, dict):
                raise FragmentError("choice must be an object")
            index = _opt_index(raw)
            choices.append(Choice(
                index=position if index is None else index,
                message=Message.from_dict(raw.get("message") or {}),
                finish_reason=_opt_str(raw, "finish_reason"),
            ))
        choices.sort(key=lambda c: c.index)
        created = data.get("created")
        return cls(
            id=_opt_str(data, "id"),
            created=created if isinstance(created, int) else None,
            model=_opt_str(data, "model"),
            usage=Usage.from_dict(data.get("usage")),
            choices=choices,
        )
