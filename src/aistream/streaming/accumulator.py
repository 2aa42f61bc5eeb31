"""Folds streamed chat fragments into a complete response.

Merge rules per choice:

* role and name: first non-empty value wins
* content: concatenated in arrival order
* tool calls: keyed by ``index``; id, type and function name are set once,
  arguments are concatenated. Fragments without an index always start a
  new call at the next free position.
* finish reason and usage: last non-null value wins
"""

from __future__ import annotations

from aistream.llm.types import (
    ChatChunk,
    ChatResponse,
    Choice,
    Delta,
    FunctionCall,
    Message,
    Role,
    ToolCall,
    ToolCallFragment,
    Usage,
)


class ChoiceAccumulator:
    """Mutable state for a single choice index."""

    def __init__(self, index: int):
        self.index = index
        self.role: Role | None = None
        self.name: str | None = None
        self.finish_reason: str | None = None
        self._content: list[str] = []
        self._tool_calls: dict[int, ToolCall] = {}

    @property
    def content(self) -> str:
        return "".join(self._content)

    def merge(self, delta: Delta, finish_reason: str | None = None) -> None:
        if delta.role and self.role is None:
            self.role = delta.role
        if delta.content:
            self._content.append(delta.content)
        if delta.name and self.name is None:
            self.name = delta.name
        if delta.tool_calls:
            for fragment in delta.tool_calls:
                self._merge_tool_call(fragment)
        if finish_reason is not None:
            self.finish_reason = finish_reason

    def _merge_tool_call(self, fragment: ToolCallFragment) -> None:
        if fragment.index is None:
            position = max(self._tool_calls, default=-1) + 1
        else:
            position = fragment.index
        tc = self._tool_calls.get(position)
        if tc is None or fragment.index is None:
            tc = ToolCall(id="", type="", function=FunctionCall(), index=position)
            self._tool_calls[position] = tc
        if fragment.id and not tc.id:
            tc.id = fragment.id
        if fragment.type and not tc.type:
            tc.type = fragment.type
        if fragment.name and not tc.function.name:
            tc.function.name = fragment.name
        if fragment.arguments:
            tc.function.arguments += fragment.arguments

    def tool_calls(self) -> list[ToolCall] | None:
        """Materialize tool calls in index order, filling gaps with placeholders."""
        if not self._tool_calls:
            return None
        result = []
        for position in range(max(self._tool_calls) + 1):
            tc = self._tool_calls.get(position)
            if tc is None:
                result.append(ToolCall(index=position))
                continue
            result.append(ToolCall(
                id=tc.id,
                type=tc.type or "function",
                function=FunctionCall(name=tc.function.name, arguments=tc.function.arguments),
                index=position,
            ))
        return result

    def snapshot(self) -> Choice:
        return Choice(
            index=self.index,
            message=Message(
                role=self.role,
                content=self.content,
                tool_calls=self.tool_calls(),
                name=self.name,
            ),
            finish_reason=self.finish_reason,
        )


class ChatAccumulator:
    """Folds :class:`ChatChunk` fragments into one :class:`ChatResponse`.

    Not thread-safe; one accumulator belongs to one stream.
    """

    def __init__(self) -> None:
        self.id: str | None = None
        self.created: int | None = None
        self.model: str | None = None
        self.usage: Usage | None = None
        self._choices: dict[int, ChoiceAccumulator] = {}
        self.fragments = 0

    def feed(self, chunk: ChatChunk) -> None:
        self.fragments += 1
        if chunk.id and self.id is None:
            self.id = chunk.id
        if chunk.created is not None and self.created is None:
            self.created = chunk.created
        if chunk.model and self.model is None:
            self.model = chunk.model
        for choice in chunk.choices:
            self.merge(choice.delta, choice.index, choice.finish_reason)
        if chunk.usage is not None:
            self.usage = chunk.usage

    def merge(self, delta: Delta, index: int, finish_reason: str | None = None) -> None:
        choice = self._choices.get(index)
        if choice is None:
            choice = ChoiceAccumulator(index)
            self._choices[index] = choice
        choice.merge(delta, finish_reason)

    def choice(self, index: int) -> ChoiceAccumulator | None:
        return self._choices.get(index)

    def snapshot(self) -> ChatResponse:
        """Return an independent copy of the state merged so far."""
        choices = []
        if self._choices:
            for index in range(max(self._choices) + 1):
                acc = self._choices.get(index)
                choices.append(acc.snapshot() if acc else Choice(index=index))
        usage = None
        if self.usage is not None:
            usage = Usage(
                prompt_tokens=self.usage.prompt_tokens,
                completion_tokens=self.usage.completion_tokens,
                total_tokens=self.usage.total_tokens,
            )
        return ChatResponse(
            id=self.id,
            created=self.created,
            model=self.model,
            usage=usage,
            choices=choices,
        )
