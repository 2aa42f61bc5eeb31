"""Tests for merging streamed chat fragments."""

import pytest

from aistream.core.errors import FragmentError
from aistream.llm.types import ChatChunk, Delta, Role, ToolCallFragment, Usage
from aistream.streaming.accumulator import ChatAccumulator


def _tool(index=None, id=None, name=None, arguments=None):
    return ToolCallFragment(index=index, id=id, name=name, arguments=arguments)


class TestContent:
    @pytest.mark.parametrize("fragments", [
        ["Hello", ", ", "world"],
        ["", "a", "", "b", ""],
        ["x" * 1000, "y"],
        [],
    ])
    def test_concatenation_order(self, fragments):
        acc = ChatAccumulator()
        for text in fragments:
            acc.merge(Delta(content=text), 0)
        assert acc.snapshot().to_display_string() == "".join(fragments)

    def test_choices_kept_apart(self):
        acc = ChatAccumulator()
        acc.merge(Delta(content="a"), 0)
        acc.merge(Delta(content="b"), 1)
        acc.merge(Delta(content="c"), 0)
        response = acc.snapshot()
        assert [c.message.content for c in response.choices] == ["ac", "b"]


class TestRoleAndName:
    def test_first_role_wins(self):
        acc = ChatAccumulator()
        acc.merge(Delta(role=Role.ASSISTANT), 0)
        acc.merge(Delta(role=Role.TOOL), 0)
        acc.merge(Delta(content="x"), 0)
        message = acc.snapshot().choices[0].message
        assert message.role is Role.ASSISTANT
        assert message.content == "x"

    def test_first_name_wins(self):
        acc = ChatAccumulator()
        acc.merge(Delta(name="alice"), 0)
        acc.merge(Delta(name="bob"), 0)
        assert acc.snapshot().choices[0].message.name == "alice"

    def test_role_absent_until_seen(self):
        acc = ChatAccumulator()
        acc.merge(Delta(content="x"), 0)
        assert acc.snapshot().choices[0].message.role is None


class TestToolCalls:
    def test_positional_merge(self):
        acc = ChatAccumulator()
        acc.merge(Delta(tool_calls=[_tool(0, id="call_1", name="f")]), 0)
        acc.merge(Delta(tool_calls=[_tool(0, arguments='{"a":')]), 0)
        acc.merge(Delta(tool_calls=[_tool(0, arguments="1}")]), 0)
        calls = acc.snapshot().choices[0].message.tool_calls
        assert len(calls) == 1
        assert calls[0].id == "call_1"
        assert calls[0].name == "f"
        assert calls[0].arguments == '{"a":1}'
        assert calls[0].type == "function"

    def test_out_of_order_indices(self):
        acc = ChatAccumulator()
        acc.merge(Delta(tool_calls=[_tool(1, name="second")]), 0)
        acc.merge(Delta(tool_calls=[_tool(0, name="first")]), 0)
        calls = acc.snapshot().choices[0].message.tool_calls
        assert [tc.index for tc in calls] == [0, 1]
        assert [tc.name for tc in calls] == ["first", "second"]

    def test_name_set_once(self):
        acc = ChatAccumulator()
        acc.merge(Delta(tool_calls=[_tool(0, name="f")]), 0)
        acc.merge(Delta(tool_calls=[_tool(0, name="g", arguments="{}")]), 0)
        call = acc.snapshot().choices[0].message.tool_calls[0]
        assert call.name == "f"
        assert call.arguments == "{}"

    def test_gap_filled_with_placeholder(self):
        acc = ChatAccumulator()
        acc.merge(Delta(tool_calls=[_tool(2, id="call_3", name="f")]), 0)
        calls = acc.snapshot().choices[0].message.tool_calls
        assert len(calls) == 3
        assert calls[0].id == "" and calls[0].name == ""
        assert calls[2].id == "call_3"

    def test_missing_index_appends(self):
        acc = ChatAccumulator()
        acc.merge(Delta(tool_calls=[_tool(0, name="a")]), 0)
        acc.merge(Delta(tool_calls=[_tool(name="b", arguments="{}")]), 0)
        acc.merge(Delta(tool_calls=[_tool(name="c")]), 0)
        calls = acc.snapshot().choices[0].message.tool_calls
        assert [tc.name for tc in calls] == ["a", "b", "c"]
        assert calls[1].arguments == "{}"

    def test_no_tool_calls_is_none(self):
        acc = ChatAccumulator()
        acc.merge(Delta(content="hi"), 0)
        assert acc.snapshot().choices[0].message.tool_calls is None


class TestChunkFields:
    def test_finish_reason_last_non_null(self):
        acc = ChatAccumulator()
        acc.merge(Delta(content="a"), 0, "length")
        acc.merge(Delta(content="b"), 0, None)
        assert acc.snapshot().choices[0].finish_reason == "length"
        acc.merge(Delta(), 0, "stop")
        assert acc.snapshot().choices[0].finish_reason == "stop"

    def test_usage_last_writer(self):
        acc = ChatAccumulator()
        acc.feed(ChatChunk(usage=Usage(1, 2, 3)))
        acc.feed(ChatChunk())
        acc.feed(ChatChunk(usage=Usage(4, 5, 9)))
        assert acc.snapshot().usage == Usage(4, 5, 9)

    def test_metadata_first_writer(self):
        acc = ChatAccumulator()
        acc.feed(ChatChunk(id="a", model="m1", created=1))
        acc.feed(ChatChunk(id="b", model="m2", created=2))
        response = acc.snapshot()
        assert (response.id, response.model, response.created) == ("a", "m1", 1)
        assert acc.fragments == 2

    def test_choice_gaps_are_placeholders(self):
        acc = ChatAccumulator()
        acc.merge(Delta(content="x"), 2)
        response = acc.snapshot()
        assert [c.index for c in response.choices] == [0, 1, 2]
        assert response.choices[0].message.content == ""

    def test_snapshot_is_independent(self):
        acc = ChatAccumulator()
        acc.merge(Delta(content="a", tool_calls=[_tool(0, arguments="{")]), 0)
        first = acc.snapshot()
        acc.merge(Delta(content="b", tool_calls=[_tool(0, arguments="}")]), 0)
        assert first.choices[0].message.content == "a"
        assert first.choices[0].message.tool_calls[0].arguments == "{"
        assert acc.snapshot().choices[0].message.tool_calls[0].arguments == "{}"

    def test_empty_snapshot(self):
        response = ChatAccumulator().snapshot()
        assert response.choices == []
        assert response.to_display_string() == ""


class TestChunkParsing:
    def test_missing_choice_index_defaults_to_zero(self):
        chunk = ChatChunk.from_payload({"choices": [{"delta": {"content": "hi"}}]})
        assert chunk.choices[0].index == 0
        assert chunk.content == "hi"

    @pytest.mark.parametrize("payload", [
        [1, 2],
        {"choices": "nope"},
        {"choices": [{"index": -1, "delta": {}}]},
        {"choices": [{"index": True, "delta": {}}]},
        {"choices": [{"index": 5000, "delta": {}}]},
        {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": 10**9}]}}]},
        {"choices": [], "usage": {"prompt_tokens": float("inf")}},
        {"choices": [{"index": 0, "delta": {"role": "wizard"}}]},
        {"choices": [{"index": 0, "delta": {"content": 5}}]},
        {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": "0"}]}}]},
    ])
    def test_unusable_payloads(self, payload):
        with pytest.raises(FragmentError):
            ChatChunk.from_payload(payload)

    def test_usage_only_chunk(self):
        chunk = ChatChunk.from_payload({
            "choices": [],
            "usage": {"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7},
        })
        assert chunk.choices == []
        assert chunk.usage.total_tokens == 7
