"""Tests for chatloop.llm.tool_call_assembler.ToolCallAssembler."""

from __future__ import annotations

import json

import pytest

from chatloop.llm.tool_call_assembler import ToolCallAssembler, parse_arguments
from chatloop.llm.types import ToolCallArgDelta, ToolCallEnd, ToolCallStart


def _feed_split(asm: ToolCallAssembler, idx: int, raw: str, cuts: list[int]) -> None:
    bounds = [0] + sorted(cuts) + [len(raw)]
    for a, b in zip(bounds, bounds[1:]):
        if raw[a:b]:
            asm.add_fragment(ToolCallArgDelta(index=idx, fragment=raw[a:b]))


class TestSingleToolCall:
    def test_basic_assembly(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="call_1", name="evaluate_expression"))
        asm.add_fragment(ToolCallArgDelta(index=0, fragment='{"expression": '))
        asm.add_fragment(ToolCallArgDelta(index=0, fragment='"2+2*3"}'))
        call = asm.end(ToolCallEnd(index=0))

        assert call is not None
        assert call.id == "call_1"
        assert call.name == "evaluate_expression"
        assert call.arguments == {"expression": "2+2*3"}
        assert asm.completed == [call]
        assert asm.errors == []

    def test_name_arrives_in_pieces(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="c", name="execute_"))
        asm.start(ToolCallStart(index=0, name="sql"))
        call = asm.end(ToolCallEnd(index=0))
        assert call.name == "execute_sql"
        assert call.arguments == {}

    def test_end_id_fills_missing_id(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=2, name="x"))
        call = asm.end(ToolCallEnd(index=2, id="toolu_9"))
        assert call.id == "toolu_9"

    def test_missing_id_gets_synthetic_one(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=3, name="x"))
        assert asm.end(ToolCallEnd(index=3)).id == "call_3"

    def test_end_for_unknown_index_is_ignored(self):
        asm = ToolCallAssembler()
        assert asm.end(ToolCallEnd(index=7)) is None
        assert asm.completed == []


class TestArgumentEdgeCases:
    def test_null_fragment_resets_buffer(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="c", name="get_knowledge_base_categories"))
        asm.add_fragment(ToolCallArgDelta(index=0, fragment="null"))
        call = asm.end(ToolCallEnd(index=0))
        assert call.arguments == {}
        assert asm.errors == []

    def test_malformed_json_keeps_call_with_empty_args(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="c", name="execute_sql"))
        asm.add_fragment(ToolCallArgDelta(index=0, fragment='{"query": "SEL'))
        call = asm.end(ToolCallEnd(index=0))
        assert call.name == "execute_sql"
        assert call.arguments == {}
        assert call.raw_arguments == '{"query": "SEL'
        assert len(asm.errors) == 1
        assert "execute_sql" in asm.errors[0]

    def test_non_object_json_is_rejected(self):
        args, err = parse_arguments("[1, 2]")
        assert args == {}
        assert "list" in err

    @pytest.mark.parametrize("raw", ["", "{}", "null", "  "])
    def test_empty_buffers_parse_to_empty_dict(self, raw):
        assert parse_arguments(raw) == ({}, None)


class TestMultipleCalls:
    def test_interleaved_fragments_by_index(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="a", name="first"))
        asm.start(ToolCallStart(index=1, id="b", name="second"))
        asm.add_fragment(ToolCallArgDelta(index=1, fragment='{"y": '))
        asm.add_fragment(ToolCallArgDelta(index=0, fragment='{"x": '))
        asm.add_fragment(ToolCallArgDelta(index=0, fragment="1}"))
        asm.add_fragment(ToolCallArgDelta(index=1, fragment="2}"))
        calls = asm.flush()

        assert [c.name for c in calls] == ["first", "second"]
        assert calls[0].arguments == {"x": 1}
        assert calls[1].arguments == {"y": 2}

    def test_flush_finalizes_open_calls_once(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="a", name="one"))
        asm.end(ToolCallEnd(index=0))
        asm.start(ToolCallStart(index=1, id="b", name="two"))
        flushed = asm.flush()
        assert [c.name for c in flushed] == ["two"]
        assert [c.name for c in asm.completed] == ["one", "two"]
        assert asm.pending == 0

    def test_reset(self):
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="a", name="one"))
        asm.add_fragment(ToolCallArgDelta(index=0, fragment="{bad"))
        asm.flush()
        asm.reset()
        assert asm.completed == [] and asm.errors == [] and asm.pending == 0


class TestSplitInvariance:
    """Arguments split at any boundaries assemble to the single-chunk result."""

    ARGS = {
        "query": "SELECT name, \"status\" FROM frpair WHERE acct = 'ü-42'",
        "nested": {"a": [1, 2, {"b": None}], "flag": True},
        "n": 3.5,
    }

    @pytest.mark.parametrize("cuts", [
        [],
        [1],
        [5, 6, 7],
        [10, 20, 30, 40, 50],
        list(range(1, 60, 3)),
    ])
    def test_any_split_matches_whole(self, cuts):
        raw = json.dumps(self.ARGS, ensure_ascii=False)
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="c", name="tool"))
        _feed_split(asm, 0, raw, [c for c in cuts if c < len(raw)])
        call = asm.end(ToolCallEnd(index=0))
        assert call.arguments == self.ARGS

    def test_every_single_character_split(self):
        raw = json.dumps(self.ARGS)
        asm = ToolCallAssembler()
        asm.start(ToolCallStart(index=0, id="c", name="tool"))
        _feed_split(asm, 0, raw, list(range(1, len(raw))))
        assert asm.end(ToolCallEnd(index=0)).arguments == self.ARGS
