"""Tests for the stream consumer and tool-argument parsing."""
from __future__ import annotations

from agentic_coder.application.stream_consumer import (
    StreamConsumer,
    parse_partial_tool_input,
    parse_tool_input,
)
from agentic_coder.domain import TextContent, ToolUse
from agentic_coder.domain.stream import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    MessageDelta,
    MessageStart,
    MessageStop,
)

from conftest import response, text_block, tool_block


def _consume(events):
    pokes = []
    consumer = StreamConsumer([], lambda: pokes.append(1))
    for event in events:
        consumer.handle(event)
    return consumer, pokes


def test_text_and_tool_blocks_in_arrival_order():
    consumer, pokes = _consume(response(
        text_block("Reading the file now.", index=0),
        tool_block("read_file", {"path": "src/app.py"}, index=1),
    ))
    consumer.finish()
    text, tool = consumer.blocks
    assert isinstance(text, TextContent) and text.content == "Reading the file now."
    assert isinstance(tool, ToolUse)
    assert tool.name == "read_file"
    assert tool.params == {"path": "src/app.py"}
    assert not text.partial and not tool.partial
    assert pokes


def test_blocks_stay_partial_until_stop():
    consumer, _ = _consume([
        ContentBlockStart(index=0, block_type="tool_use", tool_id="t1", tool_name="write_to_file"),
        ContentBlockDelta(index=0, delta_type="input_json_delta", partial_json='{"path": "a.txt", "content": "hel'),
    ])
    block = consumer.blocks[0]
    assert block.partial
    # best-effort preview of the unfinished arguments
    assert block.params["path"] == "a.txt"
    assert block.params["content"] == "hel"

    consumer.handle(ContentBlockDelta(index=0, delta_type="input_json_delta", partial_json='lo"}'))
    consumer.handle(ContentBlockStop(index=0))
    assert not block.partial
    assert block.params == {"path": "a.txt", "content": "hello"}


def test_invalid_tool_json_yields_empty_params():
    consumer, _ = _consume([
        ContentBlockStart(index=0, block_type="tool_use", tool_id="t1", tool_name="read_file"),
        ContentBlockDelta(index=0, delta_type="input_json_delta", partial_json="{not json"),
        ContentBlockStop(index=0),
    ])
    block = consumer.blocks[0]
    assert block.params == {}
    assert block.raw_input == "{not json"
    assert not block.partial


def test_usage_accumulates_from_start_and_delta():
    consumer, _ = _consume([
        MessageStart(input_tokens=10, cache_creation_input_tokens=3, cache_read_input_tokens=4),
        MessageDelta(output_tokens=7, input_tokens=2, stop_reason="end_turn"),
        MessageStop(),
    ])
    assert consumer.usage.input_tokens == 12
    assert consumer.usage.output_tokens == 7
    assert consumer.usage.cache_writes == 3
    assert consumer.usage.cache_reads == 4
    assert consumer.stop_reason == "end_turn"
    assert consumer.blocks == []


def test_text_delta_without_open_block_starts_one():
    consumer, _ = _consume([ContentBlockDelta(index=0, delta_type="text_delta", text="orphan")])
    assert len(consumer.blocks) == 1
    assert consumer.blocks[0].content == "orphan"


def test_finish_finalizes_blocks_left_open():
    consumer, _ = _consume([
        ContentBlockStart(index=0, block_type="text"),
        ContentBlockDelta(index=0, delta_type="text_delta", text="cut off"),
    ])
    assert consumer.blocks[0].partial
    consumer.finish()
    assert consumer.blocks[0].partial is False


def test_parse_helpers():
    assert parse_tool_input("") == {}
    assert parse_tool_input("[1, 2]") == {}
    assert parse_tool_input('{"a": 1}') == {"a": 1}
    assert parse_partial_tool_input('{"path": "x') == {"path": "x"}
    assert parse_partial_tool_input('{"items": ["a"') == {"items": ["a"]}
    assert parse_partial_tool_input("{") == {}
