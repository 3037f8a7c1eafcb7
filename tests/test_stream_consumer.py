"""Tests for solver/stream_consumer.py against the event shapes providers emit."""

import asyncio
from types import SimpleNamespace

import pytest

from solver.errors import SolveCancelled
from solver.stream_consumer import (
    consume_stream,
    event_name,
    extract_delta,
    extract_end_output,
    extract_finish_reason,
)
from tests.conftest import event_stream


def _lc_chunk(content, **metadata):
    """LangChain v2 on_chat_model_stream event with an AIMessageChunk-like chunk."""
    chunk = SimpleNamespace(content=content, response_metadata=metadata)
    return {"event": "on_chat_model_stream", "data": {"chunk": chunk}}


def _openai_chunk(content=None, finish_reason=None, usage=None):
    delta = SimpleNamespace(content=content)
    choice = SimpleNamespace(delta=delta, finish_reason=finish_reason)
    return SimpleNamespace(choices=[choice] if content is not None or finish_reason else [], usage=usage)


@pytest.mark.parametrize(
    "payload, expected",
    [
        ("raw", "raw"),
        ({"text": "t"}, "t"),
        ({"content": "c"}, "c"),
        ({"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}, "ab"),
        ({"message": {"content": "m"}}, "m"),
        ({"delta": {"content": "d"}}, "d"),
        ({"delta": {"text": "dt"}}, "dt"),
        ({"choices": [{"delta": {"content": "oc"}}]}, "oc"),
        ({"chunk": {"content": "nested"}}, "nested"),
        ({"token": "tok"}, "tok"),
    ],
)
def test_extract_delta_shapes(payload, expected):
    assert extract_delta(payload) == expected


def test_extract_delta_nothing():
    assert extract_delta(None) is None
    assert extract_delta({"data": {}}) is None
    assert extract_delta({"content": ""}) is None


def test_event_name():
    assert event_name({"event": "on_chat_model_stream"}) == "on_chat_model_stream"
    assert event_name(SimpleNamespace(type="content_block_delta")) == "content_block_delta"
    assert event_name({}) == "unknown"


def test_extract_finish_reason_normalizes_max_tokens():
    assert extract_finish_reason({"stop_reason": "max_tokens"}) == "length"
    assert extract_finish_reason({"response_metadata": {"finish_reason": "stop"}}) == "stop"
    assert extract_finish_reason({"choices": [{"finish_reason": "length"}]}) == "length"
    assert extract_finish_reason("text") is None


def test_extract_end_output_picks_longest_generation():
    end = {
        "generations": [[{"text": "short"}, {"message": {"content": "the longer one"}}]],
        "llm_output": {"finish_reason": "stop"},
    }
    assert extract_end_output(end) == ("the longer one", "stop")


async def test_deltas_concatenate_in_order():
    seen = []
    consumed = await consume_stream(
        event_stream(_lc_chunk("题目："), _lc_chunk("1+1"), _lc_chunk("\n\n解答：2")),
        on_delta=seen.append,
    )
    assert consumed.content == "题目：1+1\n\n解答：2"
    assert consumed.delta_count == 3
    assert seen == ["题目：", "1+1", "\n\n解答：2"]
    assert consumed.observed_event_names == {"on_chat_model_stream"}


async def test_array_content_chunks():
    events = [
        _lc_chunk([{"type": "text", "text": "Hello"}]),
        _lc_chunk([{"type": "text", "text": " world"}]),
    ]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.content == "Hello world"


async def test_end_output_replaces_shorter_content():
    events = [
        _lc_chunk("partial"),
        {
            "event": "on_chat_model_end",
            "data": {"output": {"content": "partial and complete", "response_metadata": {"finish_reason": "stop"}}},
        },
    ]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.content == "partial and complete"
    assert consumed.finish_reason == "stop"
    assert consumed.delta_count == 1


async def test_end_output_shorter_than_deltas_is_ignored():
    events = [_lc_chunk("a long streamed answer"), {"event": "on_llm_end", "data": {"output": {"text": "short"}}}]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.content == "a long streamed answer"


async def test_end_output_only():
    events = [{"event": "on_llm_end", "data": {"output": {"generations": [[{"text": "from end"}]]}}}]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.content == "from end"
    assert consumed.delta_count == 0


async def test_token_usage_on_end_event():
    events = [
        _lc_chunk("x"),
        {
            "event": "on_chat_model_end",
            "data": {"output": {"content": "x", "usage_metadata": {"input_tokens": 30, "output_tokens": 12}}},
        },
    ]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.tokens_used == 42


async def test_token_usage_keeps_max_observed():
    events = [
        {"token": "a", "usage": {"total_tokens": 5}},
        {"token": "b", "usage": {"total_tokens": 9}},
        {"token": "c", "usage": {"total_tokens": 7}},
    ]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.content == "abc"
    assert consumed.tokens_used == 9


async def test_no_usage_reported():
    consumed = await consume_stream(event_stream("a", "b"))
    assert consumed.content == "ab"
    assert consumed.tokens_used is None
    assert consumed.finish_reason is None


async def test_openai_chunk_stream():
    events = [
        _openai_chunk("题目：2+2"),
        _openai_chunk("\n\n解答：4"),
        _openai_chunk(finish_reason="stop"),
        _openai_chunk(usage=SimpleNamespace(prompt_tokens=20, completion_tokens=6, total_tokens=26)),
    ]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.content == "题目：2+2\n\n解答：4"
    assert consumed.finish_reason == "stop"
    assert consumed.tokens_used == 26


async def test_anthropic_event_stream():
    events = [
        SimpleNamespace(
            type="message_start",
            message=SimpleNamespace(content=[], usage=SimpleNamespace(input_tokens=15, output_tokens=1)),
        ),
        SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="解答：")),
        SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="4")),
        SimpleNamespace(
            type="message_delta",
            delta=SimpleNamespace(stop_reason="max_tokens"),
            usage=SimpleNamespace(output_tokens=8),
        ),
    ]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.content == "解答：4"
    assert consumed.finish_reason == "length"
    assert consumed.tokens_used == 23
    assert consumed.observed_event_names == {"message_start", "content_block_delta", "message_delta"}


async def test_anthropic_usage_sums_input_and_output():
    """Input tokens arrive on message_start, output tokens on message_delta."""
    events = [
        SimpleNamespace(
            type="message_start",
            message=SimpleNamespace(content=[], usage=SimpleNamespace(input_tokens=1000, output_tokens=1)),
        ),
        SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="解答：x")),
        SimpleNamespace(
            type="message_delta",
            delta=SimpleNamespace(stop_reason="end_turn"),
            usage=SimpleNamespace(output_tokens=400),
        ),
    ]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.tokens_used == 1400


async def test_finish_reason_from_chunk_metadata():
    events = [_lc_chunk("ok"), _lc_chunk("", finish_reason="length")]
    consumed = await consume_stream(event_stream(*events))
    assert consumed.finish_reason == "length"
    assert consumed.delta_count == 1


async def test_cancelled_before_first_event():
    signal = asyncio.Event()
    signal.set()
    with pytest.raises(SolveCancelled):
        await consume_stream(event_stream("a"), signal=signal)


async def test_cancelled_mid_stream_closes_iterator():
    signal = asyncio.Event()
    closed = []

    async def events():
        try:
            yield "a"
            signal.set()
            yield "b"
            yield "c"
        finally:
            closed.append(True)

    seen = []
    with pytest.raises(SolveCancelled):
        await consume_stream(events(), on_delta=seen.append, signal=signal)
    assert seen == ["a"]
    assert closed == [True]
