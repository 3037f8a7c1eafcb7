"""Reduce a heterogeneous model event stream to text, finish reason and usage.

Providers and wrappers disagree on event names (on_chat_model_stream,
on_llm_new_token, content_block_delta, raw chunks with no name at all) and on
where the text fragment lives. Each known location is one named extractor in
DELTA_EXTRACTORS; supporting a new provider shape is one more entry there.
"""

import asyncio
import logging
from collections.abc import AsyncIterable, Callable
from typing import Any

from solver.errors import check_cancelled
from solver.invokers.base import content_to_text
from solver.models import ConsumedStream
from solver.tokens import extract_usage, get_field, get_path

logger = logging.getLogger(__name__)

DeltaExtractor = Callable[[Any], "str | None"]

_END_FIELDS = ("output", "response", "result")
_WRAPPER_FIELDS = ("chunk", "token")
_FINISH_REASON_ALIASES = {"max_tokens": "length", "MAX_TOKENS": "length"}

_FINISH_REASON_PATHS: tuple[tuple[str, ...], ...] = (
    ("finish_reason",),
    ("finishReason",),
    ("stop_reason",),
    ("delta", "stop_reason"),
    ("response_metadata", "finish_reason"),
    ("response_metadata", "stop_reason"),
    ("generation_info", "finish_reason"),
    ("generationInfo", "finish_reason"),
    ("generationInfo", "finishReason"),
    ("llm_output", "finish_reason"),
    ("llmOutput", "finish_reason"),
    ("llmOutput", "finishReason"),
)


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _from_raw_string(payload: Any) -> str | None:
    return _str_or_none(payload)


def _from_text(payload: Any) -> str | None:
    return _str_or_none(get_field(payload, "text"))


def _from_content(payload: Any) -> str | None:
    return _str_or_none(content_to_text(get_field(payload, "content")))


def _from_message_content(payload: Any) -> str | None:
    return _str_or_none(content_to_text(get_path(payload, "message", "content")))


def _from_delta_content(payload: Any) -> str | None:
    return _str_or_none(content_to_text(get_path(payload, "delta", "content")))


def _from_delta_text(payload: Any) -> str | None:
    return _str_or_none(get_path(payload, "delta", "text"))


def _first_choice(payload: Any) -> Any:
    choices = get_field(payload, "choices")
    if isinstance(choices, (list, tuple)) and choices:
        return choices[0]
    return None


def _from_choice_delta(payload: Any) -> str | None:
    return _str_or_none(content_to_text(get_path(_first_choice(payload), "delta", "content")))


def _from_wrapper(payload: Any) -> str | None:
    for name in _WRAPPER_FIELDS:
        inner = get_field(payload, name)
        if inner is not None:
            return extract_delta(inner)
    return None


# Tried in order; the first non-empty match wins.
DELTA_EXTRACTORS: tuple[tuple[str, DeltaExtractor], ...] = (
    ("raw_string", _from_raw_string),
    ("text", _from_text),
    ("content", _from_content),
    ("message.content", _from_message_content),
    ("delta.content", _from_delta_content),
    ("delta.text", _from_delta_text),
    ("choices[0].delta.content", _from_choice_delta),
    ("chunk|token", _from_wrapper),
)


def extract_delta(payload: Any) -> str | None:
    """Return the text fragment carried by one event payload, if any."""
    if payload is None:
        return None
    for _name, extractor in DELTA_EXTRACTORS:
        delta = extractor(payload)
        if delta:
            return delta
    return None


def event_name(event: Any) -> str:
    for name in ("event", "name", "type"):
        value = get_field(event, name)
        if isinstance(value, str) and value:
            return value
    return "unknown"


def normalize_finish_reason(reason: Any) -> str | None:
    if not isinstance(reason, str) or not reason:
        return None
    return _FINISH_REASON_ALIASES.get(reason, reason)


def extract_finish_reason(obj: Any) -> str | None:
    if obj is None or isinstance(obj, str):
        return None
    for path in _FINISH_REASON_PATHS:
        reason = normalize_finish_reason(get_path(obj, *path))
        if reason:
            return reason
    return normalize_finish_reason(get_field(_first_choice(obj), "finish_reason"))


def _generations(end: Any) -> list[Any]:
    """LLMResult generations may be a flat list or a list of lists."""
    raw = get_field(end, "generations")
    if not isinstance(raw, (list, tuple)):
        return []
    flat: list[Any] = []
    for item in raw:
        if isinstance(item, (list, tuple)):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def extract_end_output(end: Any) -> tuple[str, str | None]:
    """Longest final text and the finish reason from an end-of-generation payload."""
    if isinstance(end, str):
        return end, None
    candidates = [
        content_to_text(get_field(end, "content")),
        get_field(end, "text"),
        get_field(end, "output_text"),
    ]
    finish_reason = extract_finish_reason(end)
    for generation in _generations(end):
        candidates.append(content_to_text(get_path(generation, "message", "content")))
        candidates.append(get_field(generation, "text"))
        finish_reason = finish_reason or extract_finish_reason(generation)
    texts = [c for c in candidates if isinstance(c, str) and c]
    return max(texts, key=len, default=""), finish_reason


def _max(current: int | None, seen: int | None) -> int | None:
    if seen is None:
        return current
    return seen if current is None else max(current, seen)


class _UsageTally:
    """Running maxima of the usage counts seen on a stream.

    OpenAI-style streams repeat a growing total. Anthropic reports input
    tokens on message_start and cumulative output tokens on message_delta,
    so the two sides are tracked apart and summed.
    """

    def __init__(self):
        self.total: int | None = None
        self.prompt: int | None = None
        self.completion: int | None = None

    def observe(self, total: int | None, prompt: int | None, completion: int | None) -> None:
        self.total = _max(self.total, total)
        self.prompt = _max(self.prompt, prompt)
        self.completion = _max(self.completion, completion)

    def tokens_used(self) -> int | None:
        split = None
        if self.prompt is not None or self.completion is not None:
            split = (self.prompt or 0) + (self.completion or 0)
        return _max(self.total, split)


async def consume_stream(
    events: AsyncIterable[Any],
    on_delta: Callable[[str], None] | None = None,
    signal: asyncio.Event | None = None,
) -> ConsumedStream:
    """Accumulate deltas from an event stream into one ConsumedStream.

    on_delta is called once per delta, in order. The end-of-generation text
    replaces the accumulated deltas when it is strictly longer.

    Raises:
        SolveCancelled: If the signal is set before or between events.
    """
    check_cancelled(signal)
    content = ""
    end_text = ""
    finish_reason: str | None = None
    usage = _UsageTally()
    delta_count = 0
    observed: set[str] = set()

    try:
        async for event in events:
            check_cancelled(signal)
            observed.add(event_name(event))

            data = get_field(event, "data")
            payload = data if data is not None else event

            delta = extract_delta(payload)
            if delta:
                content += delta
                delta_count += 1
                if on_delta:
                    on_delta(delta)

            chunk = None if isinstance(payload, str) else get_field(payload, "chunk")
            finish_reason = extract_finish_reason(payload) or extract_finish_reason(chunk) or finish_reason

            usage_sources = [event, chunk]
            containers = (event,) if payload is event else (payload, event)
            for container in containers:
                for field_name in _END_FIELDS:
                    end = None if isinstance(container, str) else get_field(container, field_name)
                    if end is None:
                        continue
                    usage_sources.append(end)
                    text, reason = extract_end_output(end)
                    if len(text) > len(end_text):
                        end_text = text
                    finish_reason = reason or finish_reason

            for source in usage_sources:
                if source is None or isinstance(source, str):
                    continue
                usage.observe(*extract_usage(source))
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()

    if len(end_text) > len(content):
        content = end_text

    logger.debug(
        "Stream consumed: %d deltas, %d chars, finish=%s, events=%s",
        delta_count,
        len(content),
        finish_reason,
        sorted(observed),
    )

    return ConsumedStream(
        content=content,
        finish_reason=finish_reason,
        tokens_used=usage.tokens_used(),
        delta_count=delta_count,
        observed_event_names=observed,
    )
