"""Token usage extraction from provider payloads and a fallback estimator."""

import math
from collections.abc import Mapping
from typing import Any

# Paths (from the response object) where providers report usage
_USAGE_PATHS: tuple[tuple[str, ...], ...] = (
    ("response_metadata", "tokenUsage"),
    ("response_metadata", "token_usage"),
    ("response_metadata", "usage"),
    ("response_metadata", "usage_metadata"),
    ("additional_kwargs", "usage"),
    ("additional_kwargs", "token_usage"),
    ("usage",),
    ("usage_metadata",),
    ("message", "usage"),
    ("llm_output", "tokenUsage"),
    ("llm_output", "token_usage"),
    ("llm_output", "usage"),
    ("llmOutput", "tokenUsage"),
    ("llmOutput", "token_usage"),
)

_TOTAL_KEYS = ("totalTokens", "total_tokens", "total", "tokens")
_PROMPT_KEYS = ("promptTokens", "prompt_tokens", "input_tokens")
_COMPLETION_KEYS = ("completionTokens", "completion_tokens", "output_tokens")


def get_field(obj: Any, name: str) -> Any:
    """Read a key from a mapping or an attribute from an object; None if absent."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def get_path(obj: Any, *names: str) -> Any:
    for name in names:
        obj = get_field(obj, name)
        if obj is None:
            return None
    return obj


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _first_int(usage: Any, keys: tuple[str, ...]) -> int | None:
    for key in keys:
        value = _as_int(get_field(usage, key))
        if value is not None:
            return value
    return None


def extract_usage(value: Any) -> tuple[int | None, int | None, int | None]:
    """(total, prompt, completion) from the first usage location that reports any of them."""
    if value is None:
        return None, None, None
    for path in _USAGE_PATHS:
        usage = get_path(value, *path)
        if usage is None:
            continue
        counts = (
            _first_int(usage, _TOTAL_KEYS),
            _first_int(usage, _PROMPT_KEYS),
            _first_int(usage, _COMPLETION_KEYS),
        )
        if any(count is not None for count in counts):
            return counts
    return None, None, None


def extract_total_tokens(value: Any) -> int | None:
    """Return the provider-reported total token count, or None if unreported."""
    total, prompt, completion = extract_usage(value)
    if total is not None:
        return total
    if prompt is not None or completion is not None:
        return (prompt or 0) + (completion or 0)
    return None


def _is_cjk(code_point: int) -> bool:
    return (
        0x4E00 <= code_point <= 0x9FFF      # CJK Unified Ideographs
        or 0x3400 <= code_point <= 0x4DBF   # Extension A
        or 0x3040 <= code_point <= 0x30FF   # Hiragana + Katakana
        or 0xAC00 <= code_point <= 0xD7AF   # Hangul Syllables
    )


def estimate_tokens(text: str) -> int:
    """Rough estimate: one token per CJK character, one per four other characters."""
    if not text:
        return 0
    cjk = sum(1 for ch in text if _is_cjk(ord(ch)))
    other = len(text) - cjk
    return cjk + math.ceil(other / 4)


def call_tokens(reported: int | None, prompt_text: str, output_text: str, estimate=estimate_tokens) -> int:
    """Tokens charged for one call: provider-reported when present, else estimated."""
    if reported is not None:
        return reported
    return estimate(prompt_text + output_text)
