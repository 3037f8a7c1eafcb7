"""Single-pass solve: one model call, streamed or blocking, parsed into a SolveResult."""

import asyncio
import logging
from collections.abc import Callable

from config.config_loader import PromptsConfig
from solver.errors import SolveCancelled, SolveError
from solver.invokers.base import InvokerResponse, ModelInvoker
from solver.models import UNRECOGNIZED_QUESTION, ImageInput, Prompt, SolveResult, StreamEvent
from solver.parsing import extract_solve_result, format_solve_text, incomplete_reasons
from solver.prompts import build_solve_prompt
from solver.stream_consumer import consume_stream
from solver.tokens import call_tokens, estimate_tokens, extract_total_tokens

logger = logging.getLogger(__name__)

SOLVE_FAILED_MESSAGE = "AI解答失败，请检查API配置"
_EMPTY_RESPONSE_TEXT = "无法识别题目"

UpdateHandler = Callable[[StreamEvent], None]


def reported_tokens(response: InvokerResponse) -> int | None:
    if response.tokens_used is not None:
        return response.tokens_used
    return extract_total_tokens(response)


def _to_result(content: str, question_text: str | None) -> SolveResult:
    result = extract_solve_result(content)
    if question_text and result.question == UNRECOGNIZED_QUESTION:
        result.question = question_text.strip()
    return result


async def _solve_blocking(
    invoker: ModelInvoker,
    prompt: Prompt,
    question_text: str | None,
    signal: asyncio.Event | None,
    estimate: Callable[[str], int],
) -> SolveResult:
    response = await invoker.invoke(prompt, signal)
    content = response.content or _EMPTY_RESPONSE_TEXT
    result = _to_result(content, question_text)
    result.tokens_used = call_tokens(reported_tokens(response), prompt.text, content, estimate)
    return result


async def _solve_streamed(
    invoker: ModelInvoker,
    prompt: Prompt,
    question_text: str | None,
    on_update: UpdateHandler | None,
    signal: asyncio.Event | None,
    estimate: Callable[[str], int],
) -> SolveResult:
    if on_update:
        on_update(StreamEvent("start"))

    def on_delta(delta: str) -> None:
        on_update(StreamEvent("delta", value=delta))

    consumed = await consume_stream(
        invoker.stream_invoke(prompt, signal),
        on_delta=on_delta if on_update else None,
        signal=signal,
    )

    parsed = _to_result(consumed.content, question_text)
    reasons = incomplete_reasons(consumed.content, consumed.finish_reason, parsed)
    if reasons:
        logger.warning(
            "Streamed output incomplete (%s), retrying without streaming: finish=%s, deltas=%d, chars=%d",
            ", ".join(reasons),
            consumed.finish_reason,
            consumed.delta_count,
            len(consumed.content),
        )
        # The partial stream is discarded along with its token usage.
        fallback = await _solve_blocking(invoker, prompt, question_text, signal, estimate)
        if on_update:
            on_update(StreamEvent("complete", value=format_solve_text(fallback), result=fallback))
        return fallback

    logger.info(
        "Streamed output complete: finish=%s, deltas=%d, chars=%d",
        consumed.finish_reason or "unknown",
        consumed.delta_count,
        len(consumed.content),
    )
    parsed.tokens_used = call_tokens(consumed.tokens_used, prompt.text, consumed.content, estimate)
    if on_update:
        on_update(StreamEvent("complete", value=consumed.content, result=parsed))
    return parsed


async def solve(
    invoker: ModelInvoker,
    prompts: PromptsConfig,
    images: list[ImageInput] | None = None,
    question_text: str | None = None,
    extra_prompt: str | None = None,
    on_update: UpdateHandler | None = None,
    stream: bool = False,
    signal: asyncio.Event | None = None,
    estimate: Callable[[str], int] = estimate_tokens,
) -> SolveResult:
    """Solve one question with a single model call.

    Args:
        invoker: Invoker built from the resolved single-mode ModelConfig.
        prompts: Prompt templates from config.
        images: Question images; when empty the text template is used.
        question_text: Question text for text-based solving.
        extra_prompt: Optional caller instructions appended to the prompt.
        on_update: Progress sink for start/delta/complete/error events.
        stream: Stream the call; incomplete output is replayed without streaming.
        signal: Abort signal, checked before the call and between stream events.
        estimate: Token estimator used when the provider reports no usage.

    Returns:
        SolveResult with tokens_used set.

    Raises:
        SolveCancelled: If the signal is set.
        SolveError: On any other failure, after an error event in streaming mode.
    """
    try:
        prompt = build_solve_prompt(prompts, images, question_text, extra_prompt)
        if stream:
            return await _solve_streamed(invoker, prompt, question_text, on_update, signal, estimate)
        return await _solve_blocking(invoker, prompt, question_text, signal, estimate)
    except SolveCancelled:
        logger.info("Solve cancelled via %s", invoker.name())
        raise
    except Exception as exc:
        logger.error("Model call via %s failed: %s", invoker.name(), exc)
        if stream and on_update:
            on_update(StreamEvent("error", message=str(exc) or SOLVE_FAILED_MESSAGE))
        raise SolveError(SOLVE_FAILED_MESSAGE) from exc
