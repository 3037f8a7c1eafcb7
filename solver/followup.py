"""Follow-up questions on an already answered problem, single pass or debate."""

import asyncio
import logging
from collections.abc import Callable

from config.config_loader import PromptsConfig
from solver.debate import ConsensusPolicy, approved_substring, run_rounds
from solver.errors import SolveCancelled, SolveError
from solver.invokers.base import ModelInvoker
from solver.models import DebateState, FollowUpContext, FollowUpResult, Prompt, StreamEvent
from solver.parsing import is_empty_output, is_length_truncated
from solver.prompts import (
    HISTORY_LIMIT,
    build_followup_prompt,
    build_followup_refine_prompt,
    build_followup_review_prompt,
    normalize_history,
)
from solver.single_pass import UpdateHandler, reported_tokens
from solver.stream_consumer import consume_stream
from solver.tokens import call_tokens, estimate_tokens

logger = logging.getLogger(__name__)

FOLLOWUP_FAILED_MESSAGE = "追问回答失败，请检查配置"


def build_context(
    base_question: str,
    base_answer: str,
    prompt: str,
    messages=None,
) -> FollowUpContext:
    """Validate and trim the follow-up inputs; history is normalized.

    Raises:
        ValueError: If any of the three texts is blank.
    """
    base_question = (base_question or "").strip()
    base_answer = (base_answer or "").strip()
    prompt = (prompt or "").strip()
    if not base_question or not base_answer or not prompt:
        raise ValueError("missing base question, base answer or follow-up prompt")
    return FollowUpContext(
        base_question=base_question,
        base_answer=base_answer,
        prompt=prompt,
        history=normalize_history(messages),
    )


async def _answer_blocking(
    invoker: ModelInvoker,
    prompt: Prompt,
    signal: asyncio.Event | None,
    estimate: Callable[[str], int],
) -> FollowUpResult:
    response = await invoker.invoke(prompt, signal)
    answer = (response.content or "").strip()
    if not answer:
        raise ValueError("empty follow-up answer")
    return FollowUpResult(
        answer=answer,
        iterations=1,
        consensus=False,
        tokens_used=call_tokens(reported_tokens(response), prompt.text, answer, estimate),
    )


async def answer_follow_up(
    invoker: ModelInvoker,
    prompts: PromptsConfig,
    context: FollowUpContext,
    on_update: UpdateHandler | None = None,
    stream: bool = False,
    signal: asyncio.Event | None = None,
    estimate: Callable[[str], int] = estimate_tokens,
    history_limit: int = HISTORY_LIMIT,
) -> FollowUpResult:
    """Answer a follow-up with one model call.

    Streamed output that is empty or length-truncated is replayed once
    without streaming; follow-up answers carry no labels to check.

    Raises:
        SolveCancelled: If the signal is set.
        SolveError: On any other failure.
    """
    try:
        prompt = build_followup_prompt(prompts, context, history_limit)
        if not stream:
            return await _answer_blocking(invoker, prompt, signal, estimate)

        if on_update:
            on_update(StreamEvent("start"))

        def on_delta(delta: str) -> None:
            on_update(StreamEvent("delta", value=delta))

        consumed = await consume_stream(
            invoker.stream_invoke(prompt, signal),
            on_delta=on_delta if on_update else None,
            signal=signal,
        )
        if is_empty_output(consumed.content) or is_length_truncated(consumed.finish_reason):
            logger.warning(
                "Streamed follow-up incomplete, retrying without streaming: finish=%s, deltas=%d, chars=%d",
                consumed.finish_reason,
                consumed.delta_count,
                len(consumed.content),
            )
            result = await _answer_blocking(invoker, prompt, signal, estimate)
        else:
            answer = consumed.content.strip()
            result = FollowUpResult(
                answer=answer,
                iterations=1,
                consensus=False,
                tokens_used=call_tokens(consumed.tokens_used, prompt.text, consumed.content, estimate),
            )
        if on_update:
            on_update(StreamEvent("complete", value=result.answer, result=result))
        return result
    except SolveCancelled:
        logger.info("Follow-up cancelled")
        raise
    except Exception as exc:
        logger.error("Follow-up via %s failed: %s", invoker.name(), exc)
        if stream and on_update:
            on_update(StreamEvent("error", message=str(exc) or FOLLOWUP_FAILED_MESSAGE))
        raise SolveError(FOLLOWUP_FAILED_MESSAGE) from exc


async def answer_follow_up_with_debate(
    proposer: ModelInvoker,
    reviewer: ModelInvoker,
    prompts: PromptsConfig,
    context: FollowUpContext,
    max_iterations: int = 3,
    on_update: UpdateHandler | None = None,
    signal: asyncio.Event | None = None,
    consensus: ConsensusPolicy = approved_substring,
    estimate: Callable[[str], int] = estimate_tokens,
    history_limit: int = HISTORY_LIMIT,
) -> FollowUpResult:
    """Debate a follow-up answer; the reviewer checks it addresses the prompt.

    Raises:
        SolveCancelled: If the signal is set.
        SolveError: On any other failure.
    """
    try:
        state = DebateState(question=context.prompt, max_iterations=max(1, int(max_iterations)))

        def propose_prompt(s: DebateState) -> Prompt:
            if s.iteration == 0:
                return build_followup_prompt(prompts, context, history_limit)
            return build_followup_refine_prompt(
                prompts, context, s.proposer_answer, s.reviewer_verdict, history_limit
            )

        def review_prompt(s: DebateState) -> Prompt:
            return build_followup_review_prompt(prompts, context, s.proposer_answer, history_limit)

        await run_rounds(
            state,
            proposer,
            reviewer,
            propose_prompt,
            review_prompt,
            on_update=on_update,
            signal=signal,
            consensus=consensus,
            estimate=estimate,
        )

        answer = (state.final_answer or state.proposer_answer).strip()
        if not answer:
            raise ValueError("empty follow-up answer")
        return FollowUpResult(
            answer=answer,
            iterations=state.iteration,
            consensus=state.consensus_reached,
            tokens_used=state.tokens_used,
            rounds=list(state.rounds),
        )
    except SolveCancelled:
        logger.info("Follow-up debate cancelled")
        raise
    except Exception as exc:
        logger.error("Follow-up debate failed: %s", exc)
        if on_update:
            on_update(StreamEvent("error", message=str(exc) or FOLLOWUP_FAILED_MESSAGE))
        raise SolveError(FOLLOWUP_FAILED_MESSAGE) from exc
