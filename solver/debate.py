"""Debate orchestration: proposer/reviewer rounds until approval or the round limit."""

import asyncio
import logging
from collections.abc import Callable

from config.config_loader import PromptsConfig
from solver.errors import SolveCancelled, SolveError, check_cancelled
from solver.invokers.base import ModelInvoker
from solver.models import IMAGE_QUESTION, DebateResult, DebateRound, DebateState, ImageInput, Prompt, StreamEvent
from solver.parsing import extract_answer, extract_solve_result
from solver.prompts import build_refine_prompt, build_review_prompt, build_solve_prompt
from solver.single_pass import UpdateHandler, reported_tokens
from solver.tokens import call_tokens, estimate_tokens

logger = logging.getLogger(__name__)

DEBATE_FAILED_MESSAGE = "多模型博弈失败，请检查配置"
PROPOSER_STATUS = "模型1 生成答案中..."
REVIEWER_STATUS = "模型2 审查中..."

ConsensusPolicy = Callable[[str], bool]
PromptBuilder = Callable[[DebateState], Prompt]


def approved_substring(verdict: str) -> bool:
    """Case-insensitive "APPROVED" substring match.

    Loose: "not approved" also matches. Pass a stricter policy through
    run_debate(consensus=...) when that matters.
    """
    return "APPROVED" in (verdict or "").upper()


def _emit(on_update: UpdateHandler | None, event: StreamEvent) -> None:
    if on_update:
        on_update(event)


async def propose(
    state: DebateState,
    proposer: ModelInvoker,
    build_prompt: PromptBuilder,
    on_update: UpdateHandler | None = None,
    signal: asyncio.Event | None = None,
    estimate: Callable[[str], int] = estimate_tokens,
) -> None:
    """Proposer half-round: produce or refine the candidate answer."""
    prompt = build_prompt(state)
    response = await proposer.invoke(prompt, signal)
    answer = response.content or ""
    state.tokens_used += call_tokens(reported_tokens(response), prompt.text, answer, estimate)
    state.proposer_answer = answer

    logger.info("Round %d proposer answer: %d chars", state.iteration + 1, len(answer))
    logger.debug("Round %d proposer answer:\n%s", state.iteration + 1, answer)
    _emit(on_update, StreamEvent("model1", content=answer, iteration=state.iteration + 1))


async def review(
    state: DebateState,
    reviewer: ModelInvoker,
    build_prompt: PromptBuilder,
    on_update: UpdateHandler | None = None,
    signal: asyncio.Event | None = None,
    consensus: ConsensusPolicy = approved_substring,
    estimate: Callable[[str], int] = estimate_tokens,
) -> None:
    """Reviewer half-round: critique the latest answer and decide consensus."""
    prompt = build_prompt(state)
    response = await reviewer.invoke(prompt, signal)
    verdict = response.content or ""
    state.tokens_used += call_tokens(reported_tokens(response), prompt.text, verdict, estimate)

    state.reviewer_verdict = verdict
    # A blank candidate is never accepted, whatever the verdict says.
    state.consensus_reached = bool(state.proposer_answer.strip()) and consensus(verdict)
    if state.consensus_reached:
        state.final_answer = state.proposer_answer
    state.iteration += 1
    state.rounds.append(
        DebateRound(
            number=state.iteration,
            proposer_answer=state.proposer_answer,
            reviewer_verdict=verdict,
            approved=state.consensus_reached,
        )
    )

    logger.info("Round %d reviewer verdict: %s", state.iteration, "approved" if state.consensus_reached else "revise")
    logger.debug("Round %d reviewer verdict:\n%s", state.iteration, verdict)
    _emit(on_update, StreamEvent("model2", content=verdict, iteration=state.iteration))


async def run_rounds(
    state: DebateState,
    proposer: ModelInvoker,
    reviewer: ModelInvoker,
    propose_prompt: PromptBuilder,
    review_prompt: PromptBuilder,
    on_update: UpdateHandler | None = None,
    signal: asyncio.Event | None = None,
    consensus: ConsensusPolicy = approved_substring,
    estimate: Callable[[str], int] = estimate_tokens,
) -> DebateState:
    """Alternate propose/review until consensus or max_iterations.

    The abort signal is checked before every half-round. Reaching the round
    limit without approval is a normal terminal state.
    """
    while state.iteration < state.max_iterations and not state.consensus_reached:
        check_cancelled(signal)
        _emit(on_update, StreamEvent("status", message=PROPOSER_STATUS, iteration=state.iteration + 1))
        await propose(state, proposer, propose_prompt, on_update, signal, estimate)

        check_cancelled(signal)
        _emit(on_update, StreamEvent("status", message=REVIEWER_STATUS, iteration=state.iteration + 1))
        await review(state, reviewer, review_prompt, on_update, signal, consensus, estimate)

    logger.info(
        "Debate finished after %d round(s): %s",
        state.iteration,
        "consensus" if state.consensus_reached else "no consensus (round limit)",
    )
    return state


def _result_from_state(state: DebateState) -> DebateResult:
    answer_text = state.final_answer or state.proposer_answer
    if state.images:
        parsed = extract_solve_result(answer_text)
        question, answer = parsed.question, parsed.answer
    else:
        question, answer = state.question, extract_answer(answer_text)
    return DebateResult(
        question=question,
        answer=answer,
        iterations=state.iteration,
        consensus=state.consensus_reached,
        tokens_used=state.tokens_used,
        rounds=list(state.rounds),
    )


async def run_debate(
    proposer: ModelInvoker,
    reviewer: ModelInvoker,
    prompts: PromptsConfig,
    images: list[ImageInput] | None = None,
    question_text: str | None = None,
    extra_prompt: str | None = None,
    max_iterations: int = 3,
    on_update: UpdateHandler | None = None,
    signal: asyncio.Event | None = None,
    consensus: ConsensusPolicy = approved_substring,
    estimate: Callable[[str], int] = estimate_tokens,
) -> DebateResult:
    """Run the proposer/reviewer debate for one question.

    Args:
        proposer: Invoker for the answering model.
        reviewer: Invoker for the critiquing model.
        prompts: Prompt templates from config.
        images: Question images; when empty question_text is required.
        question_text: Question text for text-only debates.
        extra_prompt: Optional caller instructions for the first proposal.
        max_iterations: Round limit, floored to 1.
        on_update: Progress sink for status/model1/model2/error events.
        signal: Abort signal, checked before every half-round.
        consensus: Verdict -> approved policy.
        estimate: Token estimator used when the provider reports no usage.

    Returns:
        DebateResult parsed once from the final (or last) proposer answer.

    Raises:
        SolveCancelled: If the signal is set; no further calls are made.
        SolveError: On any other failure.
    """
    try:
        if images:
            question = IMAGE_QUESTION
        else:
            question = (question_text or "").strip()
            if not question:
                raise ValueError("question text is empty")

        state = DebateState(
            question=question,
            images=list(images) if images else None,
            extra_prompt=extra_prompt,
            max_iterations=max(1, int(max_iterations)),
        )
        logger.info(
            "Starting debate: %s vs %s, up to %d round(s)",
            proposer.model_string(),
            reviewer.model_string(),
            state.max_iterations,
        )

        def propose_prompt(s: DebateState) -> Prompt:
            if s.iteration == 0:
                return build_solve_prompt(
                    prompts,
                    images=s.images,
                    question_text=None if s.images else s.question,
                    extra_prompt=s.extra_prompt,
                )
            return build_refine_prompt(prompts, s)

        await run_rounds(
            state,
            proposer,
            reviewer,
            propose_prompt,
            lambda s: build_review_prompt(prompts, s),
            on_update=on_update,
            signal=signal,
            consensus=consensus,
            estimate=estimate,
        )
        if not (state.final_answer or state.proposer_answer).strip():
            raise ValueError("empty debate answer")
        return _result_from_state(state)
    except SolveCancelled:
        logger.info("Debate cancelled")
        raise
    except Exception as exc:
        logger.error("Debate failed: %s", exc)
        _emit(on_update, StreamEvent("error", message=str(exc) or DEBATE_FAILED_MESSAGE))
        raise SolveError(DEBATE_FAILED_MESSAGE) from exc
