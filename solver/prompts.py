"""Build the Prompt for each call from the templates in settings.yaml."""

from config.config_loader import PromptsConfig
from solver.models import ChatTurn, DebateState, FollowUpContext, ImageInput, Prompt

HISTORY_LIMIT = 20


def _extra_block(extra_prompt: str | None) -> str:
    extra = (extra_prompt or "").strip()
    return f"\n\n补充说明：\n{extra}" if extra else ""


def build_solve_prompt(
    prompts: PromptsConfig,
    images: list[ImageInput] | None = None,
    question_text: str | None = None,
    extra_prompt: str | None = None,
) -> Prompt:
    """Initial prompt: image template when images are given, else text template."""
    if images:
        text = prompts.image_solve.format(extra_block=_extra_block(extra_prompt))
        return Prompt(text=text, images=tuple(images))
    if not (question_text or "").strip():
        raise ValueError("question text is empty")
    text = prompts.text_solve.format(
        extra_block=_extra_block(extra_prompt),
        question=question_text.strip(),
    )
    return Prompt(text=text)


def build_refine_prompt(prompts: PromptsConfig, state: DebateState) -> Prompt:
    return Prompt(
        text=prompts.refine.format(
            question=state.question,
            proposer_answer=state.proposer_answer,
            reviewer_verdict=state.reviewer_verdict,
        )
    )


def build_review_prompt(prompts: PromptsConfig, state: DebateState) -> Prompt:
    """Text-only questions embed the literal question; image ones cannot."""
    if state.images:
        text = prompts.review_image.format(proposer_answer=state.proposer_answer)
    else:
        text = prompts.review_text.format(
            question=state.question,
            proposer_answer=state.proposer_answer,
        )
    return Prompt(text=text)


def normalize_history(messages) -> list[ChatTurn]:
    """Keep user/assistant turns with non-empty string content, trimmed."""
    if not isinstance(messages, list):
        return []
    turns: list[ChatTurn] = []
    for item in messages:
        if isinstance(item, ChatTurn):
            role, content = item.role, item.content
        elif isinstance(item, dict):
            role, content = item.get("role"), item.get("content")
        else:
            continue
        if role not in ("user", "assistant") or not isinstance(content, str):
            continue
        content = content.strip()
        if content:
            turns.append(ChatTurn(role=role, content=content))
    return turns


def format_history(history: list[ChatTurn], limit: int = HISTORY_LIMIT) -> str:
    recent = history[-limit:] if limit > 0 else []
    return "\n".join(
        f"{'用户' if turn.role == 'user' else '助手'}：{turn.content}" for turn in recent
    )


def _followup_fields(context: FollowUpContext, history_limit: int) -> dict[str, str]:
    history_text = format_history(context.history, history_limit)
    return {
        "base_question": context.base_question,
        "base_answer": context.base_answer,
        "history_block": f"\n历史对话：\n{history_text}\n" if history_text else "",
        "prompt": context.prompt,
    }


def build_followup_prompt(
    prompts: PromptsConfig,
    context: FollowUpContext,
    history_limit: int = HISTORY_LIMIT,
) -> Prompt:
    return Prompt(text=prompts.followup_initial.format(**_followup_fields(context, history_limit)))


def build_followup_refine_prompt(
    prompts: PromptsConfig,
    context: FollowUpContext,
    proposer_answer: str,
    reviewer_verdict: str,
    history_limit: int = HISTORY_LIMIT,
) -> Prompt:
    return Prompt(
        text=prompts.followup_refine.format(
            proposer_answer=proposer_answer,
            reviewer_verdict=reviewer_verdict,
            **_followup_fields(context, history_limit),
        )
    )


def build_followup_review_prompt(
    prompts: PromptsConfig,
    context: FollowUpContext,
    proposer_answer: str,
    history_limit: int = HISTORY_LIMIT,
) -> Prompt:
    return Prompt(
        text=prompts.followup_review.format(
            proposer_answer=proposer_answer,
            **_followup_fields(context, history_limit),
        )
    )
