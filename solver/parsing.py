"""Labelled-block extraction and completeness checks for model output."""

import re

from solver.models import UNRECOGNIZED_QUESTION, SolveResult

_QUESTION_RE = re.compile(r"题目[：:]\s*(.+?)(?=\n\n解答|$)", re.S)
_ANSWER_RE = re.compile(r"解答[：:]\s*(.+)", re.S)
_ANSWER_LABEL_RE = re.compile(r"解答[：:]")


def extract_solve_result(content: str) -> SolveResult:
    """Pull the 题目/解答 blocks out of free-form model text.

    Without a question label the question is marked unrecognized; without an
    answer label the whole text is the answer.
    """
    question_match = _QUESTION_RE.search(content)
    answer_match = _ANSWER_RE.search(content)
    return SolveResult(
        question=question_match.group(1).strip() if question_match else UNRECOGNIZED_QUESTION,
        answer=answer_match.group(1).strip() if answer_match else content,
    )


def extract_answer(content: str) -> str:
    """Answer block only, used when the question text is already known."""
    answer_match = _ANSWER_RE.search(content)
    return answer_match.group(1).strip() if answer_match else content


def format_solve_text(result: SolveResult) -> str:
    return f"题目：{result.question}\n\n解答：{result.answer}"


# Incompleteness signals, kept separate so callers can pick which apply.

def is_empty_output(content: str) -> bool:
    return not content.strip()


def is_missing_answer_label(content: str) -> bool:
    return _ANSWER_LABEL_RE.search(content) is None


def is_length_truncated(finish_reason: str | None) -> bool:
    return finish_reason == "length"


def has_empty_answer(result: SolveResult) -> bool:
    return not (result.answer or "").strip()


def incomplete_reasons(content: str, finish_reason: str | None, parsed: SolveResult) -> list[str]:
    """Names of every incompleteness signal that fires for a labelled solve."""
    reasons = []
    if is_empty_output(content):
        reasons.append("empty")
    if is_missing_answer_label(content):
        reasons.append("missing_answer_label")
    if is_length_truncated(finish_reason):
        reasons.append("length")
    if has_empty_answer(parsed):
        reasons.append("empty_answer")
    return reasons
