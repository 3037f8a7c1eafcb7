"""Tests for solver/models.py and solver/errors.py."""

import asyncio

import pytest

from solver.errors import SolveCancelled, SolveError, check_cancelled
from solver.models import DebateResult, DebateState, FollowUpContext, Prompt, SolveResult, StreamEvent


def test_solve_result_tokens_optional():
    result = SolveResult(question="1+1", answer="2")
    assert result.tokens_used is None


def test_debate_state_defaults():
    state = DebateState(question="q")
    assert state.iteration == 0
    assert state.max_iterations == 3
    assert state.consensus_reached is False
    assert state.final_answer == ""
    assert state.tokens_used == 0
    assert state.rounds == []


def test_debate_state_rounds_not_shared():
    a = DebateState(question="a")
    b = DebateState(question="b")
    a.rounds.append("x")
    assert b.rounds == []


def test_debate_result_fields():
    result = DebateResult(question="q", answer="a", iterations=2, consensus=True, tokens_used=40)
    assert result.rounds == []
    assert result.consensus is True


def test_prompt_defaults_to_no_images():
    assert Prompt(text="hello").images == ()


def test_followup_context_history_default():
    ctx = FollowUpContext(base_question="q", base_answer="a", prompt="why?")
    assert ctx.history == []


def test_stream_event_optional_fields():
    event = StreamEvent("delta", value="ab")
    assert event.result is None
    assert event.iteration is None


def test_check_cancelled_unset_signal():
    check_cancelled(None)
    check_cancelled(asyncio.Event())


def test_check_cancelled_set_signal():
    signal = asyncio.Event()
    signal.set()
    with pytest.raises(SolveCancelled, match="Aborted"):
        check_cancelled(signal)


def test_cancelled_is_not_a_solve_error():
    assert not issubclass(SolveCancelled, SolveError)
