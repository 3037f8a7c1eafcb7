"""Integration tests: real API calls, no mocks. Requires OPENAI_API_KEY in .env."""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

load_dotenv()

pytestmark = pytest.mark.integration

if not os.environ.get("OPENAI_API_KEY", "").strip():
    pytestmark = pytest.mark.skip(reason="OPENAI_API_KEY not set")


async def test_single_pass_streamed_solve(tmp_path: Path):
    """Stream a real single-pass solve, verify labelled output and a saved file."""
    from config.config_loader import load_config, resolve_model_config
    from solver.invokers.factory import build_invoker
    from solver.output import save_to_file
    from solver.single_pass import solve

    config = load_config()
    invoker = build_invoker(resolve_model_config(config, "single"))

    events = []
    result = await solve(
        invoker,
        config.prompts,
        question_text="计算 12 × 12 的值。",
        on_update=events.append,
        stream=True,
    )

    assert "144" in result.answer
    assert result.tokens_used and result.tokens_used > 0
    assert events[0].type == "start"
    assert events[-1].type == "complete"

    saved = save_to_file(result, tmp_path / "output", mode="single")
    assert saved.exists()


async def test_debate_round_trip():
    """Run a real debate capped at 2 rounds, verify no crash and a usable answer."""
    from config.config_loader import load_config, resolve_model_config
    from solver.debate import run_debate
    from solver.invokers.factory import build_invoker

    config = load_config()
    proposer = build_invoker(resolve_model_config(config, "proposer"))
    reviewer = build_invoker(resolve_model_config(config, "reviewer"))

    result = await run_debate(
        proposer,
        reviewer,
        config.prompts,
        question_text="一个三角形的三个内角之和是多少度？",
        max_iterations=2,
    )

    assert 1 <= result.iterations <= 2
    assert "180" in result.answer
    assert result.tokens_used > 0


async def test_follow_up_answer():
    from config.config_loader import load_config, resolve_model_config
    from solver.followup import answer_follow_up, build_context
    from solver.invokers.factory import build_invoker

    config = load_config()
    invoker = build_invoker(resolve_model_config(config, "single"))
    context = build_context("1+1=?", "2", "用一句话解释为什么。")

    result = await answer_follow_up(invoker, config.prompts, context)

    assert result.answer
    assert result.iterations == 1
