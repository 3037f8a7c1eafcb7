"""Rich console output, event payloads and markdown file save for results."""

import dataclasses
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from solver.models import DebateResult, DebateRound, FollowUpResult, SolveResult, StreamEvent

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

Result = SolveResult | DebateResult | FollowUpResult


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len] or "question"


def event_to_dict(event: StreamEvent) -> dict[str, Any]:
    """JSON-ready payload for one event; unset fields are dropped."""
    payload: dict[str, Any] = {}
    for field in dataclasses.fields(event):
        value = getattr(event, field.name)
        if value is None:
            continue
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            value = dataclasses.asdict(value)
        payload[field.name] = value
    return payload


def print_event(event: StreamEvent) -> None:
    """Render one progress event to the console."""
    if event.type == "start":
        console.print(Rule("[bold cyan]Answer[/bold cyan]"))
    elif event.type == "delta":
        console.print(event.value or "", end="", markup=False, highlight=False)
    elif event.type == "complete":
        console.print()
    elif event.type == "status":
        console.print(Text(f"[round {event.iteration}] {event.message}", style="dim"))
    elif event.type in ("model1", "model2"):
        role = "Proposer" if event.type == "model1" else "Reviewer"
        console.print(
            Panel(
                Markdown(event.content or ""),
                title=f"[bold]{role}[/bold] round {event.iteration}",
                border_style="cyan" if event.type == "model1" else "magenta",
            )
        )
    elif event.type == "error":
        console.print(f"[bold red]Error:[/bold red] {event.message}")
    else:
        logger.debug("Unhandled event type: %s", event.type)


def _summary_fields(result: Result, mode: str) -> list[tuple[str, str]]:
    tokens = str(result.tokens_used) if result.tokens_used is not None else "n/a"
    fields = [("Mode", mode), ("Tokens", tokens)]
    if isinstance(result, (DebateResult, FollowUpResult)):
        fields.append(("Rounds", str(result.iterations)))
        fields.append(("Consensus", "yes" if result.consensus else "no (round limit)"))
    return fields


def print_result(result: Result, mode: str) -> None:
    """Print the final question and answer using Rich markdown."""
    console.print(Rule("[bold green]Result[/bold green]"))
    summary = " | ".join(f"{k}: {v}" for k, v in _summary_fields(result, mode))
    console.print(Text(summary, style="dim"))
    question = getattr(result, "question", None)
    if question:
        console.print(Panel(Markdown(question), title="[bold]Question[/bold]", border_style="dim"))
    console.print(Markdown(result.answer))


def _round_lines(rounds: list[DebateRound]) -> list[str]:
    lines: list[str] = []
    for rnd in rounds:
        lines += [
            f"## Round {rnd.number}" + (" (approved)" if rnd.approved else ""),
            "",
            "### Proposer",
            "",
            rnd.proposer_answer,
            "",
            "### Reviewer",
            "",
            rnd.reviewer_verdict,
            "",
        ]
    return lines


def save_to_file(
    result: Result,
    output_dir: Path,
    mode: str,
    title: str | None = None,
    slug_override: str | None = None,
) -> Path:
    """Save the result (and any debate transcript) as a markdown file.

    Args:
        result: SolveResult, DebateResult or FollowUpResult.
        output_dir: Directory to save the file in.
        mode: "single" or "debate", recorded in the header.
        title: Heading text; defaults to the result's question.
        slug_override: If provided, use this as the filename stem.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    question = getattr(result, "question", None)
    heading = title or question or "Follow-up"
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(heading)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    lines: list[str] = [
        f"# {heading[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    lines += [f"**{k}:** {v}" for k, v in _summary_fields(result, mode)]
    lines += [
        "",
        "---",
        "",
    ]
    if question:
        lines += ["## 题目", "", question, ""]
    lines += ["## 解答", "", result.answer, ""]

    rounds = getattr(result, "rounds", None)
    if rounds:
        lines += ["---", "", "# Debate transcript", ""]
        lines += _round_lines(rounds)

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Result saved to: %s", filepath)
    return filepath
