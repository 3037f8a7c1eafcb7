"""Click CLI: config loading, invoker selection, solve/debate/follow-up runs and output."""

import asyncio
import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config, resolve_mode, resolve_model_config
from solver.debate import run_debate
from solver.errors import SolveCancelled, SolveError
from solver.followup import answer_follow_up, answer_follow_up_with_debate, build_context
from solver.healthcheck import failed_roles, run_health_checks
from solver.images import load_images
from solver.invokers.base import InvokerError, ModelInvoker
from solver.invokers.factory import build_invoker
from solver.models import StreamEvent
from solver.output import event_to_dict, print_event, print_result, save_to_file
from solver.single_pass import solve

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

MODE_ROLES = {
    "single": ("single",),
    "debate": ("proposer", "reviewer"),
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _request_overrides(
    model: str | None,
    base_url: str | None,
    proposer_model: str | None,
    reviewer_model: str | None,
) -> dict[str, dict]:
    """Per-role request overrides; role-specific models beat --model."""
    shared = {"model": model, "base_url": base_url}
    return {
        "single": shared,
        "proposer": {**shared, "model": proposer_model or model},
        "reviewer": {**shared, "model": reviewer_model or model},
    }


def _build_invokers(
    config: AppConfig,
    mode: str,
    subject: str | None,
    overrides: dict[str, dict],
) -> dict[str, ModelInvoker]:
    """Build the invokers the mode needs. Roles that fail to build are skipped."""
    invokers: dict[str, ModelInvoker] = {}
    for role in MODE_ROLES[mode]:
        model_cfg = resolve_model_config(config, role, subject=subject, override=overrides.get(role))
        try:
            invokers[role] = build_invoker(model_cfg)
        except InvokerError as exc:
            logger.warning("Failed to build invoker for '%s': %s", role, exc)
    return invokers


async def _check_invokers(invokers: dict[str, ModelInvoker]) -> None:
    """Run health checks and exit if any required role is unreachable."""
    console.print("\n[bold]Checking models...[/bold]")
    statuses = await run_health_checks(invokers)

    for role in sorted(statuses):
        status = statuses[role]
        if status.ok:
            console.print(f"  [green]OK  [/green] {role} ({status.model}, {status.latency_sec:.1f}s)")
        else:
            short_err = status.error.splitlines()[0][:120] if status.error else "unknown error"
            console.print(f"  [red]FAIL[/red] {role}: {short_err}")

    failed = failed_roles(statuses)
    if failed:
        console.print(f"\n[bold red]Error:[/bold red] Model check failed for: {', '.join(failed)}")
        sys.exit(1)
    console.print()


def _make_sink(json_events: bool) -> Callable[[StreamEvent], None]:
    """Progress sink: JSON lines (one event per line) or Rich rendering."""
    if json_events:
        def emit_json(event: StreamEvent) -> None:
            click.echo(json.dumps(event_to_dict(event), ensure_ascii=False))
        return emit_json
    return print_event


def _abort_signal(timeout: float | None) -> asyncio.Event:
    """Abort signal for one run; set automatically after timeout seconds."""
    signal = asyncio.Event()
    if timeout:
        asyncio.get_running_loop().call_later(timeout, signal.set)
    return signal


def _read_question_text(text: str | None, text_file: str | None) -> str | None:
    if text_file:
        return Path(text_file).read_text(encoding="utf-8").strip()
    return text.strip() if text else None


def _load_history(history_file: str | None) -> list:
    if not history_file:
        return []
    raw = json.loads(Path(history_file).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        return raw.get("messages", [])
    return raw if isinstance(raw, list) else []


def _prepare(
    config: AppConfig,
    mode_arg: str,
    subject: str | None,
    overrides: dict[str, dict],
) -> tuple[str, dict[str, ModelInvoker]]:
    mode = resolve_mode(config, mode_arg, subject)
    invokers = _build_invokers(config, mode, subject, overrides)
    missing = [r for r in MODE_ROLES[mode] if r not in invokers]
    if missing:
        console.print(
            f"[bold red]Error:[/bold red] No model available for: {', '.join(missing)}. "
            "Check API keys in .env or settings.yaml."
        )
        sys.exit(1)
    return mode, invokers


async def _run_solve(
    config: AppConfig,
    mode: str,
    invokers: dict[str, ModelInvoker],
    image_paths: list[Path],
    question_text: str | None,
    extra_prompt: str | None,
    rounds: int,
    stream: bool,
    timeout: float | None,
    sink: Callable[[StreamEvent], None],
    health_check: bool = True,
):
    if health_check:
        await _check_invokers(invokers)
    signal = _abort_signal(timeout)
    images = load_images(image_paths) if image_paths else None
    if mode == "single":
        return await solve(
            invokers["single"],
            config.prompts,
            images=images,
            question_text=question_text,
            extra_prompt=extra_prompt,
            on_update=sink,
            stream=stream,
            signal=signal,
        )
    return await run_debate(
        invokers["proposer"],
        invokers["reviewer"],
        config.prompts,
        images=images,
        question_text=question_text,
        extra_prompt=extra_prompt,
        max_iterations=rounds,
        on_update=sink,
        signal=signal,
    )


async def _run_followup(
    config: AppConfig,
    mode: str,
    invokers: dict[str, ModelInvoker],
    context,
    rounds: int,
    stream: bool,
    timeout: float | None,
    sink: Callable[[StreamEvent], None],
    health_check: bool = True,
):
    if health_check:
        await _check_invokers(invokers)
    signal = _abort_signal(timeout)
    history_limit = config.defaults.history_limit
    if mode == "single":
        return await answer_follow_up(
            invokers["single"],
            config.prompts,
            context,
            on_update=sink,
            stream=stream,
            signal=signal,
            history_limit=history_limit,
        )
    return await answer_follow_up_with_debate(
        invokers["proposer"],
        invokers["reviewer"],
        config.prompts,
        context,
        max_iterations=rounds,
        on_update=sink,
        signal=signal,
        history_limit=history_limit,
    )


def _finish(result, mode: str, json_events: bool, output_path: str | None, title: str | None = None) -> None:
    if not json_events:
        print_result(result, mode)
    if output_path:
        saved = save_to_file(result, Path(output_path), mode, title=title)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")


def _run_or_exit(coro):
    try:
        return asyncio.run(coro)
    except SolveCancelled:
        console.print("[bold yellow]Cancelled:[/bold yellow] timed out before the answer was complete.")
        sys.exit(130)
    except SolveError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        if exc.__cause__ is not None:
            console.print(f"[dim]Cause: {exc.__cause__}[/dim]")
        sys.exit(1)


def _shared_options(func):
    options = [
        click.option("--mode", "mode_arg", type=click.Choice(["single", "debate", "auto"]), default=None,
                     help="single, debate, or auto (per --subject, else config default)"),
        click.option("--rounds", default=None, type=int, help="Max debate rounds (default: from config)"),
        click.option("--subject", default=None, help="Subject name from settings.yaml (e.g. science)"),
        click.option("--model", default=None, help="Model override for every role"),
        click.option("--proposer-model", default=None, help="Model override for the debate proposer"),
        click.option("--reviewer-model", default=None, help="Model override for the debate reviewer"),
        click.option("--base-url", default=None, help="API base URL override"),
        click.option("--stream/--no-stream", default=None, help="Stream single-pass output (default: from config)"),
        click.option("--timeout", default=None, type=float, help="Abort the run after N seconds"),
        click.option("--json-events", is_flag=True, help="Print progress events as JSON lines"),
        click.option("--output", "output_path", default=None, help="Save the result as markdown in this directory"),
        click.option("--skip-health-check", is_flag=True, default=False,
                     help="Skip the API connectivity check at startup"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Exam Solver -- answer questions from images or text with one or two models.

    \b
    Examples:
      exam-solver solve --image q1.png --image q1b.png
      exam-solver solve --text "求 1+1" --mode debate --rounds 2
      exam-solver solve --text-file q.txt --mode auto --subject science
      exam-solver followup --question "1+1" --answer "2" --prompt "为什么？"
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        ctx.obj = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


@main.command("solve")
@click.option("--image", "images", multiple=True, type=click.Path(exists=True, dir_okay=False),
              help="Question image (repeat for multi-part questions)")
@click.option("--text", default=None, help="Question text")
@click.option("--text-file", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Read question text from a file")
@click.option("--prompt", "extra_prompt", default=None, help="Extra instructions for the model")
@_shared_options
@click.pass_obj
def solve_command(
    config: AppConfig,
    images: tuple[str, ...],
    text: str | None,
    text_file: str | None,
    extra_prompt: str | None,
    mode_arg: str | None,
    rounds: int | None,
    subject: str | None,
    model: str | None,
    proposer_model: str | None,
    reviewer_model: str | None,
    base_url: str | None,
    stream: bool | None,
    timeout: float | None,
    json_events: bool,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Solve a question given as images and/or text."""
    question_text = _read_question_text(text, text_file)
    if not images and not question_text:
        console.print("[bold red]Error:[/bold red] Provide --image, --text or --text-file.")
        sys.exit(1)

    overrides = _request_overrides(model, base_url, proposer_model, reviewer_model)
    mode, invokers = _prepare(config, mode_arg or config.defaults.mode, subject, overrides)

    result = _run_or_exit(
        _run_solve(
            config,
            mode,
            invokers,
            [Path(p) for p in images],
            question_text,
            extra_prompt,
            rounds if rounds is not None else config.defaults.max_iterations,
            stream if stream is not None else config.defaults.stream,
            timeout,
            _make_sink(json_events),
            health_check=not skip_health_check,
        )
    )
    _finish(result, mode, json_events, output_path)


@main.command("followup")
@click.option("--question", "base_question", required=True, help="The original question")
@click.option("--answer", "base_answer", required=True, help="The answer already given")
@click.option("--prompt", "followup_prompt", required=True, help="The follow-up question")
@click.option("--history", "history_file", default=None, type=click.Path(exists=True, dir_okay=False),
              help="JSON file with prior turns: [{\"role\": \"user\", \"content\": \"...\"}]")
@_shared_options
@click.pass_obj
def followup_command(
    config: AppConfig,
    base_question: str,
    base_answer: str,
    followup_prompt: str,
    history_file: str | None,
    mode_arg: str | None,
    rounds: int | None,
    subject: str | None,
    model: str | None,
    proposer_model: str | None,
    reviewer_model: str | None,
    base_url: str | None,
    stream: bool | None,
    timeout: float | None,
    json_events: bool,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Answer a follow-up question about an already solved problem."""
    try:
        context = build_context(base_question, base_answer, followup_prompt, _load_history(history_file))
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    overrides = _request_overrides(model, base_url, proposer_model, reviewer_model)
    mode, invokers = _prepare(config, mode_arg or config.defaults.mode, subject, overrides)

    result = _run_or_exit(
        _run_followup(
            config,
            mode,
            invokers,
            context,
            rounds if rounds is not None else config.defaults.max_iterations,
            stream if stream is not None else config.defaults.stream,
            timeout,
            _make_sink(json_events),
            health_check=not skip_health_check,
        )
    )
    _finish(result, mode, json_events, output_path, title=context.prompt)


if __name__ == "__main__":
    main()
