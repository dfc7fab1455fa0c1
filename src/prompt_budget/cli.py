"""CLI entry point for prompt-budget."""

from __future__ import annotations

import json
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from prompt_budget.config import Config, load_config
from prompt_budget.context.budget import compute_budget
from prompt_budget.models.capabilities import ModelCapabilities
from prompt_budget.models.thread import ThreadRecord, parse_thread

console = Console()

_FORMAT_CHOICES = ["xml", "openai-style", "anthropic-style", "gemini-style"]
_SYSTEM_CHOICES = ["system-role", "developer-role", "separated", "none"]


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to config TOML file (default: config/default.toml)",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level (default: from config)",
)
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """Fit chat histories to a model's context window."""
    from prompt_budget.logging import configure_logging

    config = load_config(config_path)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    configure_logging(
        level=log_level or config.logging.level,
        log_file=config.logging.log_file,
        json_format=config.logging.json_format,
    )


def _config(ctx: click.Context) -> Config:
    return ctx.obj["config"]


@main.command()
@click.option("--context-window", required=True, type=click.IntRange(min=1), help="Model context window in tokens")
@click.option("--reserved", default=None, type=click.IntRange(min=0), help="Explicit reserved output tokens")
@click.pass_context
def budget(ctx: click.Context, context_window: int, reserved: int | None) -> None:
    """Show the input budget for a context window."""
    b = compute_budget(context_window, reserved, _config(ctx).budget)

    table = Table(title=f"Budget for {context_window:,}-token window")
    table.add_column("Quantity", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("reserved output tokens", f"{b.reserved_output_tokens:,}")
    table.add_row("available input tokens", f"{b.available_input_tokens:,}")
    table.add_row("available input chars", f"{b.available_input_chars:,}")
    table.add_row("trim target chars", f"{b.trim_target_chars:,}")
    table.add_row("safe input chars", f"{b.safe_input_chars:,}")
    table.add_row("system message budget", f"{b.system_message_budget:,}")
    console.print(table)


def _load_thread(path: Path) -> list[ThreadRecord]:
    """A thread file is either a list of records or {"records": [...]}."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("records", [])
    return parse_thread(data)


@main.command()
@click.argument("thread_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--format", "tool_format", default="xml", type=click.Choice(_FORMAT_CHOICES), help="Tool-call wire format")
@click.option("--system-role", default="system-role", type=click.Choice(_SYSTEM_CHOICES), help="How the model accepts a system message")
@click.option("--context-window", default=128_000, type=click.IntRange(min=1), help="Model context window in tokens")
@click.option("--reserved", default=None, type=click.IntRange(min=0), help="Explicit reserved output tokens")
@click.option("--provider", default="", help="Provider name (e.g. openai, anthropic, gemini)")
@click.option("--reasoning", is_flag=True, default=False, help="Keep reasoning blocks for models that accept them")
@click.option("--system-file", default=None, type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Use this file as the system message")
@click.option("--chat-mode", default="normal", type=click.Choice(["normal", "gather", "agent"]), help="Chat mode for system-message generation")
@click.option("--workspace", "folders", multiple=True, type=click.Path(file_okay=False, path_type=Path), help="Workspace folder (repeatable)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the prepared payload as JSON")
@click.pass_context
def prepare(
    ctx: click.Context,
    thread_file: Path,
    tool_format: str,
    system_role: str,
    context_window: int,
    reserved: int | None,
    provider: str,
    reasoning: bool,
    system_file: Path | None,
    chat_mode: str,
    folders: tuple[Path, ...],
    as_json: bool,
) -> None:
    """Prepare a JSON chat thread for a model."""
    from prompt_budget.orchestrator.preparer import MessagePreparer
    from prompt_budget.orchestrator.system_prompt import WorkspaceInfo

    try:
        records = _load_thread(thread_file)
    except (json.JSONDecodeError, ValidationError) as e:
        console.print(f"[red]Invalid thread file {thread_file}:[/red] {e}")
        raise SystemExit(1)

    capabilities = ModelCapabilities(
        provider_name=provider,
        context_window=context_window,
        reserved_output_token_space=reserved,
        supports_system_message=False if system_role == "none" else system_role,
        special_tool_format=None if tool_format == "xml" else tool_format,
        supports_reasoning=reasoning,
    )
    system_message = system_file.read_text(encoding="utf-8") if system_file else None
    workspace = WorkspaceInfo(folders=[str(f) for f in folders])

    with MessagePreparer(_config(ctx)) as preparer:
        prepared = preparer.prepare_chat(
            records, chat_mode, capabilities, workspace, system_message=system_message
        )

    if as_json:
        click.echo(json.dumps(prepared.as_payload(), indent=2, ensure_ascii=False))
        return

    table = Table(title=f"Prepared {len(prepared.messages)} messages")
    table.add_column("#", justify="right")
    table.add_column("Role", style="bold")
    table.add_column("Chars", justify="right")
    table.add_column("Preview")
    for i, msg in enumerate(prepared.messages):
        body = msg.get("content", msg.get("parts", ""))
        text = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False)
        preview = text[:60].replace("\n", " ")
        table.add_row(str(i), msg["role"], f"{len(text):,}", preview)
    console.print(table)

    if prepared.separate_system_message is not None:
        console.print(f"Separate system message: {len(prepared.separate_system_message):,} chars")
    report = prepared.report
    tiers = [name for name, hit in (("A", report.tier_a), ("B", report.tier_b), ("C", report.tier_c)) if hit]
    console.print(
        f"Chars: {report.initial_chars:,} -> {report.final_chars:,}, "
        f"trimmed {len(report.trimmed_indices)}, dropped {report.dropped_messages}, "
        f"fallback tiers: {', '.join(tiers) or 'none'}"
    )


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Start the HTTP API server."""
    try:
        import uvicorn
    except ImportError:
        console.print(
            "[red]Web dependencies not installed. Run:[/red]\n"
            "  pip install 'prompt-budget[web]'"
        )
        raise SystemExit(1)

    from prompt_budget.web.app import create_app
    from prompt_budget.web.deps import AppState

    app = create_app(state=AppState(config=_config(ctx)))

    console.print(f"Starting prompt-budget API at [bold]http://{host}:{port}[/bold]")
    uvicorn.run(app, host=host, port=port, log_level="info")
