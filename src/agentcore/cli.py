"""Agent core CLI: drive one node locally with scripted model responses."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from agentcore.bus import ChannelMessage
from agentcore.config import Settings
from agentcore.logging_utils import configure_logging
from agentcore.node import AgentCoreNode
from agentcore.router import CORRELATION_KEY
from agentcore.types import Channel, Outputs

app = typer.Typer(name="agentcore", help="Correlation-routed REACT agent core", add_completion=False)


def _load_node(config: dict[str, Any], send: Any = None) -> AgentCoreNode:
    settings = Settings()
    configure_logging(profile=settings.log_profile, level=settings.log_level)
    return AgentCoreNode(config, settings=settings, send=send)


def _read_responses(path: Path | None) -> list[Any]:
    if path is None:
        return []
    responses: list[Any] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            responses.append(json.loads(line))
        except json.JSONDecodeError:
            responses.append(line)
    return responses


def _parse_input(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _summary(item: ChannelMessage) -> str:
    message = item.message
    if item.channel in (Channel.TOOL, Channel.MEMORY):
        return f"{message.get('tool')} {json.dumps(message.get('input'), ensure_ascii=False, default=str)}"
    result = message.get("agentResult") or {}
    if item.channel is Channel.MODEL:
        context = message.get("payload", {}).get("context", {})
        return f"iteration {context.get('iteration')} of {context.get('maxIterations')}"
    if "error" in result:
        return f"{result.get('status')}: {result['error'].get('code')} {result['error'].get('message')}"
    if item.channel is Channel.RAW_MODEL_RESPONSE:
        return f"{result.get('action')} tool={result.get('tool')} confidence={result.get('confidence')}"
    return f"{result.get('status')} completed={result.get('completed')} iterations={result.get('iterations')}"


@app.command("run")
def run(
    prompt: str = typer.Argument(..., help="Initial payload; parsed as JSON when possible"),
    tools: list[str] | None = typer.Option(None, "--tool", "-t", help="Allowed tool name (repeatable)"),
    memory_tools: list[str] | None = typer.Option(None, "--memory-tool", "-m", help="Memory tool name (repeatable)"),
    max_iterations: int | None = typer.Option(None, "--max-iterations", min=1, help="Iteration bound"),
    responses: Path | None = typer.Option(  # noqa: B008
        None,
        "--responses",
        "-r",
        exists=True,
        dir_okay=False,
        help="JSONL file with one scripted model response per line",
    ),
    debug: bool = typer.Option(False, "--debug", help="Log routing decisions at INFO"),
) -> None:
    """Run one session, answering model requests from a script and echoing tool calls."""

    sent: list[ChannelMessage] = []

    def collect(outputs: Outputs) -> None:
        for index, message in enumerate(outputs):
            if message is not None:
                sent.append(ChannelMessage(channel=Channel(index), message=message))

    config: dict[str, Any] = {
        "allowedTools": tools or [],
        "memoryTools": memory_tools or [],
        "maxIterations": max_iterations,
        "debug": debug,
    }
    node = _load_node(config, send=collect)
    scripted = _read_responses(responses)
    node.receive({"payload": _parse_input(prompt)})

    cursor = 0
    while cursor < len(sent):
        item = sent[cursor]
        cursor += 1
        marker = item.message.get(CORRELATION_KEY)
        if item.channel is Channel.MODEL:
            if not scripted:
                break
            node.receive({"payload": scripted.pop(0), CORRELATION_KEY: marker})
        elif item.channel in (Channel.TOOL, Channel.MEMORY):
            echo = {"tool": item.message.get("tool"), "echo": item.message.get("input")}
            node.receive({"payload": echo, CORRELATION_KEY: marker})

    table = Table(title="agentcore outputs")
    table.add_column("#", justify="right")
    table.add_column("channel")
    table.add_column("summary")
    for index, item in enumerate(sent, start=1):
        table.add_row(str(index), item.channel.label, _summary(item))
    Console().print(table)

    pending = node.active_sessions
    if pending:
        typer.echo(f"session still waiting: {', '.join(pending)}")
    node.close()


@app.command("hooks")
def list_hooks() -> None:
    """Show hook implementation mapping."""

    node = _load_node({})
    report = node.hook_report()
    if not report:
        typer.echo("(no hook implementations)")
        return
    for hook_name, plugin_names in report.items():
        typer.echo(f"{hook_name}: {', '.join(plugin_names)}")


@app.command("settings")
def show_settings() -> None:
    """Print effective process settings."""

    for key, value in Settings().model_dump().items():
        typer.echo(f"{key}={value}")
