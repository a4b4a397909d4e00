"""CLI: Typer app wired to the task stack. The terminal user is the human responder."""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
import os
import sys
from typing import Optional, Tuple

import httpx
import typer
from rich import print as rprint
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from agentic_coder.application.modes import get_all_modes, get_mode_by_slug
from agentic_coder.application.provider import TaskStack
from agentic_coder.application.task import Task, TaskServices
from agentic_coder.config import CoderConfig, load_config
from agentic_coder.domain import ASK, AskResponse, Message
from agentic_coder.infrastructure.checkpoints import shadow_git_factory
from agentic_coder.infrastructure.diff import MultiSearchReplaceDiffStrategy
from agentic_coder.infrastructure.llm import build_api_handler
from agentic_coder.infrastructure.mcp import McpServerHub
from agentic_coder.infrastructure.telemetry import setup_telemetry
from agentic_coder.infrastructure.terminal import TerminalRegistry
from agentic_coder.infrastructure.workspace.editor import FileEditSession
from agentic_coder.infrastructure.workspace.files import LocalWorkspaceFiles
from agentic_coder.infrastructure.workspace.ignore import IgnoreController
from agentic_coder.infrastructure.workspace.task_storage import FileTaskStorage

app = typer.Typer(help="agentic-coder: an autonomous coding agent with human approvals.")
console = Console()

logger = logging.getLogger(__name__)

# Asks that only need a yes/no; everything else takes free text.
APPROVAL_ASKS = frozenset({
    "tool", "command", "command_output", "use_mcp_server",
    "resume_task", "resume_completed_task", "api_req_failed", "mistake_limit_reached",
})

# Asks --yes answers on the user's behalf.
AUTO_APPROVED_ASKS = frozenset({
    "tool", "command", "command_output", "use_mcp_server", "resume_task", "resume_completed_task",
})


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_services(config: CoderConfig, *, checkpoints: bool = True) -> TaskServices:
    """Wire the local collaborators for ``config``."""
    workspace = os.path.abspath(config.workspace_dir or os.getcwd())
    policy = IgnoreController(workspace, config.ignore_file)
    diff_strategy = None
    if config.diff.enabled:
        diff_strategy = MultiSearchReplaceDiffStrategy(
            fuzzy_threshold=config.diff.fuzzy_threshold,
            buffer_lines=config.diff.buffer_lines,
        )
    return TaskServices(
        api=build_api_handler(config.model),
        terminals=TerminalRegistry(config.terminal),
        files=LocalWorkspaceFiles(policy),
        access_policy=policy,
        editor_factory=FileEditSession,
        storage=FileTaskStorage(config.storage_dir),
        diff_strategy=diff_strategy,
        mcp_hub=McpServerHub(config.mcp_servers) if config.mcp_servers else None,
        checkpoint_factory=shadow_git_factory if checkpoints and config.checkpoints.enabled else None,
        config=config,
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _render_tool(payload: dict) -> None:
    tool = payload.get("tool", "?")
    target = payload.get("path") or payload.get("regex") or payload.get("mode") or payload.get("serverName") or ""
    console.print(f"[yellow]⚙ {tool}[/yellow] {target}")
    if payload.get("diff"):
        console.print(Syntax(payload["diff"], "diff", theme="ansi_dark"))
    elif payload.get("content"):
        console.print(Syntax(payload["content"][:4000], "text", theme="ansi_dark"))
    if payload.get("reason"):
        console.print(f"[dim]{payload['reason']}[/dim]")


def _render_api_req(text: Optional[str]) -> None:
    try:
        info = json.loads(text or "{}")
    except ValueError:
        return
    if "cost" not in info and "cancelReason" not in info:
        return
    line = (
        f"[dim]◆ API request: {info.get('tokensIn', 0)} in / {info.get('tokensOut', 0)} out"
        f" · ${float(info.get('cost') or 0):.4f}"
    )
    if info.get("cancelReason"):
        line += f" · {info['cancelReason']}"
    console.print(line + "[/dim]")


def render_message(task: Task, message: Message) -> None:
    prefix = f"[dim]#{task.task_number}[/dim] " if task.is_sub_task else ""
    kind = message.subtype
    text = message.text or ""

    if message.type == ASK:
        if kind == "tool":
            try:
                _render_tool(json.loads(text))
            except ValueError:
                console.print(f"{prefix}{text}")
        elif kind == "command":
            console.print(f"{prefix}[yellow]$ {text}[/yellow]")
        elif kind == "command_output":
            console.print(f"[dim]{text}[/dim]")
        elif kind == "followup":
            console.print(f"{prefix}[bold cyan]? {text}[/bold cyan]")
        elif kind == "api_req_failed":
            console.print(f"{prefix}[red]API request failed:[/red] {text}")
        elif kind == "mistake_limit_reached":
            console.print(f"{prefix}[red]The model is having trouble.[/red] {text}")
        elif text:
            console.print(f"{prefix}{text}")
        return

    if kind == "text":
        if text:
            console.print(Markdown(text))
    elif kind == "api_req_started":
        _render_api_req(text)
    elif kind == "completion_result":
        console.print(Panel(Markdown(text), title=f"{prefix}Task completed", border_style="green"))
    elif kind == "error":
        console.print(f"{prefix}[red]✗ {text}[/red]")
    elif kind == "command_output":
        console.print(f"[dim]{text}[/dim]")
    elif kind == "user_feedback":
        console.print(f"[bold]You:[/bold] {text}")
    elif kind in ("reasoning", "checkpoint_saved", "api_req_retried", "api_req_deleted", "mcp_server_request_started"):
        console.print(f"[dim]{kind}: {text}[/dim]")
    elif kind == "subtask_result":
        console.print(Panel(Markdown(text), title="Sub-task result", border_style="cyan"))
    elif text:
        console.print(f"{prefix}[dim]{kind}:[/dim] {text}")


def parse_answer(ask_type: Optional[str], reply: str) -> Tuple[AskResponse, Optional[str]]:
    """Map a typed reply to an ask response.

    For approval asks an empty reply or ``y`` approves and ``n`` denies; any
    other text is feedback.  For the rest, empty means yes and text is a message.
    """
    stripped = reply.strip()
    if ask_type in APPROVAL_ASKS:
        if stripped.lower() in ("", "y", "yes"):
            return AskResponse.YES, None
        if stripped.lower() in ("n", "no"):
            return AskResponse.NO, None
        return AskResponse.MESSAGE, stripped
    if not stripped:
        return AskResponse.YES, None
    return AskResponse.MESSAGE, stripped


class ConsoleResponder:
    """Renders task messages and answers asks from stdin."""

    def __init__(self, auto_approve: bool = False) -> None:
        self.auto_approve = auto_approve
        self._prompts: set = set()
        # one stdin reader at a time; a reply goes to the most recent ask
        self._reading: Optional[asyncio.Future] = None
        self._target: Optional[Tuple[Task, Message]] = None

    async def on_message(self, task: Task, message: Message, partial_update: bool) -> None:  # noqa: ARG002
        if message.partial:
            return
        render_message(task, message)
        if message.type == ASK:
            prompt = asyncio.ensure_future(self._answer(task, message))
            self._prompts.add(prompt)
            prompt.add_done_callback(self._prompts.discard)

    async def _answer(self, task: Task, message: Message) -> None:
        if self.auto_approve and message.ask in AUTO_APPROVED_ASKS:
            task.handle_ask_response(AskResponse.YES)
            return
        self._target = (task, message)
        if self._reading is not None and not self._reading.done():
            return
        hint = "[y/n or feedback]" if message.ask in APPROVAL_ASKS else "[reply, empty to accept]"
        self._reading = asyncio.ensure_future(asyncio.to_thread(console.input, f"[bold]> {hint}[/bold] "))
        reply = await self._reading
        if self._target is None:
            return
        task, message = self._target
        self._target = None
        if not task.channel.ask_pending:
            logger.debug("Dropping reply to ask(%s); it is no longer waiting", message.ask)
            return
        response, text = parse_answer(message.ask, reply)
        task.handle_ask_response(response, text)


def _handle_transport_error(exc: Exception, config: CoderConfig) -> None:
    model = config.model
    if isinstance(exc, httpx.ConnectError):
        rprint(
            f"[red]LLM server unreachable.[/red]\n  URL: {model.base_url}\n  Error: {exc}\n"
            "  Start your backend (e.g. Ollama: ollama serve) or set CODER_CONFIG_PATH."
        )
    else:
        rprint(f"[red]LLM request failed:[/red] {exc}")
    sys.exit(1)


async def _drive(stack: TaskStack, start) -> None:
    try:
        await start
        await stack.wait_until_idle()
    finally:
        hub = stack.services.mcp_hub
        if hub is not None:
            await hub.close()
        await stack.services.terminals.close()


def _load(workspace: Optional[str]) -> CoderConfig:
    config = load_config()
    if workspace:
        config = config.model_copy(update={"workspace_dir": os.path.abspath(workspace)})
    setup_telemetry(config)
    return config


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    prompt: str = typer.Argument(..., help="What you want the agent to do."),
    mode: str = typer.Option("", "--mode", "-m", help="Mode slug to start in (default from config)."),
    workspace: Optional[str] = typer.Option(None, "--workspace", "-w", help="Workspace directory."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-approve tool uses and commands."),
    no_checkpoints: bool = typer.Option(False, "--no-checkpoints", help="Disable workspace checkpoints."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose (DEBUG) logging to stderr."),
) -> None:
    """Start a new task and work on it until it completes or is abandoned."""
    _configure_logging(verbose)
    config = _load(workspace)
    if mode and get_mode_by_slug(mode, config.custom_modes) is None:
        rprint(f"[red]Unknown mode {mode!r}.[/red] Run 'agentic-coder modes' to list them.")
        raise typer.Exit(code=1)

    responder = ConsoleResponder(auto_approve=yes)
    stack = TaskStack(
        build_services(config, checkpoints=not no_checkpoints),
        mode=mode or None,
        on_message=responder.on_message,
    )
    rprint(f"[dim]Using model: {config.model.model} at {config.model.base_url}[/dim]")
    try:
        asyncio.run(_drive(stack, stack.init_with_task(prompt)))
    except (httpx.ConnectError, httpx.HTTPStatusError) as exc:
        _handle_transport_error(exc, config)
    except KeyboardInterrupt:
        rprint("[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=130)


@app.command()
def resume(
    task_id: str = typer.Argument(..., help="Task id (or a unique prefix) from 'agentic-coder history'."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-approve tool uses and commands."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose (DEBUG) logging to stderr."),
) -> None:
    """Resume a task from the history index."""
    _configure_logging(verbose)
    config = _load(None)
    responder = ConsoleResponder(auto_approve=yes)
    stack = TaskStack(build_services(config), on_message=responder.on_message)
    item = stack.find_history_item(task_id)
    if item is None:
        rprint(f"[red]No task matching {task_id!r} in history.[/red]")
        raise typer.Exit(code=1)
    if item.workspace:
        stack = TaskStack(
            build_services(config.model_copy(update={"workspace_dir": item.workspace})),
            on_message=responder.on_message,
        )
    try:
        asyncio.run(_drive(stack, stack.init_with_history_item(item)))
    except (httpx.ConnectError, httpx.HTTPStatusError) as exc:
        _handle_transport_error(exc, config)
    except KeyboardInterrupt:
        rprint("[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=130)


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of tasks to show."),
) -> None:
    """List past tasks (most recent first)."""
    config = load_config()
    items = FileTaskStorage(config.storage_dir).load_history()
    items.sort(key=lambda item: item.ts, reverse=True)
    if not items:
        rprint(f"[dim]No tasks found in {config.storage_dir}[/dim]")
        return

    table = Table(title="Task history", show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("#", justify="right")
    table.add_column("Started", style="dim")
    table.add_column("Tokens in/out", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Task", overflow="fold")
    for item in items[:limit]:
        started = datetime.datetime.fromtimestamp(item.ts / 1000).strftime("%Y-%m-%d %H:%M:%S") if item.ts else "-"
        table.add_row(
            item.id[:12],
            str(item.number),
            started,
            f"{item.tokens_in}/{item.tokens_out}",
            f"${item.total_cost:.4f}",
            item.task[:80],
        )
    console.print(table)


@app.command()
def modes() -> None:
    """List the available modes and their tool groups."""
    config = load_config()
    table = Table(title="Modes", show_header=True, header_style="bold")
    table.add_column("Slug", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Groups", style="green")
    for mode in get_all_modes(config.custom_modes):
        marker = " (default)" if mode.slug == config.default_mode else ""
        table.add_row(mode.slug + marker, mode.name, ", ".join(mode.groups) or "-")
    console.print(table)


@app.command("mcp")
def mcp_servers() -> None:
    """List the configured MCP servers and the tools each one offers."""
    config = load_config()
    if not config.mcp_servers:
        rprint("[dim]No MCP servers configured.[/dim]")
        return
    hub = McpServerHub(config.mcp_servers)

    async def _collect():
        rows = []
        try:
            for name in hub.server_names():
                try:
                    tools = await hub.list_tools(name)
                except Exception as exc:
                    rows.append((name, "-", f"[red]unavailable: {exc}[/red]"))
                    continue
                rows.extend((name, tool["name"], tool["description"]) for tool in tools)
        finally:
            await hub.close()
        return rows

    table = Table(title="MCP servers", show_header=True, header_style="bold")
    table.add_column("Server", style="cyan", no_wrap=True)
    table.add_column("Tool")
    table.add_column("Description", overflow="fold")
    for row in asyncio.run(_collect()):
        table.add_row(*row)
    console.print(table)
