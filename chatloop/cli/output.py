"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from chatloop.orchestrator.events import (
    DoneEvent,
    ErrorEvent,
    IterationEvent,
    LoopEvent,
    TextEvent,
    ToolErrorEvent,
    ToolResultEvent,
)
from chatloop.tools.base import Tool, ToolKind
from chatloop.tools.registry import ToolRegistry

KIND_COLORS = {
    ToolKind.ANALYSIS: "green",
    ToolKind.CONTROL: "yellow",
    ToolKind.SIDE_EFFECT: "red",
}


class OutputFormatter:
    """Rich-based output formatting for the chatloop CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_tool_list(self, registry: ToolRegistry) -> None:
        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Kind", no_wrap=True)
        table.add_column("Timeout", no_wrap=True)
        table.add_column("Description")

        for t in registry.list():
            kind = registry.kind_of(t.name)
            table.add_row(
                t.name,
                Text(kind.value, style=KIND_COLORS.get(kind, "white")),
                t.timeout_class,
                t.description.splitlines()[0],
            )

        self.console.print(table)

    def format_tool_info(self, tool: Tool, kind: ToolKind) -> None:
        color = KIND_COLORS.get(kind, "white")
        self.console.print(Panel(
            f"[bold]{tool.name}[/bold]\n\n"
            f"[dim]Kind:[/dim] [{color}]{kind.value}[/{color}]\n"
            f"[dim]Timeout class:[/dim] {tool.timeout_class}\n\n"
            f"{tool.description}",
            title=f"Tool: {tool.name}",
        ))
        self.format_json(tool.input_schema())

    def format_tool_run(self, tool_name: str, result: dict, elapsed_ms: int) -> None:
        status = "[green]OK[/green]" if result.get("success") else "[red]FAILED[/red]"
        self.console.print(f"[cyan]{tool_name}[/cyan] {status} in {elapsed_ms}ms")
        self.format_json(result)

    def format_conversation_list(self, conversations: list[dict]) -> None:
        if not conversations:
            self.console.print("[dim]No conversations found.[/dim]")
            return

        table = Table(title="Conversations")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("User", no_wrap=True)
        table.add_column("Provider", no_wrap=True)
        table.add_column("Updated", no_wrap=True)

        for c in conversations:
            table.add_row(
                c.get("id", "?"),
                c.get("user_id", "?"),
                c.get("provider", "?"),
                c.get("updated_at", "?"),
            )

        self.console.print(table)

    def format_messages(self, messages: list[dict]) -> None:
        if not messages:
            self.console.print("[dim]No messages.[/dim]")
            return

        color_map = {"user": "blue", "assistant": "green"}
        for m in messages:
            role = m.get("role", "?")
            color = color_map.get(role, "white")
            self.console.print(f"[{color}]{m.get('created_at', '')} {role:>10s}[/{color}]  {escape(m.get('content', '')[:200])}")
            for call in m.get("tool_calls") or []:
                args = json.dumps(call.get("arguments", {}), default=str)[:80]
                self.console.print(f"  [yellow]-> {call.get('name', '?')}({args})[/yellow]")

    def format_config(self, config: dict) -> None:
        self.format_json(config)

    def format_json(self, data: Any) -> None:
        text = json.dumps(data, indent=2, default=str)
        self.console.print(Syntax(text, "json", theme="monokai"))

    # ------------------------------------------------------------------
    # Live loop rendering
    # ------------------------------------------------------------------

    def render_event(self, event: LoopEvent) -> None:
        """Print one loop event as it arrives.  Text deltas stream inline."""
        if isinstance(event, TextEvent):
            self.console.print(event.content, end="", markup=False, highlight=False)
        elif isinstance(event, ToolResultEvent):
            args = json.dumps(event.tool_input, default=str)[:80]
            self.console.print(f"\n  [cyan]{event.tool_name}[/cyan]({args}) [green]OK[/green]")
        elif isinstance(event, ToolErrorEvent):
            self.console.print(f"\n  [cyan]{event.tool_name}[/cyan] [red]FAILED[/red]: {escape(event.error)}")
        elif isinstance(event, IterationEvent):
            self.console.rule(f"[dim]iteration {event.iteration}/{event.max_iterations}[/dim]")
        elif isinstance(event, ErrorEvent):
            self.console.print(f"\n[red]Error:[/red] {escape(event.content)}")
        elif isinstance(event, DoneEvent):
            self.console.print(f"\n[dim]done ({event.reason}, {event.iterations} iteration(s))[/dim]")
