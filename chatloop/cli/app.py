"""
Main CLI application for chatloop.

Usage:
    chatloop serve [--host HOST] [--port PORT]
    chatloop chat PROMPT [--provider NAME] [--model ID] [--max-iterations N]
    chatloop tools list|info|run
    chatloop conversations list|show
    chatloop config show|validate
    chatloop version
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import aclosing
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from chatloop import __version__
from chatloop.config import ChatloopConfig, load_config
from chatloop.errors import ChatError

app = typer.Typer(name="chatloop", help="Chatloop - streaming tool-calling conversation server")
tools_app = typer.Typer(help="Tool inspection and invocation")
conversations_app = typer.Typer(help="Stored conversations")
config_app = typer.Typer(help="Configuration management")

app.add_typer(tools_app, name="tools")
app.add_typer(conversations_app, name="conversations")
app.add_typer(config_app, name="config")

console = Console()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "chatloop.yaml",
        Path.cwd() / "chatloop.yml",
        Path.home() / ".config" / "chatloop" / "config.yaml",
        Path.home() / ".chatloop" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load(profile: str | None = None) -> ChatloopConfig:
    return load_config(_get_config_path(), profile=profile)


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Run the HTTP server."""
    import uvicorn

    from chatloop.server.app import create_app

    overrides = {}
    if host:
        overrides["server.host"] = host
    if port:
        overrides["server.port"] = port
    cfg = load_config(_get_config_path(), profile=profile, cli_overrides=overrides)
    _configure_logging(cfg.server.log_level)

    uvicorn.run(
        create_app(cfg),
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=cfg.server.log_level.lower(),
    )


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="Question for the model"),
    provider: Optional[str] = typer.Option(None, help="Provider name (anthropic, groq, openai, default)"),
    model: Optional[str] = typer.Option(None, help="Model id or alias"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", "-n", help="Iteration cap"),
    no_loop: bool = typer.Option(False, "--no-loop", help="Run a single iteration"),
    save: bool = typer.Option(False, "--save", help="Persist the conversation"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stderr"),
):
    """Run one conversation loop and render its events live."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.llm.router import LLMRouter
    from chatloop.llm.types import ROLE_USER, Message
    from chatloop.orchestrator.loop import ConversationLoop
    from chatloop.prompts.system import build_system_prompt
    from chatloop.session.store import ConversationStore
    from chatloop.tools.registry import build_registry

    cfg = _load(profile)
    if verbose:
        _configure_logging(cfg.server.log_level)

    try:
        resolved = LLMRouter(cfg.providers).resolve(provider, model)
    except ChatError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    registry = build_registry(cfg)
    enable_loop = not no_loop and cfg.loop.enable_loop_default
    cap = max_iterations or cfg.loop.max_iterations
    formatter = OutputFormatter(console)

    async def _run():
        store = None
        conversation_id = None
        if save:
            store = ConversationStore(cfg.store.db_path)
            await store.init()
            conversation_id = await store.create_or_get_conversation(None, "cli", resolved.provider.name)
            await store.save_message(conversation_id, ROLE_USER, prompt)
            console.print(f"[dim]conversation {conversation_id}[/dim]")

        loop = ConversationLoop(
            resolved.provider,
            registry,
            model=resolved.model,
            system_prompt=build_system_prompt(registry, enable_loop, cap),
            loop_config=cfg.loop,
            tools_config=cfg.tools,
            max_iterations=cap,
            enable_loop=enable_loop,
            store=store,
            conversation_id=conversation_id,
        )
        try:
            async with aclosing(loop.run([Message(role=ROLE_USER, content=prompt)])) as events:
                async for event in events:
                    formatter.render_event(event)
        finally:
            if store is not None:
                await store.close()

    asyncio.run(_run())


@tools_app.command("list")
def tools_list():
    """List registered tools."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.tools.registry import build_registry

    registry = build_registry(_load())
    OutputFormatter(console).format_tool_list(registry)


@tools_app.command("info")
def tools_info(tool_name: str = typer.Argument(..., help="Tool name")):
    """Show tool details and schema."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.tools.registry import build_registry

    registry = build_registry(_load())
    tool = registry.get(tool_name)
    if not tool:
        console.print(f"[red]Tool not found:[/red] {tool_name}")
        raise typer.Exit(1)

    OutputFormatter(console).format_tool_info(tool, registry.kind_of(tool_name))


@tools_app.command("run")
def tools_run(
    tool_name: str = typer.Argument(..., help="Tool name"),
    arguments: str = typer.Option("{}", "--args", "-a", help="JSON object of tool arguments"),
):
    """Invoke one tool directly."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.tools.registry import build_registry
    from chatloop.tools.runner import run_tool

    cfg = _load()
    tool = build_registry(cfg).get(tool_name)
    if not tool:
        console.print(f"[red]Tool not found:[/red] {tool_name}")
        raise typer.Exit(1)
    try:
        args = json.loads(arguments)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid --args JSON:[/red] {e}")
        raise typer.Exit(1)
    if not isinstance(args, dict):
        console.print("[red]--args must be a JSON object[/red]")
        raise typer.Exit(1)

    start = time.monotonic()
    result = asyncio.run(run_tool(tool, args, cfg.tools.timeout_for(tool.timeout_class)))
    elapsed = int((time.monotonic() - start) * 1000)
    OutputFormatter(console).format_tool_run(tool.name, result.to_dict(), elapsed)
    if not result.success:
        raise typer.Exit(1)


@conversations_app.command("list")
def conversations_list(
    user: Optional[str] = typer.Option(None, "--user", help="Filter by user id"),
    limit: int = typer.Option(50, help="Maximum rows"),
):
    """List stored conversations."""

    async def _run():
        from chatloop.cli.output import OutputFormatter
        from chatloop.session.store import ConversationStore

        store = ConversationStore(_load().store.db_path)
        await store.init()
        try:
            rows = await store.list_conversations(user_id=user, limit=limit)
        finally:
            await store.close()
        OutputFormatter(console).format_conversation_list(rows)

    asyncio.run(_run())


@conversations_app.command("show")
def conversations_show(conversation_id: str = typer.Argument(..., help="Conversation ID")):
    """Show a conversation's messages."""

    async def _run():
        from chatloop.cli.output import OutputFormatter
        from chatloop.session.store import ConversationStore

        store = ConversationStore(_load().store.db_path)
        await store.init()
        try:
            conversation = await store.get_conversation(conversation_id)
            messages = await store.get_messages(conversation_id) if conversation else []
        finally:
            await store.close()
        if conversation is None:
            console.print(f"[red]Conversation not found:[/red] {conversation_id}")
            raise typer.Exit(1)
        OutputFormatter(console).format_messages(messages)

    asyncio.run(_run())


@config_app.command("show")
def config_show(profile: Optional[str] = typer.Option(None, help="Config profile name")):
    """Show effective config."""
    from chatloop.cli.output import OutputFormatter

    OutputFormatter(console).format_config(_load(profile).to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and show the effective provider setup."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Default provider: {cfg.providers.default_provider} ({cfg.providers.default_model})")
    console.print(f"  Max iterations: {cfg.loop.max_iterations}")
    console.print(f"  Tool timeouts: {cfg.tools.timeouts}")


@app.command()
def version():
    """Show version."""
    console.print(f"chatloop-core v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
