"""Command-line interface: serve the endpoint, chat in the terminal, list models."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from open_chat.catalog import fetch_models
from open_chat.client import ChatClient
from open_chat.config import ChatConfig, load_config
from open_chat.errors import AuthError, TransportError, UpstreamError
from open_chat.store import SQLiteMessageStore
from open_chat.stream.segmenter import display_parts
from open_chat.types import ChatEvent, EventType, MessagePart, ReasoningPart, TextPart

console = Console()

_HISTORY_PATH = Path.home() / ".open_chat" / "history"


def render_parts(parts: list[MessagePart]) -> Group:
    """Markdown for answer text, a dim panel for each reasoning segment."""
    renderables = []
    for part in display_parts(parts):
        if isinstance(part, ReasoningPart):
            renderables.append(Panel(
                Markdown(part.text), title="Reasoning", border_style="dim", style="dim",
            ))
        elif isinstance(part, TextPart) and part.text:
            renderables.append(Markdown(part.text))
    return Group(*renderables)


class StreamRenderer:
    """Re-render the assistant message on every bus event."""

    def __init__(self, con: Console) -> None:
        self._console = con
        self._live: Live | None = None

    def attach(self, client: ChatClient) -> None:
        client.bus.subscribe(EventType.MESSAGE_CREATED, self.on_created)
        client.bus.subscribe(EventType.MESSAGE_DELTA, self.on_update)
        for final in (
            EventType.MESSAGE_DONE,
            EventType.MESSAGE_FAILED,
            EventType.MESSAGE_CANCELLED,
        ):
            client.bus.subscribe(final, self.on_final)

    def on_created(self, event: ChatEvent) -> None:
        if event.data["message"].role != "assistant":
            return
        self._live = Live(console=self._console, refresh_per_second=12)
        self._live.start()

    def on_update(self, event: ChatEvent) -> None:
        if self._live is not None:
            self._live.update(render_parts(event.data["message"].parts))

    def on_final(self, event: ChatEvent) -> None:
        self.on_update(event)
        if self._live is not None:
            self._live.stop()
            self._live = None


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Config file path (default: ./open_chat.yaml)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Open Chat: one streaming chat interface over several LLM backends."""
    _setup_logging(verbose)
    ctx.obj = load_config(config_path)


@main.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", "-p", default=None, type=int, help="Bind port")
@click.pass_obj
def serve(config: ChatConfig, host: str | None, port: int | None) -> None:
    """Run the HTTP chat endpoint."""
    import uvicorn

    from open_chat.server import create_app

    uvicorn.run(
        create_app(config),
        host=host or config.host,
        port=port or config.port,
        log_level="info",
    )


@main.command()
@click.pass_obj
def models(config: ChatConfig) -> None:
    """List models from the OpenAI-compatible catalog."""
    table = Table(title="Models")
    table.add_column("id")
    table.add_column("name")
    table.add_column("input")
    for model in asyncio.run(fetch_models(config)):
        table.add_row(model.id, model.name, ", ".join(model.input or []))
    console.print(table)


@main.command()
@click.option("--session", "-s", "session_id", default=None, help="Resume a session id")
@click.option("--model", "-m", default=None, help="Model id")
@click.option("--provider", "-p", default=None,
              type=click.Choice(["openai", "workers-ai", "google"]), help="Backend")
@click.option("--search", is_flag=True, help="Enable search grounding (google)")
@click.pass_obj
def chat(
    config: ChatConfig,
    session_id: str | None,
    model: str | None,
    provider: str | None,
    search: bool,
) -> None:
    """Chat interactively against the endpoint (``open-chat serve``)."""
    asyncio.run(_repl(config, session_id, model, provider, search))


async def _repl(
    config: ChatConfig,
    session_id: str | None,
    model: str | None,
    provider: str | None,
    search: bool,
) -> None:
    store = SQLiteMessageStore(config.db_path)
    session = store.get_session(session_id) if session_id else None
    if session is None:
        session = store.create_session()
    client = ChatClient(config, store)
    StreamRenderer(console).attach(client)

    _HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
    prompt: PromptSession = PromptSession(history=FileHistory(str(_HISTORY_PATH)))

    console.print(f"[dim]session {session.id}  /regenerate  /models  /quit[/dim]")
    for message in store.list_messages(session.id):
        console.print(f"[bold]{message.role}>[/bold]")
        console.print(render_parts(message.parts))

    try:
        while True:
            try:
                text = await prompt.prompt_async(HTML("<b>you&gt;</b> "))
            except (EOFError, KeyboardInterrupt):
                break
            text = text.strip()
            if not text:
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/models":
                for m in await client.models():
                    console.print(f"  {m.id}")
                continue

            try:
                if text == "/regenerate":
                    await client.regenerate(
                        session.id, model=model, provider=provider, search=search,
                    )
                else:
                    await client.send(
                        session.id, text, model=model, provider=provider, search=search,
                    )
            except AuthError:
                console.print("[yellow]Password required.[/yellow]")
                client.password = await prompt.prompt_async("Password: ", is_password=True)
                console.print("[dim]/regenerate to resend[/dim]")
            except (TransportError, UpstreamError) as e:
                console.print(f"[red]Error: {e}[/red]  [dim](/regenerate to retry)[/dim]")
    finally:
        await client.aclose()
        store.close()
