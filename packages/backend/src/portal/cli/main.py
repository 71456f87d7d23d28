"""Portal CLI — a terminal client for the inbox sync library.

Usage:
    portal conversations                  # Sidebar: last message + unread per contact
    portal show 447700900123              # Transcript of one conversation (marks it read)
    portal send 447700900123 "on my way"  # Optimistic send through a ChatSession
    portal watch                          # Live sidebar over the WebSocket bridge
    portal ai 447700900123 off            # Toggle AI replies for a conversation (local)
    portal push-test                      # Trigger one fan-out pass on the server
    portal vapid-key                      # Print the server's VAPID public key
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import os
import sys
from pathlib import Path

import click

from portal.sync.api import PortalAPI, TransientNetworkError
from portal.sync.bridge import close_bridge, init_bridge
from portal.sync.local_state import LocalState
from portal.sync.session import ChatSession
from portal.sync.sidebar import ConversationSummary, SidebarAggregator
from portal.sync.store import MessageStore
from portal.sync.transport import QueueTransport, WebSocketTransport

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_STATE_PATH = Path.home() / ".portal" / "state.json"


def _api_url() -> str:
    return os.environ.get("PORTAL_API_URL", DEFAULT_API_URL).rstrip("/")


def _state_path() -> Path:
    return Path(os.environ.get("PORTAL_STATE_PATH", DEFAULT_STATE_PATH))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _print_sidebar(summaries: list[ConversationSummary]) -> None:
    if not summaries:
        click.echo("No conversations yet")
        return
    for s in summaries:
        badge = click.style(f" ({s.unread_count})", fg="green", bold=True) if s.unread_count else ""
        ai = "" if s.ai_enabled else click.style(" [AI off]", fg="yellow")
        when = s.last_message_time.astimezone().strftime("%b %d %H:%M")
        text = s.last_message_text.replace("\n", " ")
        if len(text) > 50:
            text = text[:47] + "..."
        click.echo(f"+{s.conversation_id}{badge}{ai}  {click.style(when, dim=True)}  {text}")


async def _load(api: PortalAPI) -> tuple[MessageStore, SidebarAggregator]:
    store = MessageStore()
    sidebar = SidebarAggregator(store, LocalState(_state_path()))
    store.seed(await api.fetch_messages())
    return store, sidebar


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
def cli():
    """Portal — WhatsApp inbox from the terminal."""


@cli.command()
def conversations():
    """List conversations, newest first, with unread counts."""

    async def _go():
        async with PortalAPI(_api_url()) as api:
            _, sidebar = await _load(api)
            _print_sidebar(sidebar.refresh())

    try:
        _run(_go())
    except TransientNetworkError as e:
        _fail(str(e))


@cli.command()
@click.argument("conversation_id")
@click.option("--keep-unread", is_flag=True, help="Don't mark the conversation read.")
def show(conversation_id: str, keep_unread: bool):
    """Print one conversation's transcript."""

    async def _go():
        async with PortalAPI(_api_url()) as api:
            store, sidebar = await _load(api)
            messages = store.conversation(conversation_id)
            if not messages:
                click.echo(f"No messages with +{conversation_id}")
                return
            for m in messages:
                when = m.created_at.astimezone().strftime("%H:%M")
                arrow = "<" if m.direction == "incoming" else ">"
                body = m.text or f"[{m.type}] {m.media_url or ''}".strip()
                click.echo(f"{when} {arrow} {body}")
            if not keep_unread:
                sidebar.open_conversation(conversation_id)

    try:
        _run(_go())
    except TransientNetworkError as e:
        _fail(str(e))


@cli.command()
@click.argument("to")
@click.argument("text")
@click.option("--reply-to", default=None, help="mid of the message being answered.")
def send(to: str, text: str, reply_to: str | None):
    """Record an outgoing text message."""

    async def _go():
        async with PortalAPI(_api_url()) as api:
            store = MessageStore()
            # One-shot: no live stream needed, the response confirms the send.
            bridge = init_bridge(QueueTransport())
            session = ChatSession(api, store, bridge)
            try:
                return await session.send(to, text, reply_to_mid=reply_to)
            finally:
                await close_bridge()

    message = _run(_go())
    if message.status == "error":
        _fail(f"send failed (local id {message.id}, mid {message.mid})")
    click.secho(f"✓ sent #{message.id} (mid {message.mid})", fg="green")


@cli.command()
@click.option("--poll-interval", default=30.0, show_default=True, help="Safety poll, seconds.")
def watch(poll_interval: float):
    """Follow the sidebar live until Ctrl-C."""

    async def _go():
        async with PortalAPI(_api_url()) as api:
            store = MessageStore()
            sidebar = SidebarAggregator(store, LocalState(_state_path()))
            transport = WebSocketTransport(api.websocket_url)
            bridge = init_bridge(transport)
            session = ChatSession(api, store, bridge, sidebar, poll_interval=poll_interval)
            transport.on_connect = session.on_transport_connect

            def _redraw(summaries):
                click.clear()
                click.secho(f"Portal — {api.base_url}", bold=True)
                _print_sidebar(summaries)
                if session.last_error:
                    click.secho(f"(offline: {session.last_error})", fg="red")

            sidebar.add_listener(_redraw)
            await session.start()
            _redraw(sidebar.refresh())
            try:
                await asyncio.Event().wait()
            finally:
                await session.stop()
                await close_bridge()

    try:
        _run(_go())
    except KeyboardInterrupt:
        pass


@cli.command()
@click.argument("conversation_id")
@click.argument("state", type=click.Choice(["on", "off"]))
def ai(conversation_id: str, state: str):
    """Turn AI replies on or off for a conversation."""
    LocalState(_state_path()).set_ai_enabled(conversation_id, state == "on")
    click.echo(f"AI replies {state} for +{conversation_id}")


@cli.command("push-test")
def push_test():
    """Send a test notification to every subscribed browser."""

    async def _go():
        async with PortalAPI(_api_url()) as api:
            return await api.push_test()

    try:
        result = _run(_go())
    except TransientNetworkError as e:
        _fail(str(e))
    click.secho(result.get("message") or "Test push sent", fg="green")


@cli.command("vapid-key")
def vapid_key():
    """Print the server's VAPID public key."""

    async def _go():
        async with PortalAPI(_api_url()) as api:
            return await api.vapid_key()

    try:
        click.echo(_run(_go()))
    except TransientNetworkError as e:
        _fail(str(e))


if __name__ == "__main__":
    cli()
