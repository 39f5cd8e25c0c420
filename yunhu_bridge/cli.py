from __future__ import annotations
import json, asyncio
from dataclasses import asdict
from pathlib import Path
import typer
import uvicorn
from rich import print
from rich.table import Table
from yunhu_bridge.channels.yunhu import YunhuChannel
from yunhu_bridge.config import load_settings
from yunhu_bridge.core.errors import BridgeError, ResolverFailure
from yunhu_bridge.decoding.decoder import DecoderOptions, MessageDecoder
from yunhu_bridge.decoding.session import SessionAdapter
from yunhu_bridge.domain import elements as el
from yunhu_bridge.resolvers import Resolvers

app = typer.Typer(help="Yunhu Bridge CLI - run the webhook server, send messages, inspect events.")

class _Offline:
    """Resolver bundle member that never reaches the network."""
    async def get_user(self, user_id):
        raise ResolverFailure("offline", resolver="user")

    async def get_message(self, channel_id, message_id):
        raise ResolverFailure("offline", resolver="message")

@app.command()
def serve(host: str = typer.Option(None, help="Overrides YUNHU_HOST."), port: int = typer.Option(None, help="Overrides YUNHU_PORT.")):
    """Run the webhook server."""
    from yunhu_bridge.server.app import create_app
    settings = load_settings()
    if host:
        settings.host = host
    if port:
        settings.port = port
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())

@app.command()
def send(
    channel_id: str = typer.Argument(..., help="private:<userId> or group:<groupId>"),
    text: str = typer.Argument(...),
    markdown: bool = typer.Option(False, "--markdown", help="Send TEXT as a markdown block."),
    reply_to: str = typer.Option(None, help="Message id to quote."),
):
    """Send a message through the bot API."""
    settings = load_settings()
    if not settings.token:
        print("[red]YUNHU_TOKEN is not set[/red]")
        raise typer.Exit(code=2)
    content = el.MarkdownBlock(children=[el.Text(text)]) if markdown else text

    async def _run():
        channel = YunhuChannel(settings)
        try:
            return await channel.send_message(channel_id, content, reply_to=reply_to)
        finally:
            await channel.stop()
    try:
        ids = asyncio.run(_run())
    except (BridgeError, ValueError) as e:
        print(f"[red]send failed:[/red] {e}")
        raise typer.Exit(code=1)
    if not ids:
        print("[yellow]no message was accepted[/yellow]")
        raise typer.Exit(code=1)
    for mid in ids:
        print(f"[green]sent[/green] {mid}")

@app.command()
def decode(
    event_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Saved webhook event (JSON)."),
    online: bool = typer.Option(False, "--online", help="Resolve mentions and quotes through the API."),
):
    """Adapt a saved webhook event and print the resulting session."""
    settings = load_settings()
    payload = json.loads(event_file.read_text(encoding="utf-8"))

    async def _run():
        channel = None
        if online:
            channel = YunhuChannel(settings)
            decoder = channel.decoder
            users = channel.client
        else:
            offline = _Offline()
            resolvers = Resolvers(media=None, users=offline, messages=offline, transport=None, timeout=settings.resolver_timeout_s)
            decoder = MessageDecoder(resolvers, DecoderOptions(settings.resource_endpoint, settings.image_proxy))
            users = offline
        try:
            return await SessionAdapter(decoder, self_id=settings.bot_id, users=users).adapt(payload)
        finally:
            if channel is not None:
                await channel.stop()
    try:
        session = asyncio.run(_run())
    except BridgeError as e:
        print(f"[red]decode failed:[/red] {e}")
        raise typer.Exit(code=1)
    if session is None:
        print("[yellow]event type is not handled[/yellow]")
        return

    t = Table(title=f"Session ({session.type})")
    t.add_column("field"); t.add_column("value")
    for name in ("channel_id", "guild_id", "user_id", "operator_id", "subtype", "is_direct", "message_id", "timestamp", "content"):
        t.add_row(name, str(getattr(session, name)))
    if session.role:
        t.add_row("role", f"{session.role.name} ({session.role.permissions:#x})")
    print(t)
    if session.message:
        print({"elements": [asdict(e) for e in session.message.elements],
               "quote": asdict(session.message.quote) if session.message.quote else None,
               "form": session.message.form})

def main():
    """Entry point for the CLI."""
    app()
