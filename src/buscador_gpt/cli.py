"""CLI interface for buscador-gpt."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from pathlib import Path

import click

from . import __version__
from .config import load_settings
from .errors import BuscadorError

MODE_CHOICES = ["auto", "basic", "detailed", "no-assistant"]
TARGET_CHOICES = ["ChatGPT", "Claude", "Gemini", "Otro"]


class App:
    """Application root: settings, store, event bus and dispatcher."""

    def __init__(self):
        self._settings = None
        self._store = None
        self._bus = None

    @property
    def settings(self):
        if self._settings is None:
            try:
                self._settings = load_settings()
            except BuscadorError as e:
                raise click.ClickException(str(e)) from e
        return self._settings

    @property
    def store(self):
        if self._store is None:
            from .storage import ConversationStore

            self._store = ConversationStore(self.settings.db_path)
        return self._store

    @property
    def bus(self):
        if self._bus is None:
            from .events import EventBus

            self._bus = EventBus()
        return self._bus

    def session(self, mode: str = "auto", target: str = "ChatGPT"):
        from .dispatcher import ChatDispatcher
        from .models import Mode
        from .session import ChatSession

        dispatcher = ChatDispatcher.from_settings(self.settings)
        return ChatSession(dispatcher, self.store, self.bus, target=target, mode=Mode.parse(mode))

    def close(self):
        if self._store is not None:
            self._store.close()


pass_app = click.make_pass_decorator(App)


def _run(coro):
    try:
        return asyncio.run(coro)
    except (BuscadorError, ValueError) as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__, prog_name="buscador-gpt")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug)")
@click.pass_context
def cli(ctx: click.Context, verbose: int):
    """Buscador GPT. Tu copiloto para formulación, limpieza, alimentos y laboratorio.

    Chat with the Ingtec language-model endpoint, manage custom assistants
    and export your conversation history.
    """
    level = logging.WARNING - 10 * min(verbose, 2)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    app = App()
    ctx.obj = app
    ctx.call_on_close(app.close)


@cli.command()
@click.argument("text")
@click.option("--mode", type=click.Choice(MODE_CHOICES), default="auto", show_default=True)
@click.option("--target", type=click.Choice(TARGET_CHOICES), default="ChatGPT", show_default=True)
@click.option("--assistant", "assistant_id", help="Custom assistant id to use as system prompt")
@click.option("--conversation", "conversation_id", help="Continue a stored conversation")
@pass_app
def ask(app: App, text: str, mode: str, target: str, assistant_id: str | None, conversation_id: str | None):
    """Send one message and print the reply.

    Example:
        buscador-gpt ask "¿Qué biosurfactante puedo usar en fórmula lavaloza con pH neutro?"
    """
    try:
        session = app.session(mode, target)
        if conversation_id:
            session.open(conversation_id)
        if assistant_id:
            session.select_assistant(assistant_id)
    except BuscadorError as e:
        raise click.ClickException(str(e)) from e
    except KeyError as e:
        raise click.ClickException(e.args[0]) from e

    reply = _run(session.send(text))
    click.echo(reply.content)
    click.echo(click.style(f"\n[{session.conversation.id}]", dim=True), err=True)


@cli.command()
@click.option("--mode", type=click.Choice(MODE_CHOICES), default="auto", show_default=True)
@click.option("--target", type=click.Choice(TARGET_CHOICES), default="ChatGPT", show_default=True)
@click.option("--assistant", "assistant_id", help="Custom assistant id to use as system prompt")
@pass_app
def chat(app: App, mode: str, target: str, assistant_id: str | None):
    """Interactive chat. Commands: /new, /mode <mode>, /quit."""
    from .models import Mode

    try:
        session = app.session(mode, target)
        if assistant_id:
            session.select_assistant(assistant_id)
    except BuscadorError as e:
        raise click.ClickException(str(e)) from e
    except KeyError as e:
        raise click.ClickException(e.args[0]) from e

    click.echo(click.style("Buscador GPT", bold=True) + " — /new, /mode <mode>, /quit")
    while True:
        try:
            text = click.prompt(click.style("tú", fg="green"), prompt_suffix="> ")
        except (EOFError, click.Abort):
            click.echo()
            break

        command = text.strip()
        if command == "/quit":
            break
        if command == "/new":
            session.new_search()
            click.echo("New search started (mode reset to AUTO).")
            continue
        if command.startswith("/mode"):
            try:
                session.mode = Mode.parse(command[len("/mode"):].strip())
            except ValueError:
                click.echo(f"Unknown mode. Choose one of: {', '.join(MODE_CHOICES)}", err=True)
                continue
            click.echo(f"Mode: {session.mode.value}")
            continue

        try:
            reply = asyncio.run(session.send(text))
        except BuscadorError as e:
            # Input is kept; nothing was stored.
            click.echo(click.style(f"Error: {e}", fg="red"), err=True)
            continue
        except ValueError:
            continue
        click.echo(click.style("asistente", fg="cyan") + f"> {reply.content}\n")


@cli.command()
@click.argument("text")
@click.option("--mode", type=click.Choice(MODE_CHOICES), default="auto", show_default=True)
@click.option("--target", type=click.Choice(TARGET_CHOICES), default="ChatGPT", show_default=True)
def optimize(text: str, mode: str, target: str):
    """Print the optimized prompt for TEXT without sending it."""
    from .models import Mode
    from .optimizer import optimize as optimize_prompt

    click.echo(optimize_prompt(text, target, Mode.parse(mode)))


@cli.command()
@click.argument("text")
def classify(text: str):
    """Print the complexity tier (basic/detailed) for TEXT."""
    from .classifier import classify as classify_text

    click.echo(classify_text(text).value)


# -- history -----------------------------------------------------------


@cli.group()
def history():
    """Browse, export and delete stored conversations."""
    pass


@history.command("list")
@click.option("--limit", default=20, show_default=True)
@pass_app
def history_list(app: App, limit: int):
    from .export import format_ts

    conversations = app.store.list_conversations()[:limit]
    if not conversations:
        click.echo("No conversations stored.")
        return
    for c in conversations:
        click.echo(f"{c.id}  {format_ts(c.updated_at)}  {c.message_count:>3} msgs  {c.title}")


@history.command("show")
@click.argument("conversation_id")
@pass_app
def history_show(app: App, conversation_id: str):
    from .export import to_markdown

    conv = app.store.get_conversation(conversation_id)
    if conv is None:
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    click.echo(to_markdown(conv))


@history.command("export")
@click.argument("conversation_id")
@click.option("--format", "fmt", type=click.Choice(["txt", "md", "json"]), default="txt", show_default=True)
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), help="Write to a file instead of stdout")
@pass_app
def history_export(app: App, conversation_id: str, fmt: str, output: Path | None):
    """Export a conversation as .txt, .md or .json."""
    from .export import export_conversation

    conv = app.store.get_conversation(conversation_id)
    if conv is None:
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    text = export_conversation(conv, fmt)
    if output is None:
        click.echo(text)
    else:
        output.write_text(text, encoding="utf-8")
        click.echo(f"Saved {output}")


@history.command("rename")
@click.argument("conversation_id")
@click.argument("title")
@pass_app
def history_rename(app: App, conversation_id: str, title: str):
    from . import events

    conv = app.store.get_conversation(conversation_id)
    if conv is None:
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    try:
        conv.rename(title, time.time())
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    app.store.save_conversation(conv)
    app.bus.publish(events.CONVERSATION_SAVED, conversation=conv)
    click.echo(f"Renamed to '{conv.title}'")


@history.command("delete")
@click.argument("conversation_id")
@pass_app
def history_delete(app: App, conversation_id: str):
    if not app.store.delete_conversation(conversation_id):
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    click.echo(f"Deleted {conversation_id}")


@history.command("clear")
@click.confirmation_option(prompt="This will delete every stored conversation. Are you sure?")
@pass_app
def history_clear(app: App):
    app.store.clear_conversations()
    click.echo("History cleared.")


@history.command("searches")
@click.option("--limit", default=20, show_default=True)
@pass_app
def history_searches(app: App, limit: int):
    """Show the search log (newest first)."""
    for entry in app.store.list_searches(limit):
        click.echo(f"{entry.date}  [{entry.assistant_used}]  {entry.question}")


# -- custom assistants -------------------------------------------------


@cli.group()
def assistants():
    """Manage custom assistants (custom GPTs)."""
    pass


@assistants.command("list")
@pass_app
def assistants_list(app: App):
    profiles = app.store.list_assistants()
    if not profiles:
        click.echo("No custom assistants yet.")
        return
    for p in profiles:
        click.echo(f"{p.icon} {p.id}  {p.name}" + (f" — {p.description}" if p.description else ""))


def _save_profile(app: App, profile):
    from . import events

    app.store.save_assistant(profile)
    app.bus.publish(events.ASSISTANT_SAVED, assistant=profile)
    click.echo(f"Saved {profile.icon} {profile.name} ({profile.id})")


@assistants.command("create")
@click.option("--name", required=True)
@click.option("--instructions", required=True)
@click.option("--description", default="")
@click.option("--icon", default="🤖")
@pass_app
def assistants_create(app: App, name: str, instructions: str, description: str, icon: str):
    from .assistants import create_assistant

    try:
        profile = create_assistant(name, instructions, description, icon)
    except BuscadorError as e:
        raise click.ClickException(str(e)) from e
    _save_profile(app, profile)


@assistants.command("import")
@click.argument("json_file", type=click.File("r", encoding="utf-8"))
@pass_app
def assistants_import(app: App, json_file):
    """Import a shared assistant definition (JSON with name and instructions)."""
    from .assistants import import_assistant

    try:
        profile = import_assistant(json_file.read())
    except BuscadorError as e:
        raise click.ClickException(str(e)) from e
    _save_profile(app, profile)


@assistants.command("import-url")
@click.argument("url")
@click.option("--instructions", prompt=True, help="Instructions cannot be recovered from the link")
@pass_app
def assistants_import_url(app: App, url: str, instructions: str):
    """Draft an assistant from a chatgpt.com/g/ share link."""
    from .assistants import assistant_from_share_url

    try:
        profile = assistant_from_share_url(url, instructions)
    except BuscadorError as e:
        raise click.ClickException(str(e)) from e
    if not profile.instructions:
        raise click.ClickException("Please provide the assistant's instructions")
    _save_profile(app, profile)


@assistants.command("paste")
@click.argument("text", required=False)
@click.option("--name", help="Name for an assistant pasted as plain instructions")
@click.option("--instructions", help="Instructions for an assistant pasted as a share link")
@pass_app
def assistants_paste(app: App, text: str | None, name: str | None, instructions: str | None):
    """Create an assistant from pasted text: a share link, a JSON definition or instructions.

    Reads TEXT from stdin when it is omitted.
    """
    from .assistants import assistant_from_share_url, classify_clipboard, create_assistant, import_assistant

    if text is None:
        text = click.get_text_stream("stdin").read()
    kind = classify_clipboard(text)
    try:
        if kind == "url":
            if not instructions:
                raise click.ClickException("Share links carry no instructions; pass --instructions")
            profile = assistant_from_share_url(text, instructions)
        elif kind == "json":
            profile = import_assistant(text)
        elif kind == "instructions":
            if not name:
                raise click.ClickException("Pasted instructions need a --name")
            profile = create_assistant(name, text)
        else:
            raise click.ClickException("Could not recognise the pasted text")
    except BuscadorError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Detected {kind}")
    _save_profile(app, profile)


@assistants.command("export")
@click.argument("assistant_id")
@pass_app
def assistants_export(app: App, assistant_id: str):
    from .assistants import export_assistant

    profile = app.store.get_assistant(assistant_id)
    if profile is None:
        raise click.ClickException(f"Custom assistant not found: {assistant_id}")
    click.echo(export_assistant(profile))


@assistants.command("delete")
@click.argument("assistant_id")
@pass_app
def assistants_delete(app: App, assistant_id: str):
    if not app.store.delete_assistant(assistant_id):
        raise click.ClickException(f"Custom assistant not found: {assistant_id}")
    click.echo(f"Deleted {assistant_id}")


# -- uploads and diagnostics -------------------------------------------


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--email", help="Corporate email the file belongs to")
@click.option("--assistant", "assistant_id", help="Attach the file to a custom assistant")
@pass_app
def upload(app: App, path: Path, email: str | None, assistant_id: str | None):
    """Upload a file (PDF, Office, text or image, max 25 MB)."""
    from . import events
    from .uploads import PresignClient, demo_upload, is_corporate_email

    if email and not is_corporate_email(email):
        raise click.ClickException("Only corporate @iespecialidades.com accounts can upload files")

    profile = None
    if assistant_id:
        profile = app.store.get_assistant(assistant_id)
        if profile is None:
            raise click.ClickException(f"Custom assistant not found: {assistant_id}")

    try:
        if app.settings.presign_endpoint:
            ref = PresignClient(app.settings.presign_endpoint).upload(path, email, assistant_id)
        else:
            ref = demo_upload(path, email, assistant_id)
            app.store.record_mock_upload(ref)
            click.echo(
                click.style("DEMO MODE: simulated upload", fg="yellow")
                + " — set BUSCADOR_PRESIGN_ENDPOINT for real storage",
                err=True,
            )
    except BuscadorError as e:
        raise click.ClickException(str(e)) from e

    if profile is not None:
        profile.training_files.append(ref)
        app.store.save_assistant(profile)
    app.bus.publish(events.UPLOAD_COMPLETED, file=ref)
    click.echo(f"Uploaded {ref.file_name} → {ref.file_key}")


@cli.command()
@pass_app
def health(app: App):
    """Probe the chat endpoint's /health route."""
    from .dispatcher import ChatDispatcher

    try:
        dispatcher = ChatDispatcher.from_settings(app.settings)
    except BuscadorError as e:
        raise click.ClickException(str(e)) from e
    ok = asyncio.run(dispatcher.health())
    if not ok:
        raise click.ClickException(f"Chat endpoint is not healthy: {dispatcher.health_url}")
    click.echo(click.style("ok", fg="green") + f"  {dispatcher.health_url}")


@cli.command()
@pass_app
def stats(app: App):
    """Show statistics about stored conversations."""
    s = app.store.get_stats()

    click.echo()
    click.echo(click.style("Buscador GPT Statistics", bold=True))
    click.echo(f"  Conversations:  {s['total_conversations']:,}")
    click.echo(f"  Messages:       {s['total_messages']:,}")
    click.echo(f"  Avg msgs/conv:  {s['avg_messages_per_conversation']}")
    click.echo(f"  Assistants:     {s['total_assistants']:,}")
    click.echo(f"  Searches:       {s['total_searches']:,}")
    if s["date_range_start"]:
        click.echo(f"  Date range:     {s['date_range_start']} → {s['date_range_end']}")
    click.echo(f"  Location:       {app.settings.db_path}")
    click.echo()


@cli.command()
@pass_app
def config(app: App):
    """Print the resolved configuration."""
    data = app.settings.model_dump(mode="json")
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


@cli.command()
def serve():
    """Start the MCP server (stdio transport)."""
    from .server import mcp

    mcp.run(transport="stdio")
