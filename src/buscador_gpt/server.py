"""FastMCP server exposing Buscador GPT as tools."""

from __future__ import annotations

import logging
import sys

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .dispatcher import ChatDispatcher
from .errors import BuscadorError
from .events import EventBus
from .export import format_ts, to_markdown
from .models import Mode
from .optimizer import optimize
from .session import ChatSession
from .storage import ConversationStore

# Logging to stderr only; stdout is the MCP JSON-RPC transport
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)

mcp = FastMCP(
    "buscador-gpt",
    instructions=(
        "Ask the Ingtec chat model questions about formulation, cleaning, food and lab work. "
        "Use ask to send a message (optionally continuing a conversation). "
        "Use optimize_prompt to preview the structured prompt for a request. "
        "Use list_conversations and get_conversation to read stored history. "
        "Use list_assistants to find custom assistant ids."
    ),
)

# Created on first use, shared across tool calls
_store: ConversationStore | None = None
_bus: EventBus | None = None


def _get_store() -> ConversationStore:
    global _store
    if _store is None:
        _store = ConversationStore(load_settings().db_path)
    return _store


def _get_bus() -> EventBus:
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus


@mcp.tool()
async def ask(
    message: str,
    mode: str = "auto",
    target: str = "ChatGPT",
    conversation_id: str | None = None,
    assistant_id: str | None = None,
) -> str:
    """Send a message to the chat model and return its reply.

    Args:
        message: The question or request
        mode: auto, basic, detailed or no-assistant
        target: Target model label used for the prompt tip (ChatGPT, Claude, Gemini, Otro)
        conversation_id: Continue this stored conversation instead of starting a new one
        assistant_id: Custom assistant whose instructions become the system prompt
    """
    try:
        dispatcher = ChatDispatcher.from_settings(load_settings())
        session = ChatSession(dispatcher, _get_store(), _get_bus(), target=target, mode=Mode.parse(mode))
        if conversation_id:
            session.open(conversation_id)
        if assistant_id:
            session.select_assistant(assistant_id)
        reply = await session.send(message)
    except (BuscadorError, KeyError, ValueError) as e:
        return f"Error: {e}"
    return f"{reply.content}\n\n(conversation: {session.conversation.id})"


@mcp.tool()
def optimize_prompt(message: str, mode: str = "auto", target: str = "ChatGPT") -> str:
    """Preview the optimized prompt for a request without sending it.

    Args:
        message: The raw request
        mode: auto, basic, detailed or no-assistant
        target: Target model label
    """
    try:
        return optimize(message, target, Mode.parse(mode))
    except ValueError as e:
        return f"Error: {e}"


@mcp.tool()
def list_conversations(limit: int = 20) -> str:
    """List stored conversations, most recently updated first.

    Args:
        limit: Maximum results (default 20)
    """
    conversations = _get_store().list_conversations()[:limit]
    if not conversations:
        return "No conversations found."

    lines = [f"Conversations (showing {len(conversations)}):\n"]
    for i, c in enumerate(conversations, 1):
        lines.append(f"{i}. **{c.title}** ({format_ts(c.updated_at)})")
        lines.append(f"   ID: `{c.id}` | {c.message_count} msgs")
    return "\n".join(lines)


@mcp.tool()
def get_conversation(conversation_id: str) -> str:
    """Retrieve a full conversation transcript.

    Args:
        conversation_id: The conversation id (from list_conversations)
    """
    conv = _get_store().get_conversation(conversation_id)
    if conv is None:
        return f"Conversation not found: {conversation_id}"
    return to_markdown(conv)


@mcp.tool()
def list_assistants() -> str:
    """List custom assistants and their ids."""
    profiles = _get_store().list_assistants()
    if not profiles:
        return "No custom assistants found."
    return "\n".join(
        f"- {p.icon} **{p.name}** (`{p.id}`)" + (f": {p.description}" if p.description else "")
        for p in profiles
    )
