"""Conversation export formats."""

from __future__ import annotations

import json
from datetime import datetime, timezone

from .models import Conversation

ROLE_LABELS = {"user": "Usuario", "assistant": "Asistente", "system": "Sistema"}
FORMATS = ("txt", "md", "json")


def format_ts(ts: float | None) -> str:
    if ts is None:
        return "Unknown date"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def to_text(conv: Conversation) -> str:
    """Plain transcript, the same format as "copy conversation"."""
    return "\n\n".join(
        f"{ROLE_LABELS.get(m.role, m.role)}: {m.content}" for m in conv.messages
    )


def to_markdown(conv: Conversation) -> str:
    lines = [
        f"# {conv.title}",
        f"Created: {format_ts(conv.created_at)}",
        f"Updated: {format_ts(conv.updated_at)}",
        f"Messages: {conv.message_count}",
        "",
        "---",
        "",
    ]
    for msg in conv.messages:
        ts = format_ts(msg.timestamp) if msg.timestamp else ""
        header = f"**{ROLE_LABELS.get(msg.role, msg.role)}**" + (f" ({ts})" if ts else "")
        lines.append(f"{header}:")
        lines.append(msg.content)
        for att in getattr(msg, "attachments", ()):
            lines.append(f"- 📎 {att.file_name} ({att.file_type})")
        lines.append("")
    return "\n".join(lines)


def to_json(conv: Conversation) -> str:
    return json.dumps(conv.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)


def export_conversation(conv: Conversation, fmt: str) -> str:
    if fmt == "txt":
        return to_text(conv)
    if fmt == "md":
        return to_markdown(conv)
    if fmt == "json":
        return to_json(conv)
    raise ValueError(f"Unknown export format '{fmt}', expected one of {', '.join(FORMATS)}")
