"""Custom assistant ("custom GPT") creation, import and export."""

from __future__ import annotations

import json
import time
import uuid

from pydantic import ValidationError

from .errors import InvalidProfileError
from .models import CustomAssistant

SHARE_URL_MARKER = "chatgpt.com/g/"


def create_assistant(
    name: str,
    instructions: str,
    description: str = "",
    icon: str = "🤖",
) -> CustomAssistant:
    if not name.strip() or not instructions.strip():
        raise InvalidProfileError("A custom assistant needs a name and instructions")
    return CustomAssistant(
        id=uuid.uuid4().hex,
        name=name.strip(),
        description=description.strip(),
        instructions=instructions.strip(),
        icon=icon or "🤖",
    )


def import_assistant(json_text: str, now: float | None = None) -> CustomAssistant:
    """Build a profile from a shared JSON definition.

    Requires at least ``name`` and ``instructions``; the imported profile
    always gets a fresh id and is never a default.
    """
    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise InvalidProfileError(f"Invalid JSON: {e.msg}") from None
    if not isinstance(data, dict) or not data.get("name") or not data.get("instructions"):
        raise InvalidProfileError("Invalid assistant: it must have at least name and instructions")

    ms = int((time.time() if now is None else now) * 1000)
    try:
        return CustomAssistant(
            id=f"gpt_{ms}",
            name=data["name"],
            description=data.get("description") or "",
            instructions=data["instructions"],
            icon=data.get("icon") or "🤖",
            is_default=False,
            training_files=data.get("training_files") or [],
        )
    except ValidationError as e:
        raise InvalidProfileError(f"Invalid assistant: {e.error_count()} field error(s)") from None


def assistant_from_share_url(url: str, instructions: str = "") -> CustomAssistant:
    """Draft a profile from a ChatGPT share link.

    Only the name can be recovered from the link; instructions have to be
    supplied separately.
    """
    url = url.strip()
    if SHARE_URL_MARKER not in url:
        raise InvalidProfileError("Not a ChatGPT share URL")

    identifier = url.rstrip("/").split("/")[-1].split("?")[0]
    name = " ".join(identifier.split("-")[1:]).upper()
    return CustomAssistant(
        id=uuid.uuid4().hex,
        name=name or "GPT Importado",
        description=f"GPT importado desde: {url}",
        instructions=instructions.strip(),
        icon="🔗",
    )


def export_assistant(profile: CustomAssistant) -> str:
    data = profile.model_dump(mode="json", exclude={"id", "is_default"})
    return json.dumps(data, indent=2, ensure_ascii=False)


def classify_clipboard(text: str) -> str | None:
    """Guess what a pasted snippet is: ``url``, ``json``, ``instructions`` or None."""
    text = (text or "").strip()
    if SHARE_URL_MARKER in text:
        return "url"
    if text.startswith("{") and text.endswith("}"):
        try:
            json.loads(text)
        except json.JSONDecodeError:
            return None
        return "json"
    if len(text) > 10:
        return "instructions"
    return None
