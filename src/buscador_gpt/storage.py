"""SQLite-backed local store: one JSON array per fixed key."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .config import ASSISTANTS_KEY, CONVERSATIONS_KEY, MOCK_UPLOADS_KEY, SEARCH_LOG_KEY
from .models import Conversation, CustomAssistant, SearchLogEntry, TrainingFileRef

logger = logging.getLogger(__name__)


class ConversationStore:
    """Persists conversations, custom assistants and logs for a single user.

    Each key holds a JSON array that is rewritten wholesale on every mutation,
    so the last write wins. There is exactly one writer per data directory.
    """

    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)
        self.conn.commit()

    # -- raw key access --------------------------------------------------

    def read_list(self, key: str) -> list[Any]:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if not row:
            return []
        try:
            data = json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Stored value under '%s' is not valid JSON, ignoring it", key)
            return []
        if not isinstance(data, list):
            logger.warning("Stored value under '%s' is not a JSON array, ignoring it", key)
            return []
        return data

    def write_list(self, key: str, items: list[Any]):
        self.conn.execute(
            """INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
            (key, json.dumps(items, ensure_ascii=False), datetime.now(timezone.utc).isoformat()),
        )
        self.conn.commit()

    def remove(self, key: str):
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()

    def _load(self, key: str, model: type) -> list:
        items = []
        for raw in self.read_list(key):
            try:
                items.append(model.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed record under '%s'", key, exc_info=True)
        return items

    def _dump(self, key: str, records: list) -> None:
        self.write_list(key, [r.model_dump(mode="json", by_alias=True) for r in records])

    # -- conversations ---------------------------------------------------

    def list_conversations(self) -> list[Conversation]:
        """Stored conversations, most recently updated first."""
        conversations = self._load(CONVERSATIONS_KEY, Conversation)
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        for conv in self._load(CONVERSATIONS_KEY, Conversation):
            if conv.id == conversation_id:
                return conv
        return None

    def save_conversation(self, conv: Conversation):
        """Insert or replace a conversation by id."""
        conversations = self._load(CONVERSATIONS_KEY, Conversation)
        for i, existing in enumerate(conversations):
            if existing.id == conv.id:
                conversations[i] = conv
                break
        else:
            conversations.append(conv)
        self._dump(CONVERSATIONS_KEY, conversations)

    def delete_conversation(self, conversation_id: str) -> bool:
        conversations = self._load(CONVERSATIONS_KEY, Conversation)
        kept = [c for c in conversations if c.id != conversation_id]
        if len(kept) == len(conversations):
            return False
        self._dump(CONVERSATIONS_KEY, kept)
        return True

    def clear_conversations(self):
        self.remove(CONVERSATIONS_KEY)

    # -- custom assistants -----------------------------------------------

    def list_assistants(self) -> list[CustomAssistant]:
        return self._load(ASSISTANTS_KEY, CustomAssistant)

    def get_assistant(self, assistant_id: str) -> CustomAssistant | None:
        for profile in self.list_assistants():
            if profile.id == assistant_id:
                return profile
        return None

    def save_assistant(self, profile: CustomAssistant):
        profiles = self.list_assistants()
        for i, existing in enumerate(profiles):
            if existing.id == profile.id:
                profiles[i] = profile
                break
        else:
            profiles.append(profile)
        self._dump(ASSISTANTS_KEY, profiles)

    def delete_assistant(self, assistant_id: str) -> bool:
        profiles = self.list_assistants()
        kept = [p for p in profiles if p.id != assistant_id]
        if len(kept) == len(profiles):
            return False
        self._dump(ASSISTANTS_KEY, kept)
        return True

    # -- search log and demo uploads -------------------------------------

    def record_search(self, entry: SearchLogEntry):
        """Prepend an entry to the search log (newest first)."""
        entries = self._load(SEARCH_LOG_KEY, SearchLogEntry)
        entries.insert(0, entry)
        self._dump(SEARCH_LOG_KEY, entries)

    def list_searches(self, limit: int | None = None) -> list[SearchLogEntry]:
        entries = self._load(SEARCH_LOG_KEY, SearchLogEntry)
        return entries[:limit] if limit is not None else entries

    def record_mock_upload(self, ref: TrainingFileRef):
        uploads = self._load(MOCK_UPLOADS_KEY, TrainingFileRef)
        uploads.append(ref)
        self._dump(MOCK_UPLOADS_KEY, uploads)

    def list_mock_uploads(self) -> list[TrainingFileRef]:
        return self._load(MOCK_UPLOADS_KEY, TrainingFileRef)

    # -- stats -----------------------------------------------------------

    def get_stats(self) -> dict:
        """Get overall store statistics."""
        conversations = self._load(CONVERSATIONS_KEY, Conversation)
        msg_count = sum(c.message_count for c in conversations)
        created = [c.created_at for c in conversations]

        return {
            "total_conversations": len(conversations),
            "total_messages": msg_count,
            "total_assistants": len(self.list_assistants()),
            "total_searches": len(self.read_list(SEARCH_LOG_KEY)),
            "date_range_start": _format_ts(min(created)) if created else None,
            "date_range_end": _format_ts(max(created)) if created else None,
            "avg_messages_per_conversation": round(msg_count / len(conversations), 1) if conversations else 0,
        }

    def close(self):
        self.conn.close()


def _format_ts(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")
