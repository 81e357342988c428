"""In-process event bus for UI notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

MESSAGE_SENT = "message_sent"
REPLY_RECEIVED = "reply_received"
DISPATCH_FAILED = "dispatch_failed"
CONVERSATION_SAVED = "conversation_saved"
CONVERSATION_DELETED = "conversation_deleted"
ASSISTANT_SAVED = "assistant_saved"
UPLOAD_COMPLETED = "upload_completed"

Listener = Callable[..., Any]


class EventBus:
    """Explicit publish/subscribe registry owned by the application root."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``event``; returns a callable that unsubscribes it."""
        self._listeners[event].append(listener)
        return lambda: self.unsubscribe(event, listener)

    def unsubscribe(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def publish(self, event: str, **payload: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(**payload)
            except Exception:
                logger.warning("Listener %r failed for event '%s'", listener, event, exc_info=True)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))
