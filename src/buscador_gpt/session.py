"""Chat session: ties the optimizer, dispatcher and store together."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from . import events
from .dispatcher import ChatDispatcher
from .errors import DispatchError
from .events import EventBus
from .models import (
    AssistantMessage,
    Attachment,
    Conversation,
    CustomAssistant,
    Mode,
    SearchLogEntry,
    TargetModel,
    UserMessage,
)
from .optimizer import optimize
from .storage import ConversationStore

logger = logging.getLogger(__name__)


class ChatSession:
    """One interactive session: the active conversation, mode and assistant.

    Mode and assistant selection live only in the session and are never
    persisted. The conversation is written to the store after every reply.
    """

    def __init__(
        self,
        dispatcher: ChatDispatcher,
        store: ConversationStore,
        bus: EventBus | None = None,
        *,
        target: TargetModel | str = TargetModel.CHATGPT,
        mode: Mode = Mode.AUTO,
        clock: Callable[[], float] = time.time,
    ):
        self.dispatcher = dispatcher
        self.store = store
        self.bus = bus or EventBus()
        self.target = target
        self.mode = mode
        self.clock = clock
        self.conversation: Conversation | None = None
        self.assistant: CustomAssistant | None = None

    def new_search(self):
        """Start over: fresh conversation and mode back to AUTO."""
        self.conversation = None
        self.mode = Mode.AUTO

    def open(self, conversation_id: str) -> Conversation:
        conv = self.store.get_conversation(conversation_id)
        if conv is None:
            raise KeyError(f"Conversation not found: {conversation_id}")
        self.conversation = conv
        if conv.assistant_id:
            self.assistant = self.store.get_assistant(conv.assistant_id)
        return conv

    def select_assistant(self, assistant_id: str | None) -> CustomAssistant | None:
        if assistant_id is None:
            self.assistant = None
            return None
        profile = self.store.get_assistant(assistant_id)
        if profile is None:
            raise KeyError(f"Custom assistant not found: {assistant_id}")
        self.assistant = profile
        return profile

    def _history(self, outbound: str) -> list:
        history: list = []
        if self.assistant is not None and self.assistant.instructions.strip():
            history.append(self.assistant.system_message())
        if self.conversation is not None:
            history.extend(m for m in self.conversation.messages if m.role != "system")
        history.append({"role": "user", "content": outbound})
        return history

    async def send(self, text: str, attachments: Iterable[Attachment] = ()) -> AssistantMessage:
        """Send ``text`` and append the user/assistant pair on success.

        On any dispatch failure the conversation and the store are left
        untouched and the error propagates.
        """
        content = (text or "").strip()
        if not content:
            raise ValueError("Message is empty")

        outbound = optimize(content, self.target, self.mode)
        history = self._history(outbound)
        self.bus.publish(events.MESSAGE_SENT, text=content, mode=self.mode)

        sent_at = self.clock()
        try:
            reply = await self.dispatcher.send(history)
        except DispatchError as e:
            self.bus.publish(events.DISPATCH_FAILED, text=content, error=e)
            raise

        now = self.clock()
        user_msg = UserMessage(content=content, timestamp=sent_at, attachments=tuple(attachments))
        assistant_msg = AssistantMessage(content=reply, timestamp=now)

        if self.conversation is None:
            assistant_id = self.assistant.id if self.assistant else None
            self.conversation = Conversation.start(content, sent_at, assistant_id=assistant_id)
        self.conversation.append(user_msg, assistant_msg, now=now)

        self.store.save_conversation(self.conversation)
        self.store.record_search(SearchLogEntry(
            date=datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d"),
            assistant_used=self.assistant.name if self.assistant else self.dispatcher.model,
            question=content,
            answer=reply,
        ))
        logger.debug("Conversation %s now has %d messages", self.conversation.id, self.conversation.message_count)

        self.bus.publish(events.REPLY_RECEIVED, conversation=self.conversation, message=assistant_msg)
        self.bus.publish(events.CONVERSATION_SAVED, conversation=self.conversation)
        return assistant_msg

    def rename(self, title: str):
        if self.conversation is None:
            raise ValueError("No active conversation")
        self.conversation.rename(title, self.clock())
        self.store.save_conversation(self.conversation)
        self.bus.publish(events.CONVERSATION_SAVED, conversation=self.conversation)

    def delete(self, conversation_id: str) -> bool:
        deleted = self.store.delete_conversation(conversation_id)
        if deleted:
            if self.conversation is not None and self.conversation.id == conversation_id:
                self.conversation = None
            self.bus.publish(events.CONVERSATION_DELETED, conversation_id=conversation_id)
        return deleted
