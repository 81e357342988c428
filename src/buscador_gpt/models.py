"""Data models for conversations, messages and custom assistants."""

from __future__ import annotations

import re
import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

DEFAULT_TITLE = "Nueva conversación"
TITLE_WORDS = 6
TITLE_MAX_CHARS = 60


class Mode(str, Enum):
    AUTO = "AUTO"
    BASIC = "CON ASISTENTE BÁSICO"
    DETAILED = "CON ASISTENTE DETALLADO"
    NO_ASSISTANT = "SIN ASISTENTE"

    @classmethod
    def parse(cls, value: str | Mode) -> Mode:
        """Accept either the enum name (``basic``) or its label."""
        if isinstance(value, Mode):
            return value
        key = value.strip().upper().replace("-", "_")
        if key in cls.__members__:
            return cls[key]
        return cls(value)


class Tier(str, Enum):
    BASIC = "basic"
    DETAILED = "detailed"


class TargetModel(str, Enum):
    CHATGPT = "ChatGPT"
    CLAUDE = "Claude"
    GEMINI = "Gemini"
    OTHER = "Otro"


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file_name: str = Field(alias="fileName")
    file_type: str = Field(alias="fileType")
    file_key: str = Field(alias="fileKey")


class _BaseMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    timestamp: float | None = None

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}  # type: ignore[attr-defined]


class SystemMessage(_BaseMessage):
    role: Literal["system"] = "system"


class UserMessage(_BaseMessage):
    role: Literal["user"] = "user"
    attachments: tuple[Attachment, ...] = ()


class AssistantMessage(_BaseMessage):
    role: Literal["assistant"] = "assistant"


ChatMessage = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage],
    Field(discriminator="role"),
]

_message_adapter: TypeAdapter[Any] = TypeAdapter(ChatMessage)


def parse_message(data: dict[str, Any]) -> SystemMessage | UserMessage | AssistantMessage:
    """Validate a raw message dict, dispatching on its ``role``."""
    return _message_adapter.validate_python(data)


def derive_title(text: str) -> str:
    """Build a conversation title from the leading words of a message."""
    words = re.split(r"\s+", (text or "").strip())
    title = " ".join(w for w in words[:TITLE_WORDS] if w)
    if not title:
        return DEFAULT_TITLE
    if len(words) > TITLE_WORDS or len(title) > TITLE_MAX_CHARS:
        title = title[: TITLE_MAX_CHARS - 1].rstrip() + "…"
    return title


class Conversation(BaseModel):
    id: str
    title: str = DEFAULT_TITLE
    title_edited: bool = False
    messages: list[ChatMessage] = []
    created_at: float
    updated_at: float
    assistant_id: str | None = None

    @classmethod
    def start(cls, first_user_text: str, now: float, assistant_id: str | None = None) -> Conversation:
        return cls(
            id=uuid.uuid4().hex,
            title=derive_title(first_user_text),
            created_at=now,
            updated_at=now,
            assistant_id=assistant_id,
        )

    def append(self, *messages: SystemMessage | UserMessage | AssistantMessage, now: float) -> None:
        """Append messages in order and refresh ``updated_at``."""
        self.messages.extend(messages)
        self.touch(now)

    def rename(self, title: str, now: float) -> None:
        title = title.strip()
        if not title:
            raise ValueError("Title must not be empty")
        self.title = title
        self.title_edited = True
        self.touch(now)

    def touch(self, now: float) -> None:
        self.updated_at = max(now, self.created_at, self.updated_at)

    def to_wire(self) -> list[dict[str, str]]:
        return [m.to_wire() for m in self.messages]

    @property
    def message_count(self) -> int:
        return len(self.messages)


class TrainingFileRef(BaseModel):
    file_name: str
    file_type: str
    file_key: str
    size: int = 0
    access_url: str | None = None


class CustomAssistant(BaseModel):
    id: str
    name: str
    description: str = ""
    instructions: str
    icon: str = "🤖"
    is_default: bool = False
    training_files: list[TrainingFileRef] = []

    def system_message(self) -> SystemMessage:
        return SystemMessage(content=self.instructions)


class ChatReply(BaseModel):
    reply: str
    model: str | None = None
    usage: dict[str, Any] | None = None
    finish_reason: str | None = None


class ErrorEnvelope(BaseModel):
    error: str
    detail: str | None = None


class PresignedUpload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    upload_url: str = Field(alias="uploadUrl")
    access_url: str = Field(alias="accessUrl")
    file_key: str = Field(alias="fileKey")
    bucket: str | None = None
    expires: str | None = None


class SearchLogEntry(BaseModel):
    date: str
    assistant_used: str
    question: str
    answer: str
