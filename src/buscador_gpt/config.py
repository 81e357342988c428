"""Central configuration for paths, endpoints and dispatch policy."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel

from .errors import ConfigurationError

# Data directory; override with BUSCADOR_DATA_DIR env var
DATA_DIR = Path(os.environ.get("BUSCADOR_DATA_DIR", str(Path.home() / ".buscador_gpt")))

SQLITE_PATH = DATA_DIR / "buscador.db"

# Storage keys, one JSON array each
CONVERSATIONS_KEY = "buscador_conversations"
ASSISTANTS_KEY = "buscador_custom_gpts"
SEARCH_LOG_KEY = "buscador_search_log"
MOCK_UPLOADS_KEY = "buscador_uploads_mock"

# Mode classifier
DETAILED_LENGTH_THRESHOLD = 400
DETAILED_KEYWORDS = (
    "plan",
    "arquitectura",
    "análisis",
    "analisis",
    "comparativo",
    "pasos",
    "implementación",
    "implementacion",
    "estrategia",
    "profesional",
    "sistémico",
    "sistemico",
    "marco",
    "framework",
    "requisitos",
    "restricciones",
    "strategy",
    "architecture",
    "analysis",
    "comparative",
    "requirements",
    "steps",
    "implementation",
    "constraints",
)

# Dispatch defaults
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_S = 15.0
DEFAULT_MAX_RETRIES = 1
DEFAULT_BACKOFF_MS = 600

# Uploads
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
ALLOWED_UPLOAD_TYPES = frozenset({
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "text/plain",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
})

CORPORATE_EMAIL_DOMAIN = "@iespecialidades.com"


class Settings(BaseModel):
    """Process-wide settings, resolved once at startup."""

    mode: str = "mock"
    chat_endpoint: str | None = None
    presign_endpoint: str | None = None
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_ms: int = DEFAULT_BACKOFF_MS
    db_path: Path = SQLITE_PATH

    @property
    def is_prod(self) -> bool:
        return self.mode == "prod"

    @property
    def health_url(self) -> str | None:
        if not self.chat_endpoint:
            return None
        return self.chat_endpoint.rstrip("/") + "/health"


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


def _number(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {raw!r}")
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Read settings from the environment.

    In ``prod`` mode a missing chat endpoint is fatal. ``mock`` mode (the
    default, for local development) tolerates it and dispatches to the demo
    transport instead.
    """
    env = os.environ if environ is None else environ

    mode = "prod" if env.get("BUSCADOR_MODE", "mock").strip().lower() == "prod" else "mock"
    chat_endpoint = _blank_to_none(env.get("BUSCADOR_CHAT_ENDPOINT"))
    if mode == "prod" and chat_endpoint is None:
        raise ConfigurationError(
            "BUSCADOR_CHAT_ENDPOINT is not configured. Contact the administrator."
        )

    data_dir = env.get("BUSCADOR_DATA_DIR")
    db_path = Path(data_dir) / "buscador.db" if data_dir else SQLITE_PATH

    return Settings(
        mode=mode,
        chat_endpoint=chat_endpoint,
        presign_endpoint=_blank_to_none(env.get("BUSCADOR_PRESIGN_ENDPOINT")),
        model=_blank_to_none(env.get("BUSCADOR_MODEL")) or DEFAULT_MODEL,
        temperature=_number(env, "BUSCADOR_TEMPERATURE", DEFAULT_TEMPERATURE, float),
        timeout_s=_number(env, "BUSCADOR_TIMEOUT_S", DEFAULT_TIMEOUT_S, float),
        max_retries=_number(env, "BUSCADOR_MAX_RETRIES", DEFAULT_MAX_RETRIES, int),
        backoff_ms=_number(env, "BUSCADOR_BACKOFF_MS", DEFAULT_BACKOFF_MS, int),
        db_path=db_path,
    )
