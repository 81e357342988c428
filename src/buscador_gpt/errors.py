"""Exception taxonomy shared by the dispatcher, uploads and the CLI."""

from __future__ import annotations


class BuscadorError(Exception):
    """Base class for every error raised by buscador_gpt."""


class ConfigurationError(BuscadorError):
    """A required setting (endpoint, numeric policy value) is missing or malformed."""


class InvalidProfileError(BuscadorError):
    """A custom assistant definition could not be imported."""


class DispatchError(BuscadorError):
    """Base class for failures while calling the chat endpoint."""

    transient = False


class TransportError(DispatchError):
    """The request could not be delivered (DNS, refused connection, reset)."""

    transient = True


class ChatTimeoutError(DispatchError, TimeoutError):
    """No response arrived before the per-attempt deadline."""

    transient = True


class ProtocolError(DispatchError):
    """The endpoint answered, but not with a usable reply envelope."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.status is not None and (self.status == 429 or self.status >= 500)


class UploadError(BuscadorError):
    """Presigned URL generation or the follow-up PUT failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
