"""Chat dispatcher: serializes a conversation and calls the chat endpoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any

from pydantic import ValidationError

from .config import DEFAULT_MODEL, DEFAULT_TEMPERATURE, DEFAULT_TIMEOUT_S, Settings
from .errors import ChatTimeoutError, ConfigurationError, DispatchError, ProtocolError
from .models import ChatReply, ErrorEnvelope, parse_message
from .retry import RetryPolicy
from .transport import DemoTransport, RequestsTransport, Transport, TransportResponse

logger = logging.getLogger(__name__)

DEMO_ENDPOINT = "demo://chat"


class DispatchState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


def _as_wire(message: Any) -> dict[str, str]:
    if isinstance(message, dict):
        message = parse_message(message)
    return message.to_wire()


def _error_text(body: Any) -> str | None:
    if isinstance(body, dict) and body.get("error"):
        try:
            env = ErrorEnvelope.model_validate(body)
        except ValidationError:
            return str(body["error"])
        return f"{env.error}: {env.detail}" if env.detail else env.error
    return None


def _log_retry(attempt: int, error: BaseException) -> None:
    logger.debug("%s after attempt %d: %s", DispatchState.RETRYING.value, attempt + 1, error)


def parse_reply(response: TransportResponse) -> ChatReply:
    """Turn an HTTP response into a ChatReply or raise ProtocolError."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if not response.ok:
        detail = _error_text(body) or response.text.strip()[:200]
        message = f"Server error {response.status}"
        if detail:
            message += f": {detail}"
        raise ProtocolError(message, status=response.status)

    if body is None:
        raise ProtocolError("Invalid response from server (not JSON)", status=response.status)

    error = _error_text(body)
    if error:
        raise ProtocolError(error, status=response.status)

    try:
        reply = ChatReply.model_validate(body)
    except ValidationError:
        raise ProtocolError("Invalid response from server (missing reply)", status=response.status) from None
    if not reply.reply.strip():
        raise ProtocolError("The server returned an empty reply", status=response.status)
    return reply


class ChatDispatcher:
    """Sends a conversation to the configured chat endpoint.

    The endpoint is fixed at construction. Each attempt runs under a hard
    wall-clock deadline; transient failures are retried according to the
    policy. Calls are independent, with no caching or coalescing.

    ``last_state`` and ``last_attempts`` describe the most recently finished
    call. Overlapping calls each count their own attempts and publish them
    when they finish, so with concurrent sends these show whichever ended last.
    """

    def __init__(
        self,
        endpoint: str,
        transport: Transport,
        *,
        policy: RetryPolicy | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        health_url: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not endpoint:
            raise ConfigurationError("Chat endpoint is not configured. Contact the administrator.")
        self.endpoint = endpoint
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self.timeout_s = timeout_s
        self.model = model
        self.temperature = temperature
        self.health_url = health_url or endpoint.rstrip("/") + "/health"
        self._sleep = sleep
        self.last_state = DispatchState.IDLE
        self.last_attempts = 0

    @classmethod
    def from_settings(cls, settings: Settings, transport: Transport | None = None) -> ChatDispatcher:
        policy = RetryPolicy(max_retries=settings.max_retries, backoff_ms=settings.backoff_ms)
        if settings.chat_endpoint:
            endpoint = settings.chat_endpoint
            transport = transport or RequestsTransport()
        elif settings.is_prod:
            raise ConfigurationError("BUSCADOR_CHAT_ENDPOINT is not configured. Contact the administrator.")
        else:
            logger.warning("No chat endpoint configured, using the demo transport")
            endpoint = DEMO_ENDPOINT
            transport = transport or DemoTransport()
        return cls(
            endpoint,
            transport,
            policy=policy,
            timeout_s=settings.timeout_s,
            model=settings.model,
            temperature=settings.temperature,
            health_url=settings.health_url,
        )

    def build_payload(self, history: Sequence[Any], model_hint: str | None = None) -> dict[str, Any]:
        return {
            "messages": [_as_wire(m) for m in history],
            "model": model_hint or self.model,
            "temperature": self.temperature,
        }

    async def _attempt(self, payload: dict[str, Any], attempt: int) -> ChatReply:
        logger.debug("%s: POST %s (attempt %d/%d)", DispatchState.SENDING.value, self.endpoint, attempt + 1, self.policy.max_attempts)
        try:
            response = await asyncio.wait_for(
                self.transport.post(self.endpoint, payload, self.timeout_s),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            raise ChatTimeoutError(
                f"The server did not respond within {self.timeout_s:g}s"
            ) from None
        return parse_reply(response)

    async def send_reply(self, history: Sequence[Any], model_hint: str | None = None) -> ChatReply:
        """Dispatch ``history`` and return the full reply envelope."""
        if not history:
            raise ValueError("Cannot dispatch an empty conversation")
        payload = self.build_payload(history, model_hint)
        attempts = 0

        async def attempt_once(attempt: int) -> ChatReply:
            nonlocal attempts
            attempts = attempt + 1
            return await self._attempt(payload, attempt)

        logger.debug("Dispatching %d messages to %s", len(history), self.endpoint)
        try:
            reply = await self.policy.run(attempt_once, sleep=self._sleep, on_retry=_log_retry)
        except DispatchError as e:
            self.last_state, self.last_attempts = DispatchState.FAILED, attempts
            logger.warning("Dispatch failed after %d attempt(s): %s", attempts, e)
            raise
        self.last_state, self.last_attempts = DispatchState.SUCCESS, attempts
        logger.info("Reply received after %d attempt(s)", attempts)
        return reply

    async def send(self, history: Sequence[Any], model_hint: str | None = None) -> str:
        """Dispatch ``history`` and return the reply text."""
        reply = await self.send_reply(history, model_hint)
        return reply.reply

    async def health(self) -> bool:
        """Probe ``<endpoint>/health``. Network failures count as unhealthy."""
        try:
            response = await asyncio.wait_for(
                self.transport.get(self.health_url, self.timeout_s),
                timeout=self.timeout_s,
            )
            body = response.json() if response.ok else {}
        except (DispatchError, asyncio.TimeoutError, ValueError) as e:
            logger.info("Health check failed: %s", e)
            return False
        return isinstance(body, dict) and bool(body.get("ok"))
