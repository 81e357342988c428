"""
Tests for buscador_gpt.dispatcher.

Covers:
  - Request payload shape (ordered messages, model, temperature)
  - Reply extraction and embedded error envelopes
  - Retry bound for transient failures (429, 5xx, transport, timeout)
  - No retry for other 4xx responses
  - Per-attempt deadline enforcement
  - Endpoint resolution from settings
  - requests exceptions mapped onto the retryable error taxonomy
  - Health probe
"""

import time
from unittest.mock import patch

import pytest
import requests
from pydantic import ValidationError

from buscador_gpt.config import Settings
from buscador_gpt.dispatcher import DEMO_ENDPOINT, ChatDispatcher, DispatchState
from buscador_gpt.errors import ChatTimeoutError, ConfigurationError, ProtocolError, TransportError
from buscador_gpt.models import SystemMessage, UserMessage
from buscador_gpt.transport import DemoTransport, RequestsTransport, TransportResponse

from .conftest import ENDPOINT, FakeTransport, ok, status

HISTORY = [
    SystemMessage(content="Eres experta en detergentes."),
    UserMessage(content="¿Qué tensioactivo uso?"),
]


# ========================================================================
# Payload and reply parsing
# ========================================================================


class TestPayload:
    async def test_serializes_history_in_order(self, make_dispatcher):
        transport = FakeTransport(ok({"reply": "Usa LAS."}))
        dispatcher = make_dispatcher(transport)

        await dispatcher.send(HISTORY)

        url, payload, _ = transport.requests[0]
        assert url == ENDPOINT
        assert payload["messages"] == [
            {"role": "system", "content": "Eres experta en detergentes."},
            {"role": "user", "content": "¿Qué tensioactivo uso?"},
        ]
        assert payload["model"] == "gpt-4o-mini"
        assert payload["temperature"] == 0.7

    async def test_model_hint_overrides_default(self, make_dispatcher):
        transport = FakeTransport(ok({"reply": "ok"}))
        await make_dispatcher(transport).send(HISTORY, model_hint="gpt-4o")
        assert transport.requests[0][1]["model"] == "gpt-4o"

    async def test_accepts_plain_dicts(self, make_dispatcher):
        transport = FakeTransport(ok({"reply": "ok"}))
        await make_dispatcher(transport).send([{"role": "user", "content": "hola", "extra": 1}])
        assert transport.requests[0][1]["messages"] == [{"role": "user", "content": "hola"}]

    async def test_empty_history_rejected(self, make_dispatcher):
        with pytest.raises(ValueError):
            await make_dispatcher(FakeTransport(ok({"reply": "x"}))).send([])

    async def test_invalid_dict_role_rejected(self, make_dispatcher):
        transport = FakeTransport(ok({"reply": "x"}))
        with pytest.raises(ValidationError):
            await make_dispatcher(transport).send([{"role": "bot", "content": "hola"}])
        assert transport.attempts == 0


class TestReply:
    async def test_returns_reply_text(self, make_dispatcher):
        dispatcher = make_dispatcher(FakeTransport(ok({"reply": "Usa cocamidopropil betaína", "model": "gpt-4o-mini"})))
        assert await dispatcher.send(HISTORY) == "Usa cocamidopropil betaína"
        assert dispatcher.last_state is DispatchState.SUCCESS

    async def test_send_reply_keeps_envelope(self, make_dispatcher):
        body = {"reply": "ok", "model": "m", "usage": {"total_tokens": 12}, "finish_reason": "stop"}
        reply = await make_dispatcher(FakeTransport(ok(body))).send_reply(HISTORY)
        assert reply.usage == {"total_tokens": 12}
        assert reply.finish_reason == "stop"

    async def test_embedded_error_raises(self, make_dispatcher):
        transport = FakeTransport(ok({"error": "quota exceeded", "detail": "monthly"}))
        with pytest.raises(ProtocolError, match="quota exceeded: monthly"):
            await make_dispatcher(transport).send(HISTORY)
        assert transport.attempts == 1

    async def test_non_json_body_raises(self, make_dispatcher):
        transport = FakeTransport(TransportResponse(status=200, text="<html>oops</html>"))
        with pytest.raises(ProtocolError, match="not JSON"):
            await make_dispatcher(transport).send(HISTORY)

    async def test_missing_reply_raises(self, make_dispatcher):
        with pytest.raises(ProtocolError, match="missing reply"):
            await make_dispatcher(FakeTransport(ok({"answer": "hi"}))).send(HISTORY)

    async def test_blank_reply_raises(self, make_dispatcher):
        with pytest.raises(ProtocolError, match="empty reply"):
            await make_dispatcher(FakeTransport(ok({"reply": "   "}))).send(HISTORY)


# ========================================================================
# Retry policy
# ========================================================================


class TestRetries:
    async def test_503_exhausts_budget(self, make_dispatcher, sleep):
        transport = FakeTransport(status(503))
        dispatcher = make_dispatcher(transport, max_retries=1)

        with pytest.raises(ProtocolError) as exc_info:
            await dispatcher.send(HISTORY)

        assert transport.attempts == 2
        assert exc_info.value.status == 503
        assert dispatcher.last_state is DispatchState.FAILED
        assert sleep.delays == [0.6]

    async def test_larger_budget_linear_backoff(self, make_dispatcher, sleep):
        transport = FakeTransport(status(500))
        with pytest.raises(ProtocolError):
            await make_dispatcher(transport, max_retries=3, backoff_ms=100).send(HISTORY)
        assert transport.attempts == 4
        assert sleep.delays == pytest.approx([0.1, 0.2, 0.3])

    async def test_429_then_success(self, make_dispatcher):
        transport = FakeTransport(status(429, {"error": "slow down"}), ok({"reply": "listo"}))
        dispatcher = make_dispatcher(transport)
        assert await dispatcher.send(HISTORY) == "listo"
        assert dispatcher.last_attempts == 2

    async def test_400_is_not_retried(self, make_dispatcher, sleep):
        transport = FakeTransport(status(400, {"error": "bad messages"}))
        with pytest.raises(ProtocolError, match="400: bad messages"):
            await make_dispatcher(transport, max_retries=3).send(HISTORY)
        assert transport.attempts == 1
        assert sleep.delays == []

    async def test_transport_error_retried(self, make_dispatcher):
        transport = FakeTransport(TransportError("connection refused"), ok({"reply": "ok"}))
        assert await make_dispatcher(transport).send(HISTORY) == "ok"
        assert transport.attempts == 2

    async def test_transport_error_exhausted(self, make_dispatcher):
        transport = FakeTransport(TransportError("connection refused"))
        with pytest.raises(TransportError):
            await make_dispatcher(transport).send(HISTORY)
        assert transport.attempts == 2

    async def test_zero_retries(self, make_dispatcher):
        transport = FakeTransport(status(502))
        with pytest.raises(ProtocolError):
            await make_dispatcher(transport, max_retries=0).send(HISTORY)
        assert transport.attempts == 1

    async def test_attempts_counted_per_call(self, make_dispatcher):
        transport = FakeTransport(status(503), ok({"reply": "uno"}), ok({"reply": "dos"}))
        dispatcher = make_dispatcher(transport)

        assert await dispatcher.send(HISTORY) == "uno"
        assert dispatcher.last_attempts == 2

        assert await dispatcher.send(HISTORY) == "dos"
        assert dispatcher.last_attempts == 1
        assert dispatcher.last_state is DispatchState.SUCCESS


# ========================================================================
# Deadline
# ========================================================================


class TestTimeout:
    async def test_hanging_transport_times_out_after_deadline(self, make_dispatcher):
        transport = FakeTransport("hang")
        dispatcher = make_dispatcher(transport, timeout_s=0.05, max_retries=0)

        start = time.monotonic()
        with pytest.raises(ChatTimeoutError):
            await dispatcher.send(HISTORY)
        elapsed = time.monotonic() - start

        assert elapsed >= 0.045
        assert transport.attempts == 1

    async def test_timeout_is_builtin_timeout_error(self, make_dispatcher):
        dispatcher = make_dispatcher(FakeTransport("hang"), timeout_s=0.01, max_retries=0)
        with pytest.raises(TimeoutError):
            await dispatcher.send(HISTORY)

    async def test_timeout_is_retried(self, make_dispatcher):
        transport = FakeTransport("hang", ok({"reply": "por fin"}))
        dispatcher = make_dispatcher(transport, timeout_s=0.02)
        assert await dispatcher.send(HISTORY) == "por fin"
        assert transport.attempts == 2


class TestRequestsTransportErrors:
    """The real transport maps requests exceptions onto retryable errors."""

    def _dispatcher(self, make_dispatcher, error):
        session = requests.Session()
        patcher = patch.object(session, "request", side_effect=error)
        return make_dispatcher(RequestsTransport(session)), patcher

    async def test_connect_timeout_is_chat_timeout(self, make_dispatcher, sleep):
        dispatcher, patcher = self._dispatcher(make_dispatcher, requests.ConnectTimeout("connect timed out"))
        with patcher as request:
            with pytest.raises(ChatTimeoutError):
                await dispatcher.send(HISTORY)
        assert request.call_count == 2
        assert dispatcher.last_attempts == 2
        assert sleep.delays == [0.6]

    async def test_connection_error_is_transport_error(self, make_dispatcher):
        dispatcher, patcher = self._dispatcher(make_dispatcher, requests.ConnectionError("refused"))
        with patcher as request:
            with pytest.raises(TransportError, match="Could not reach the chat server"):
                await dispatcher.send(HISTORY)
        assert request.call_count == 2

    async def test_request_carries_payload_and_timeout(self, make_dispatcher):
        session = requests.Session()
        response = requests.Response()
        response.status_code = 200
        response._content = b'{"reply": "hecho"}'
        response.encoding = "utf-8"
        dispatcher = make_dispatcher(RequestsTransport(session), timeout_s=3.0)

        with patch.object(session, "request", return_value=response) as request:
            assert await dispatcher.send(HISTORY) == "hecho"

        method, url = request.call_args.args
        assert (method, url) == ("POST", ENDPOINT)
        assert request.call_args.kwargs["timeout"] == 3.0
        assert request.call_args.kwargs["json"]["messages"][1]["content"] == "¿Qué tensioactivo uso?"


# ========================================================================
# Construction and health
# ========================================================================


class TestFromSettings:
    def test_uses_configured_endpoint(self):
        settings = Settings(mode="prod", chat_endpoint="https://x.test/chat", max_retries=2, timeout_s=3)
        dispatcher = ChatDispatcher.from_settings(settings)
        assert dispatcher.endpoint == "https://x.test/chat"
        assert isinstance(dispatcher.transport, RequestsTransport)
        assert dispatcher.policy.max_attempts == 3
        assert dispatcher.timeout_s == 3

    def test_health_url_from_settings(self):
        settings = Settings(mode="prod", chat_endpoint="https://x.test/chat/")
        dispatcher = ChatDispatcher.from_settings(settings)
        assert dispatcher.health_url == settings.health_url == "https://x.test/chat/health"

    def test_prod_without_endpoint_is_fatal(self):
        with pytest.raises(ConfigurationError):
            ChatDispatcher.from_settings(Settings(mode="prod"))

    def test_mock_without_endpoint_uses_demo(self):
        dispatcher = ChatDispatcher.from_settings(Settings(mode="mock"))
        assert dispatcher.endpoint == DEMO_ENDPOINT
        assert isinstance(dispatcher.transport, DemoTransport)

    def test_blank_endpoint_rejected(self):
        with pytest.raises(ConfigurationError):
            ChatDispatcher("", FakeTransport(ok({})))

    async def test_demo_transport_replies(self):
        dispatcher = ChatDispatcher.from_settings(Settings(mode="mock"))
        reply = await dispatcher.send([UserMessage(content="pH neutro")])
        assert "(mock)" in reply
        assert "pH neutro" in reply


class TestHealth:
    async def test_healthy(self, make_dispatcher):
        transport = FakeTransport(ok({"ok": True}))
        dispatcher = make_dispatcher(transport)
        assert await dispatcher.health() is True
        assert transport.gets == [ENDPOINT + "/health"]

    async def test_not_ok(self, make_dispatcher):
        assert await make_dispatcher(FakeTransport(ok({"ok": False}))).health() is False

    async def test_transport_failure_is_unhealthy(self, make_dispatcher):
        assert await make_dispatcher(FakeTransport(TransportError("down"))).health() is False

    async def test_error_status_is_unhealthy(self, make_dispatcher):
        assert await make_dispatcher(FakeTransport(status(503))).health() is False
