"""HTTP transports used by the chat dispatcher."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import socket
import threading
from dataclasses import dataclass
from typing import Any, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from .errors import ChatTimeoutError, TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.text)


class Transport(Protocol):
    async def post(self, url: str, payload: dict[str, Any], timeout: float) -> TransportResponse: ...

    async def get(self, url: str, timeout: float) -> TransportResponse: ...


# The in-flight request of the current worker thread, if any
_local = threading.local()


class InFlight:
    """Socket of one blocking request, so the event loop can abort it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sock: socket.socket | None = None
        self.aborted = False

    def attach(self, sock: socket.socket | None):
        with self._lock:
            self._sock = sock
            aborted = self.aborted
        if aborted:
            _shutdown(sock)

    def abort(self):
        with self._lock:
            self.aborted = True
            sock = self._sock
        _shutdown(sock)


def _shutdown(sock: socket.socket | None):
    # shutdown() wakes a recv() blocked in another thread; close() does not
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug("Socket already closed: %s", e)


class _AbortableMixin:
    def getresponse(self, *args, **kwargs):
        inflight = getattr(_local, "inflight", None)
        if inflight is not None:
            inflight.attach(self.sock)
        return super().getresponse(*args, **kwargs)


class _AbortableHTTPConnection(_AbortableMixin, HTTPConnection):
    pass


class _AbortableHTTPSConnection(_AbortableMixin, HTTPSConnection):
    pass


class _HTTPPool(HTTPConnectionPool):
    ConnectionCls = _AbortableHTTPConnection


class _HTTPSPool(HTTPSConnectionPool):
    ConnectionCls = _AbortableHTTPSConnection


class AbortableAdapter(HTTPAdapter):
    """HTTPAdapter whose connections report their socket to the running request.

    Waiting for the response (status line, headers and body) happens after
    the socket is attached, so a cancelled attempt can close it mid-read.
    """

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {"http": _HTTPPool, "https": _HTTPSPool}


class RequestsTransport:
    """Transport backed by a ``requests.Session``.

    The blocking call runs in a worker thread so the event loop stays free.
    When the awaiting coroutine is cancelled (the dispatcher's deadline
    expired) the socket is shut down, which ends the worker thread and the
    HTTP request with it. A retry never overlaps the attempt it replaces.
    """

    def __init__(self, session: requests.Session | None = None):
        self.session = session or requests.Session()
        adapter = AbortableAdapter()
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    async def post(self, url: str, payload: dict[str, Any], timeout: float) -> TransportResponse:
        return await self._call("POST", url, payload, timeout)

    async def get(self, url: str, timeout: float) -> TransportResponse:
        return await self._call("GET", url, None, timeout)

    async def _call(self, method: str, url: str, payload: dict[str, Any] | None, timeout: float) -> TransportResponse:
        inflight = InFlight()
        try:
            return await asyncio.to_thread(self._request, inflight, method, url, payload, timeout)
        except asyncio.CancelledError:
            logger.debug("%s %s cancelled, closing the connection", method, url)
            inflight.abort()
            raise

    def _request(
        self,
        inflight: InFlight,
        method: str,
        url: str,
        payload: dict[str, Any] | None,
        timeout: float,
    ) -> TransportResponse:
        if inflight.aborted:
            raise ChatTimeoutError("Request cancelled before it was sent")
        _local.inflight = inflight
        try:
            resp = self.session.request(method, url, json=payload, timeout=timeout)
        except requests.Timeout as e:
            raise ChatTimeoutError(f"The server did not respond within {timeout:g}s") from e
        except requests.RequestException as e:
            raise TransportError(f"Could not reach the chat server: {e}") from e
        finally:
            _local.inflight = None
        return TransportResponse(status=resp.status_code, text=resp.text)

    def close(self):
        self.session.close()


DEMO_RESPONSES = (
    '🔧 (mock) He recibido tu consulta: "{message}". Como especialista de Ingtec, '
    "puedo ayudarte con formulaciones, procesos y análisis técnicos.",
    '🔬 (mock) Entiendo tu pregunta sobre: "{message}". En base a nuestra experiencia '
    "en especialidades químicas, te puedo sugerir varias alternativas.",
    '📊 (mock) Respecto a: "{message}". Como líder en el sector, Ingtec maneja múltiples '
    "soluciones que podrían ser relevantes para tu consulta.",
    '⚗️ (mock) Tu consulta "{message}" es muy interesante. Te comparto información '
    "técnica basada en nuestros años de experiencia.",
)


def demo_reply(message: str) -> str:
    """Canned reply for ``message``; the same message always gets the same reply."""
    digest = hashlib.sha1(message.encode("utf-8")).digest()
    return DEMO_RESPONSES[digest[0] % len(DEMO_RESPONSES)].format(message=message)


class DemoTransport:
    """Offline stand-in for the chat endpoint, used only in mock mode."""

    async def post(self, url: str, payload: dict[str, Any], timeout: float) -> TransportResponse:
        messages = payload.get("messages") or []
        last_user = next(
            (m.get("content", "") for m in reversed(messages) if m.get("role") == "user"),
            "",
        )
        body = {"reply": demo_reply(last_user), "model": f"{payload.get('model', 'demo')} (mock)"}
        return TransportResponse(status=200, text=json.dumps(body, ensure_ascii=False))

    async def get(self, url: str, timeout: float) -> TransportResponse:
        return TransportResponse(status=200, text='{"ok": true}')
