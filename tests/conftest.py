"""Shared fixtures and fakes for buscador_gpt tests."""

import asyncio
import json

import pytest

from buscador_gpt.dispatcher import ChatDispatcher
from buscador_gpt.events import EventBus
from buscador_gpt.retry import RetryPolicy
from buscador_gpt.session import ChatSession
from buscador_gpt.storage import ConversationStore
from buscador_gpt.transport import TransportResponse

ENDPOINT = "https://chat.example.test/prod/chat"


def ok(body) -> TransportResponse:
    return TransportResponse(status=200, text=json.dumps(body))


def status(code: int, body=None) -> TransportResponse:
    text = json.dumps(body) if body is not None else "upstream failure"
    return TransportResponse(status=code, text=text)


class FakeTransport:
    """Replays scripted outcomes and records every request it receives.

    Each scripted item is a TransportResponse, an exception instance to raise,
    or the string ``"hang"`` to never resolve. The last item repeats.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.gets = []

    async def post(self, url, payload, timeout):
        self.requests.append((url, payload, timeout))
        idx = min(len(self.requests), len(self.outcomes)) - 1
        outcome = self.outcomes[idx]
        if outcome == "hang":
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def get(self, url, timeout):
        self.gets.append(url)
        outcome = self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def attempts(self) -> int:
        return len(self.requests)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def store(tmp_path):
    s = ConversationStore(tmp_path / "data" / "buscador.db")
    yield s
    s.close()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_dispatcher(sleep):
    def factory(transport, *, max_retries=1, timeout_s=5.0, backoff_ms=600):
        return ChatDispatcher(
            ENDPOINT,
            transport,
            policy=RetryPolicy(max_retries=max_retries, backoff_ms=backoff_ms),
            timeout_s=timeout_s,
            sleep=sleep,
        )

    return factory


class Clock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        self.now += 1.0
        return self.now


@pytest.fixture
def make_session(store, make_dispatcher):
    def factory(transport, **kwargs):
        dispatcher = make_dispatcher(transport)
        bus = kwargs.pop("bus", None) or EventBus()
        return ChatSession(dispatcher, store, bus, clock=Clock(), **kwargs)

    return factory
