"""Shared test fixtures and configuration for backend tests."""
import asyncio

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app.auth.service import AuthenticationError, TokenService, get_user_store, set_token_service
from app.chat.coordinator import SessionCoordinator, set_coordinator
from app.chat.hub import ConnectionHub
from app.chat.rate_limiter import RateLimiter
from app.main import app

TEST_SECRET = "test-secret"


class FakeWebSocket:
    """Records every JSON frame the server sends."""

    def __init__(self):
        self.sent = []

    async def send_json(self, message):
        self.sent.append(message)

    def events(self, name=None):
        return [m for m in self.sent if name is None or m["event"] == name]

    def last(self, name):
        matching = self.events(name)
        return matching[-1]["data"] if matching else None

    def clear(self):
        self.sent.clear()


class BrokenWebSocket(FakeWebSocket):
    """A peer whose socket is already gone."""

    async def send_json(self, message):
        raise RuntimeError("socket closed")


class StalledWebSocket(FakeWebSocket):
    """A peer that never finishes reading: every send blocks forever."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    async def send_json(self, message):
        self.attempts += 1
        await asyncio.Event().wait()


class PrefixVerifier:
    """Accepts credentials of the form ``token-<username>``."""

    def verify(self, credential):
        if not credential or not credential.startswith("token-"):
            raise AuthenticationError("Invalid token")
        return credential[len("token-"):]


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def hub():
    hub = ConnectionHub()
    yield hub
    hub.shutdown()


@pytest_asyncio.fixture
async def coordinator():
    """A fresh coordinator with a generous rate limit and a short typing TTL."""
    coordinator = SessionCoordinator(
        verifier=PrefixVerifier(),
        rate_limiter=RateLimiter(max_events=1000, window_seconds=10),
        typing_ttl_seconds=0.05,
    )
    yield coordinator
    await coordinator.shutdown()


@pytest.fixture
def connect(coordinator):
    """Open and authenticate a fake connection for ``username``."""
    async def _connect(username):
        ws = FakeWebSocket()
        info = coordinator.open(ws)
        assert await coordinator.authenticate(info, f"token-{username}")
        await coordinator.hub.drain()
        return info, ws
    return _connect


@pytest.fixture
def token_service():
    return TokenService(secret_key=TEST_SECRET)


@pytest.fixture
def api_client(token_service):
    """Provide a TestClient for the main FastAPI app with fresh chat state.

    The client is entered as a context manager so every WebSocket session
    shares one event loop, and the app lifespan runs.
    """
    set_token_service(token_service)
    set_coordinator(SessionCoordinator(
        verifier=token_service,
        rate_limiter=RateLimiter(max_events=50, window_seconds=10),
        typing_ttl_seconds=0.2,
    ))
    get_user_store().clear()
    with TestClient(app) as client:
        yield client
    set_coordinator(None)
    set_token_service(None)
    get_user_store().clear()


@pytest.fixture
def make_socket():
    """Factory for recording sockets.

    ``make_socket(broken=True)`` fails every send; ``make_socket(stalled=True)``
    never completes one.
    """
    def _make(broken=False, stalled=False):
        if stalled:
            return StalledWebSocket()
        return BrokenWebSocket() if broken else FakeWebSocket()
    return _make
