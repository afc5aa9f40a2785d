"""
Pytest configuration and fixtures for chat tests.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from shared.config.constants import Roles
from shared.config.settings import Settings
from shared.infrastructure.background import BackgroundTaskQueue
from shared.infrastructure.cache import InMemoryHistoryCache
from shared.infrastructure.db import build_engine, build_session_factory
from marketplace.models import Base, Bid, Project, User
from marketplace.repositories import ChatGateway
from marketplace.services.domain import ChatService, IdempotencyMap
from chat_gateway.components.connection.registry import ConnectionRegistry
from chat_gateway.components.core.dependencies import build_services


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    File-backed SQLite per test.

    Gateway calls run in worker threads with their own sessions, so an
    in-memory database would not be shared between them.
    """
    test_engine = build_engine(f"sqlite:///{tmp_path / 'chat.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db_session):
    """
    Users, projects and bids.

    - alice (CLIENT) owns `website`; bob and carol bid on it
    - dave (BOTH) owns `mobile`; bob bids on it, and dave bids on `website`
    """
    alice = User(name="Alice", email="alice@test.com", role=Roles.CLIENT)
    bob = User(name="Bob", email="bob@test.com", role=Roles.FREELANCER)
    carol = User(name="Carol", email="carol@test.com", role=Roles.FREELANCER)
    dave = User(name="Dave", email="dave@test.com", role=Roles.BOTH)
    db_session.add_all([alice, bob, carol, dave])
    db_session.flush()

    website = Project(title="Website redesign", client_id=alice.id, budget=Decimal("1500"))
    mobile = Project(title="Mobile app", client_id=dave.id, budget=Decimal("4000"))
    db_session.add_all([website, mobile])
    db_session.flush()

    db_session.add_all([
        Bid(amount=Decimal("1200"), user_id=bob.id, project_id=website.id),
        Bid(amount=Decimal("1400"), user_id=carol.id, project_id=website.id),
        Bid(amount=Decimal("1300"), user_id=dave.id, project_id=website.id),
        Bid(amount=Decimal("3500"), user_id=bob.id, project_id=mobile.id),
    ])
    db_session.commit()

    return SimpleNamespace(
        alice=alice.id,
        bob=bob.id,
        carol=carol.id,
        dave=dave.id,
        website=website.id,
        mobile=mobile.id,
    )


@pytest.fixture
def cache():
    return InMemoryHistoryCache(max_size=1000)


@pytest.fixture
def tasks():
    """Unstarted queue: tasks run detached and drain() awaits them."""
    return BackgroundTaskQueue(worker_count=2, queue_max_size=100)


@pytest.fixture
def gateway(session_factory):
    return ChatGateway(session_factory, timeout=5.0)


@pytest.fixture
def registry():
    return ConnectionRegistry(send_timeout=1.0)


@pytest.fixture
def chat_service(gateway, cache, tasks, registry):
    return ChatService(
        gateway,
        cache,
        tasks,
        idempotency=IdempotencyMap(ttl_seconds=3600, sweep_interval=60),
        is_online=registry.is_online,
    )


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite://",
        chat_cache_backend="memory",
        ws_heartbeat_interval=3600.0,
        ws_max_message_size=4096,
        background_drain_timeout=1.0,
    )


@pytest.fixture
def services(test_settings, session_factory, cache):
    return build_services(test_settings, session_factory=session_factory, cache=cache)


def _make_fake_websocket(origin: str | None = None) -> MagicMock:
    ws = MagicMock()
    ws.client_state = WebSocketState.CONNECTED
    ws.application_state = WebSocketState.CONNECTED
    ws.headers = {"origin": origin} if origin else {}
    ws.accept = AsyncMock()
    ws.send_json = AsyncMock()
    ws.send_text = AsyncMock()

    async def close(code: int = 1000, reason: str | None = None):
        ws.application_state = WebSocketState.DISCONNECTED
        ws.close_code = code
        ws.close_reason = reason

    ws.close = AsyncMock(side_effect=close)
    return ws


@pytest.fixture
def make_ws():
    """Factory for fake connected websockets recording what was sent."""
    return _make_fake_websocket


def sent_events(ws: MagicMock) -> list[dict]:
    """Events passed to ws.send_json, in order."""
    return [call.args[0] for call in ws.send_json.await_args_list]


def sent_types(ws: MagicMock) -> list[str]:
    return [event["type"] for event in sent_events(ws)]
