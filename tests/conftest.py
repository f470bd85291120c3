from __future__ import annotations

import pytest
from loguru import logger

from davincibot.auth import Credentials
from davincibot.config import PresenceConfig, ReconnectConfig
from davincibot.connector import SessionConnector
from davincibot.dispatcher import EventDispatcher
from davincibot.presence import PresenceSequencer
from davincibot.router import CommandRouter
from tests.fakes import FakeProvider, FakeTransport, MemoryStore


@pytest.fixture
def log_messages() -> list[str]:
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store(transport: FakeTransport) -> MemoryStore:
    return MemoryStore(journal=transport.journal)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(identity={"registered": True, "me": {"id": "bot@s.whatsapp.net"}})


@pytest.fixture
def connector(transport: FakeTransport, credentials: Credentials, store: MemoryStore) -> SessionConnector:
    connector = SessionConnector(
        transport,
        credentials,
        reconnect=ReconnectConfig(base_delay=0.0, max_delay=0.0),
    )
    connector.on_credentials_changed(store.save)
    return connector


@pytest.fixture
def presence(connector: SessionConnector) -> PresenceSequencer:
    return PresenceSequencer(connector, PresenceConfig(subscribe_delay=0.0, composing_delay=0.0))


@pytest.fixture
def router(connector: SessionConnector, provider: FakeProvider, presence: PresenceSequencer) -> CommandRouter:
    return CommandRouter(connector, provider, presence)


@pytest.fixture
def dispatcher(connector: SessionConnector, router: CommandRouter) -> EventDispatcher:
    return EventDispatcher(connector, router).attach()
