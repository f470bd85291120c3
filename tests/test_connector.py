from __future__ import annotations

import pytest

from davincibot.auth import Credentials
from davincibot.config import ReconnectConfig
from davincibot.connector import ConnectorState, SessionConnector
from davincibot.dispatcher import EventDispatcher
from davincibot.errors import NotConnectedError, TransportError
from davincibot.transport.base import (
    ConnectionState,
    DisconnectReason,
    EventKind,
    OutgoingMessage,
    PresenceState,
)
from tests.fakes import PEER, FakeTransport, MemoryStore, closed, opened, text_message, upsert


@pytest.mark.asyncio
async def test_connect_negotiates_latest_version_and_ignores_broadcast(
    connector: SessionConnector, transport: FakeTransport, credentials: Credentials
) -> None:
    session = await connector.connect()

    assert session.version == (2, 3000, 1)
    assert session.generation == 1
    assert session.credentials is credentials
    assert connector.session is session
    assert connector.state is ConnectorState.INITIALIZING

    opened_with, version, should_ignore = transport.opens[0]
    assert opened_with is credentials
    assert version == (2, 3000, 1)
    assert should_ignore is not None
    assert should_ignore("status@broadcast")
    assert not should_ignore(PEER)


@pytest.mark.asyncio
async def test_pinned_version_skips_negotiation(transport: FakeTransport, credentials: Credentials) -> None:
    connector = SessionConnector(transport, credentials, protocol_version=(2, 2204, 13))

    session = await connector.connect()

    assert session.version == (2, 2204, 13)
    assert transport.opens[0][1] == (2, 2204, 13)


@pytest.mark.asyncio
async def test_version_fetch_failure_falls_back_to_default(
    transport: FakeTransport, credentials: Credentials, log_messages: list[str]
) -> None:
    async def broken_fetch():
        raise ConnectionError("version endpoint down")

    transport.fetch_latest_version = broken_fetch  # type: ignore[method-assign]
    connector = SessionConnector(transport, credentials)

    session = await connector.connect()

    assert session.version == transport.default_version
    assert any("Could not fetch latest protocol version" in m for m in log_messages)


@pytest.mark.asyncio
async def test_open_update_moves_to_open(connector: SessionConnector) -> None:
    session = await connector.connect()

    await connector.handle_connection_update(opened()[EventKind.CONNECTION_UPDATE])

    assert connector.state is ConnectorState.OPEN
    assert session.status is ConnectionState.OPEN


@pytest.mark.asyncio
async def test_recoverable_close_opens_exactly_one_new_session(
    connector: SessionConnector, transport: FakeTransport, credentials: Credentials
) -> None:
    first = await connector.connect()
    await connector.handle_connection_update(opened()[EventKind.CONNECTION_UPDATE])

    await connector.handle_connection_update(closed(DisconnectReason.CONNECTION_LOST)[EventKind.CONNECTION_UPDATE])

    assert len(transport.opens) == 2
    assert transport.opens[1][0] is credentials
    second = connector.session
    assert second is not None and second is not first
    assert second.generation == 2
    assert first.status is ConnectionState.CLOSE
    assert transport.sockets[0].closed
    assert not transport.sockets[1].closed
    assert connector.state is ConnectorState.INITIALIZING


@pytest.mark.asyncio
async def test_logged_out_close_is_terminal(
    connector: SessionConnector, transport: FakeTransport, log_messages: list[str]
) -> None:
    await connector.connect()

    await connector.handle_connection_update(closed(DisconnectReason.LOGGED_OUT)[EventKind.CONNECTION_UPDATE])

    assert len(transport.opens) == 1
    assert connector.state is ConnectorState.CLOSED_TERMINAL
    assert connector.terminated
    assert connector.session is None
    assert transport.sockets[0].closed
    assert any("You are logged out" in m for m in log_messages)

    with pytest.raises(NotConnectedError):
        await connector.connect()


@pytest.mark.asyncio
async def test_run_reconnects_until_logged_out(
    connector: SessionConnector, dispatcher: EventDispatcher, transport: FakeTransport
) -> None:
    transport.scripts = [
        [opened(), closed(DisconnectReason.CONNECTION_CLOSED)],
        [opened(), closed(DisconnectReason.RESTART_REQUIRED)],
        [opened(), closed(DisconnectReason.LOGGED_OUT)],
    ]

    await connector.run()

    assert len(transport.opens) == 3
    assert all(opened_with is connector.credentials for opened_with, _, _ in transport.opens)
    assert all(socket.closed for socket in transport.sockets)
    assert connector.state is ConnectorState.CLOSED_TERMINAL
    assert dispatcher.batches_processed == 6


@pytest.mark.asyncio
async def test_run_retries_a_failed_first_connect(
    connector: SessionConnector,
    dispatcher: EventDispatcher,
    transport: FakeTransport,
    log_messages: list[str],
) -> None:
    transport.open_failures = 1
    transport.scripts = [[opened(), closed(DisconnectReason.LOGGED_OUT)]]

    await connector.run()

    assert len(transport.opens) == 2
    assert len(transport.sockets) == 1
    assert connector.state is ConnectorState.CLOSED_TERMINAL
    assert dispatcher.batches_processed == 2
    assert any("Connect attempt 1 failed: network unreachable" in m for m in log_messages)


@pytest.mark.asyncio
async def test_run_after_stop_does_not_connect(
    connector: SessionConnector, dispatcher: EventDispatcher, transport: FakeTransport
) -> None:
    await connector.stop()

    await connector.run()

    assert transport.opens == []


@pytest.mark.asyncio
async def test_run_requires_a_batch_handler(connector: SessionConnector) -> None:
    with pytest.raises(RuntimeError):
        await connector.run()


@pytest.mark.asyncio
async def test_failed_reconnect_attempts_are_retried(
    connector: SessionConnector, transport: FakeTransport, log_messages: list[str]
) -> None:
    await connector.connect()
    transport.open_failures = 2

    await connector.handle_connection_update(closed()[EventKind.CONNECTION_UPDATE])

    assert len(transport.opens) == 4
    assert len(transport.sockets) == 2
    assert connector.session is not None and connector.session.generation == 2
    assert any("Reconnect attempt 1 failed" in m for m in log_messages)
    assert any("Reconnect attempt 2 failed" in m for m in log_messages)


@pytest.mark.asyncio
async def test_reconnect_backs_off_between_failed_attempts(
    monkeypatch: pytest.MonkeyPatch, transport: FakeTransport, credentials: Credentials
) -> None:
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("davincibot.connector.asyncio.sleep", fake_sleep)
    connector = SessionConnector(
        transport, credentials, reconnect=ReconnectConfig(base_delay=1.0, max_delay=3.0, factor=2.0)
    )
    await connector.connect()
    transport.open_failures = 3

    await connector.handle_connection_update(closed()[EventKind.CONNECTION_UPDATE])

    # First retry is immediate, then 1s, 2s, capped at 3s
    assert delays == [1.0, 2.0, 3.0]
    assert connector.session is not None


@pytest.mark.asyncio
async def test_batches_drop_broadcast_messages(connector: SessionConnector, transport: FakeTransport) -> None:
    await connector.connect()
    transport.socket.push(
        upsert(text_message("/ia hi", jid="status@broadcast", msg_id="b1"), text_message("/ia hi", msg_id="m1")),
        {**upsert(text_message("x", jid="status@broadcast")), **opened()},
    )

    stream = connector.batches()
    first = await stream.__anext__()
    second = await stream.__anext__()
    await stream.aclose()

    messages = first[EventKind.MESSAGES_UPSERT].messages
    assert [m.key.id for m in messages] == ["m1"]
    assert EventKind.MESSAGES_UPSERT not in second
    assert EventKind.CONNECTION_UPDATE in second


@pytest.mark.asyncio
async def test_stream_ending_without_close_reconnects(
    connector: SessionConnector, dispatcher: EventDispatcher, transport: FakeTransport, log_messages: list[str]
) -> None:
    transport.scripts = [
        [opened(), None],
        [opened(), closed(DisconnectReason.LOGGED_OUT)],
    ]

    await connector.run()

    assert len(transport.opens) == 2
    assert transport.sockets[0].closed
    assert any("stream ended without a close event" in m for m in log_messages)


@pytest.mark.asyncio
async def test_stop_prevents_reconnect(connector: SessionConnector, transport: FakeTransport) -> None:
    await connector.connect()

    await connector.stop()
    await connector.handle_connection_update(closed()[EventKind.CONNECTION_UPDATE])

    assert len(transport.opens) == 1
    assert connector.terminated


@pytest.mark.asyncio
async def test_outbound_primitives_use_current_session(
    connector: SessionConnector, transport: FakeTransport
) -> None:
    await connector.connect()
    await connector.handle_connection_update(closed()[EventKind.CONNECTION_UPDATE])

    await connector.subscribe_presence(PEER)
    await connector.set_presence(PEER, PresenceState.COMPOSING)
    await connector.send(PEER, OutgoingMessage(text="hi"))
    await connector.mark_read([text_message("x").key])

    assert transport.sockets[0].calls == []
    assert [c[0] for c in transport.sockets[1].calls] == ["subscribe", "presence", "send", "read"]


@pytest.mark.asyncio
async def test_outbound_without_session_raises(connector: SessionConnector) -> None:
    with pytest.raises(NotConnectedError):
        await connector.send(PEER, OutgoingMessage(text="hi"))


@pytest.mark.asyncio
async def test_transport_failures_are_wrapped(connector: SessionConnector, transport: FakeTransport) -> None:
    await connector.connect()
    transport.socket.fail_on.add("send")

    with pytest.raises(TransportError, match="send failed"):
        await connector.send(PEER, OutgoingMessage(text="hi"))


@pytest.mark.asyncio
async def test_profile_image_lookup_is_best_effort(connector: SessionConnector, transport: FakeTransport) -> None:
    assert await connector.resolve_profile_image(PEER) is None  # not connected

    await connector.connect()
    transport.socket.profile_pictures[PEER] = "https://pps.example/peer.jpg"
    assert await connector.resolve_profile_image(PEER) == "https://pps.example/peer.jpg"

    transport.socket.fail_on.add("profile_picture")
    assert await connector.resolve_profile_image(PEER) is None


@pytest.mark.asyncio
async def test_credentials_update_is_merged_and_persisted(
    connector: SessionConnector, store: MemoryStore, credentials: Credentials
) -> None:
    await connector.apply_credentials_update({"account": {"id": 7}, "keys": {"session": {"a": b"\x01"}}})

    assert credentials.identity["account"] == {"id": 7}
    assert credentials.keys == {"session": {"a": b"\x01"}}
    assert store.saved[-1]["account"] == {"id": 7}
