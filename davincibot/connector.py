"""
Session connector — owns the live transport session and its lifecycle.

State machine::

    INITIALIZING ──open──▶ OPEN ──close (not logged out)──▶ CLOSED_RECOVERABLE
                                 └─close (logged out)─────▶ CLOSED_TERMINAL

On a recoverable close the connector opens a brand-new Session with the same
credentials; the old one is closed and dropped. On a terminal close it stops
for good. Outbound primitives always resolve the *current* session at call
time, so callers never hold a session across suspension points.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

from loguru import logger

from davincibot.auth import Credentials
from davincibot.config import ReconnectConfig
from davincibot.errors import NotConnectedError, TransportError
from davincibot.transport.base import (
    ConnectionState,
    ConnectionUpdate,
    EventBatch,
    EventKind,
    MessageKey,
    OutgoingMessage,
    PresenceState,
    ProtocolVersion,
    Transport,
    TransportSocket,
    format_version,
    is_broadcast,
)


class ConnectorState(str, Enum):
    INITIALIZING = "initializing"
    OPEN = "open"
    CLOSED_RECOVERABLE = "closed_recoverable"
    CLOSED_TERMINAL = "closed_terminal"


@dataclass
class Session:
    """A live connection. Replaced, never revived, on reconnect."""

    generation: int
    version: ProtocolVersion
    credentials: Credentials
    socket: TransportSocket
    status: ConnectionState = ConnectionState.CONNECTING

    def __repr__(self) -> str:
        return (
            f"Session(#{self.generation}, v{format_version(self.version)}, "
            f"status={self.status.value})"
        )


BatchHandler = Callable[[EventBatch], Awaitable[None]]
CredentialsHandler = Callable[[Credentials], Awaitable[None]]


class SessionConnector:
    """Connects to the network and keeps a single current Session.

    Usage::

        connector = SessionConnector(transport, credentials)
        connector.on_credentials_changed(store.save)
        connector.on_event_batch(dispatcher.handle_batch)
        await connector.run()
    """

    def __init__(
        self,
        transport: Transport,
        credentials: Credentials,
        *,
        protocol_version: ProtocolVersion | None = None,
        reconnect: ReconnectConfig | None = None,
    ) -> None:
        self.transport = transport
        self.credentials = credentials
        self.protocol_version = protocol_version
        self.reconnect_policy = reconnect or ReconnectConfig()

        self.state = ConnectorState.INITIALIZING
        self._session: Session | None = None
        self._generation = 0
        self._stopped = False

        self._batch_handler: BatchHandler | None = None
        self._credentials_handler: CredentialsHandler | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on_event_batch(self, handler: BatchHandler) -> None:
        """Register the single consumer of event batches."""
        self._batch_handler = handler

    def on_credentials_changed(self, handler: CredentialsHandler) -> None:
        """Register the sink that persists updated credentials."""
        self._credentials_handler = handler

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def terminated(self) -> bool:
        return self._stopped or self.state is ConnectorState.CLOSED_TERMINAL

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Connect and feed batches to the registered handler until terminal."""
        if self._batch_handler is None:
            raise RuntimeError("No batch handler registered. Call on_event_batch() first.")

        if await self._reconnect("Connect") is None:
            logger.info(f"[connector] Stopped before connecting (state={self.state.value})")
            return
        async for batch in self.batches():
            await self._batch_handler(batch)
        logger.info(f"[connector] Stopped (state={self.state.value})")

    async def stop(self) -> None:
        """Stop without reconnecting and close the current session."""
        self._stopped = True
        session, self._session = self._session, None
        if session is not None:
            await self._discard(session)

    async def negotiate_version(self) -> ProtocolVersion:
        if self.protocol_version:
            return self.protocol_version
        try:
            version, is_latest = await self.transport.fetch_latest_version()
        except Exception as exc:
            logger.warning(f"[connector] Could not fetch latest protocol version: {exc}")
            version, is_latest = self.transport.default_version, False
        logger.info(f"[connector] Using protocol v{format_version(version)}, is_latest: {is_latest}")
        return version

    async def connect(self) -> Session:
        """Open a new Session with the current credentials and make it current."""
        if self.terminated:
            raise NotConnectedError("Connector is terminated; refusing to connect")

        version = await self.negotiate_version()
        socket = await self.transport.open(self.credentials, version, should_ignore=is_broadcast)

        self._generation += 1
        session = Session(
            generation=self._generation,
            version=version,
            credentials=self.credentials,
            socket=socket,
        )
        previous, self._session = self._session, session
        self.state = ConnectorState.INITIALIZING
        if previous is not None:
            await self._discard(previous)

        logger.info(f"[connector] {session!r} connecting via {self.transport.name!r}")
        return session

    async def handle_connection_update(self, update: ConnectionUpdate) -> None:
        """Drive the state machine from a CONNECTION_UPDATE entry."""
        if update.qr:
            logger.info(f"[connector] Pairing code received, scan it to log in:\n{update.qr}")

        session = self._session
        if update.connection is None or self._stopped:
            return
        if session is not None:
            session.status = update.connection

        if update.connection is ConnectionState.OPEN:
            self.state = ConnectorState.OPEN
            logger.info(f"[connector] {session!r} open")
        elif update.connection is ConnectionState.CLOSE:
            if update.is_logged_out:
                await self._terminate()
                return
            self.state = ConnectorState.CLOSED_RECOVERABLE
            disconnect = update.last_disconnect
            logger.warning(
                f"[connector] Connection closed "
                f"(status={disconnect.status_code if disconnect else None}, "
                f"error={disconnect.error if disconnect else None}), reconnecting"
            )
            self._session = None
            if session is not None:
                await self._discard(session)
            await self._reconnect()

    async def apply_credentials_update(self, update: dict[str, Any]) -> None:
        """Merge a credentials update and wait until it is persisted."""
        self.credentials.apply(update)
        if self._credentials_handler is not None:
            await self._credentials_handler(self.credentials)

    async def _reconnect(self, label: str = "Reconnect") -> Session | None:
        """Call connect() until it succeeds, backing off after failures."""
        failures = 0
        while not self.terminated:
            delay = self.reconnect_policy.delay_for(failures)
            if delay:
                logger.info(f"[connector] {label} retry in {delay:.1f}s (attempt {failures + 1})")
                await asyncio.sleep(delay)
                if self.terminated:
                    break
            try:
                return await self.connect()
            except Exception as exc:
                failures += 1
                logger.error(f"[connector] {label} attempt {failures} failed: {exc}")
        return None

    async def _terminate(self) -> None:
        self.state = ConnectorState.CLOSED_TERMINAL
        logger.warning("[connector] Connection closed. You are logged out.")
        session, self._session = self._session, None
        if session is not None:
            await self._discard(session)

    async def _discard(self, session: Session) -> None:
        session.status = ConnectionState.CLOSE
        try:
            await session.socket.close()
        except Exception as exc:
            logger.debug(f"[connector] Error closing {session!r}: {exc}")

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    async def batches(self) -> AsyncIterator[EventBatch]:
        """Yield filtered batches from whichever session is current.

        The next batch is only pulled once the consumer asks for it, so a
        batch is always fully handled before the following one is fetched.
        """
        while not self.terminated:
            session = self._session
            if session is None:
                session = await self._reconnect()
                if session is None:
                    break

            async for batch in session.socket.events():
                filtered = self._filter(batch)
                if filtered:
                    yield filtered
                if self.terminated or self._session is not session:
                    break
            else:
                if not self.terminated and self._session is session:
                    logger.warning(f"[connector] {session!r} stream ended without a close event")
                    self.state = ConnectorState.CLOSED_RECOVERABLE
                    self._session = None
                    await self._discard(session)

    def _filter(self, batch: EventBatch) -> dict[EventKind, Any]:
        """Drop broadcast-origin messages the transport let through."""
        filtered = dict(batch)
        upsert = filtered.get(EventKind.MESSAGES_UPSERT)
        if upsert is None:
            return filtered

        kept = [m for m in upsert.messages if not is_broadcast(m.key.remote_id)]
        if len(kept) != len(upsert.messages):
            logger.debug(f"[connector] Ignored {len(upsert.messages) - len(kept)} broadcast message(s)")
            if kept:
                filtered[EventKind.MESSAGES_UPSERT] = replace(upsert, messages=kept)
            else:
                del filtered[EventKind.MESSAGES_UPSERT]
        return filtered

    # ------------------------------------------------------------------
    # Outbound primitives
    # ------------------------------------------------------------------

    def _current_socket(self) -> TransportSocket:
        session = self._session
        if session is None or self.terminated:
            raise NotConnectedError("No open session")
        return session.socket

    async def _call(self, op: str, fn: Callable[[TransportSocket], Awaitable[Any]]) -> Any:
        socket = self._current_socket()
        try:
            return await fn(socket)
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"{op} failed: {exc}") from exc

    async def send(self, target: str, message: OutgoingMessage) -> Any:
        return await self._call("send", lambda s: s.send(target, message))

    async def set_presence(self, target: str, state: PresenceState) -> None:
        await self._call("set_presence", lambda s: s.send_presence_update(state, target))

    async def subscribe_presence(self, target: str) -> None:
        await self._call("subscribe_presence", lambda s: s.presence_subscribe(target))

    async def mark_read(self, keys: list[MessageKey]) -> None:
        await self._call("mark_read", lambda s: s.read_messages(keys))

    async def resolve_profile_image(self, identity: str) -> str | None:
        """Best-effort profile picture lookup; any failure means no picture."""
        try:
            return await self._current_socket().profile_picture_url(identity)
        except Exception as exc:
            logger.debug(f"[connector] Profile picture lookup for {identity} failed: {exc}")
            return None
