"""
Console transport for local testing.

Every stdin line becomes a live inbound message from a single local peer;
replies and typing indicators are printed to stdout. End of input (Ctrl+D)
is reported as a logout, which stops the bot, once every line read so far
has been answered.
"""

from __future__ import annotations

import asyncio
import os
import random
import sys
import time
from typing import IO, AsyncIterator, Callable

from loguru import logger

from davincibot.auth import Credentials
from davincibot.transport.base import (
    ConnectionState,
    ConnectionUpdate,
    DisconnectInfo,
    DisconnectReason,
    EventBatch,
    EventKind,
    InboundMessage,
    MessageKey,
    MessagesUpsert,
    MessageType,
    OutgoingMessage,
    PresenceState,
    ProtocolVersion,
    Transport,
    TransportSocket,
)


class ConsoleSocket(TransportSocket):
    """One console "connection": a stdin reader feeding a batch queue."""

    def __init__(
        self,
        transport: "ConsoleTransport",
        credentials: Credentials,
        should_ignore: Callable[[str], bool] | None = None,
    ) -> None:
        self.transport = transport
        self.credentials = credentials
        self.should_ignore = should_ignore

        self._queue: asyncio.Queue[EventBatch | None] = asyncio.Queue()
        self._reader: asyncio.Task[None] | None = None
        self._closed = False
        self._msg_counter = 0

    async def start(self) -> None:
        batch: dict[EventKind, object] = {
            EventKind.CONNECTION_UPDATE: ConnectionUpdate(
                connection=ConnectionState.OPEN,
                is_new_login=not self.credentials.registered,
            ),
        }
        if not self.credentials.registered:
            # Pairing: the console hands out throwaway local key material
            batch[EventKind.CREDENTIALS_UPDATE] = {
                "registered": True,
                "me": {"id": self.transport.self_id, "name": self.transport.bot_name},
                "registration_id": random.randint(1, 16380),
                "keys": {"pre-key": {"1": os.urandom(32)}},
            }
        self._queue.put_nowait(batch)
        self._reader = asyncio.create_task(self._read_loop(), name="console:stdin")

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        self.transport.write(
            "[davincibot console] Type a message and press Enter. Ctrl+D to log out.\n"
        )
        while not self._closed:
            line = await loop.run_in_executor(None, self._read_line)
            if self._closed:
                break
            if not line:
                # Let queued lines be dispatched and their replies sent first
                await self._queue.join()
                await self.transport.wait_idle()
                if self._closed:
                    break
                self._queue.put_nowait({
                    EventKind.CONNECTION_UPDATE: ConnectionUpdate(
                        connection=ConnectionState.CLOSE,
                        last_disconnect=DisconnectInfo(status_code=DisconnectReason.LOGGED_OUT),
                    ),
                })
                break

            text = line.strip()
            peer = self.transport.peer_id
            if not text or (self.should_ignore and self.should_ignore(peer)):
                continue

            self._msg_counter += 1
            message = InboundMessage(
                key=MessageKey(remote_id=peer, id=f"console_{self._msg_counter}"),
                text=text,
                push_name="you",
                timestamp=int(time.time()),
            )
            self._queue.put_nowait({EventKind.MESSAGES_UPSERT: MessagesUpsert([message])})

    def _read_line(self) -> str | None:
        """Read a line from stdin (blocking). Empty string means EOF."""
        try:
            self.transport.write(self.transport.prompt)
            return self.transport.stdin.readline()
        except (EOFError, ValueError):
            return None

    async def events(self) -> AsyncIterator[EventBatch]:
        while True:
            batch = await self._queue.get()
            try:
                if batch is None:
                    return
                yield batch
            finally:
                # Resumed only once the consumer has handled the batch
                self._queue.task_done()

    async def send(self, target: str, message: OutgoingMessage) -> None:
        if message.message_type is MessageType.IMAGE:
            caption = f" {message.caption}" if message.caption else ""
            self.transport.write(f"\n{self.transport.bot_name}: [Image: {message.image_url}]{caption}\n\n")
        else:
            self.transport.write(f"\n{self.transport.bot_name}: {message.text}\n\n")

    async def send_presence_update(self, state: PresenceState, target: str | None = None) -> None:
        if state is PresenceState.COMPOSING:
            self.transport.write(f"[{self.transport.bot_name} is typing...]\n")
        else:
            logger.debug(f"[console] presence {state.value} -> {target}")

    async def presence_subscribe(self, target: str) -> None:
        logger.debug(f"[console] presence subscribe {target}")

    async def read_messages(self, keys: list[MessageKey]) -> None:
        logger.debug(f"[console] read {[k.id for k in keys]}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self._queue.put_nowait(None)
        logger.debug("[console] socket closed")


class ConsoleTransport(Transport):
    """
    Transport that talks to the local terminal.

    Usage::

        transport = ConsoleTransport()
        socket = await transport.open(credentials, transport.default_version)
    """

    name = "console"
    default_version: ProtocolVersion = (1, 0, 0)

    def __init__(
        self,
        *,
        peer_id: str = "console@s.whatsapp.net",
        self_id: str = "davincibot@s.whatsapp.net",
        bot_name: str = "Bot",
        prompt: str = "You: ",
        stdin: IO[str] | None = None,
        stdout: IO[str] | None = None,
    ) -> None:
        self.peer_id = peer_id
        self.self_id = self_id
        self.bot_name = bot_name
        self.prompt = prompt
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def write(self, text: str) -> None:
        self.stdout.write(text)
        self.stdout.flush()

    async def fetch_latest_version(self) -> tuple[ProtocolVersion, bool]:
        return self.default_version, True

    async def open(
        self,
        credentials: Credentials,
        version: ProtocolVersion,
        *,
        should_ignore: Callable[[str], bool] | None = None,
    ) -> ConsoleSocket:
        socket = ConsoleSocket(self, credentials, should_ignore)
        await socket.start()
        return socket
