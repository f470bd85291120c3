"""
Event dispatcher — the bot's only control loop.

Each batch is handled entry by entry in a fixed priority order (connection
state, then credentials, then new messages, then everything else), and the
next batch is not pulled until the current one is done. A failing handler is
logged and the rest of the batch still runs.
"""

from __future__ import annotations

from typing import Any, AsyncIterable, Awaitable, Callable

from loguru import logger

from davincibot.connector import SessionConnector
from davincibot.router import CommandRouter
from davincibot.transport.base import (
    ConnectionUpdate,
    ContactUpdate,
    EventBatch,
    EventKind,
    HistorySync,
    MessagesUpsert,
)


PRIORITY: tuple[EventKind, ...] = (
    EventKind.CONNECTION_UPDATE,
    EventKind.CREDENTIALS_UPDATE,
    EventKind.MESSAGES_UPSERT,
    EventKind.HISTORY_SET,
    EventKind.MESSAGES_UPDATE,
    EventKind.MESSAGE_RECEIPT_UPDATE,
    EventKind.MESSAGES_REACTION,
    EventKind.PRESENCE_UPDATE,
    EventKind.CHATS_UPDATE,
    EventKind.CONTACTS_UPDATE,
    EventKind.CHATS_DELETE,
    EventKind.CALL,
)

EventHandler = Callable[[Any], Awaitable[None]]


def ordered_entries(batch: EventBatch) -> list[tuple[Any, Any]]:
    """Batch entries in priority order; unknown kinds keep their batch order at the end."""
    known: dict[EventKind, Any] = {}
    unknown: list[tuple[Any, Any]] = []
    for key, payload in batch.items():
        try:
            known[EventKind(key)] = payload
        except ValueError:
            unknown.append((key, payload))
    return [(kind, known[kind]) for kind in PRIORITY if kind in known] + unknown


class EventDispatcher:
    """Fans event batches out to per-kind handlers."""

    def __init__(self, connector: SessionConnector, router: CommandRouter) -> None:
        self.connector = connector
        self.router = router
        self.batches_processed = 0

        self._handlers: dict[EventKind, EventHandler] = {
            EventKind.CONNECTION_UPDATE: self._on_connection_update,
            EventKind.CREDENTIALS_UPDATE: self._on_credentials_update,
            EventKind.MESSAGES_UPSERT: self._on_messages_upsert,
            EventKind.HISTORY_SET: self._on_history_set,
            EventKind.CONTACTS_UPDATE: self._on_contacts_update,
        }

    def attach(self) -> "EventDispatcher":
        """Register as the connector's batch consumer. Returns self for chaining."""
        self.connector.on_event_batch(self.handle_batch)
        return self

    async def process(self, stream: AsyncIterable[EventBatch]) -> None:
        """Consume batches one at a time until the stream ends."""
        async for batch in stream:
            await self.handle_batch(batch)

    async def handle_batch(self, batch: EventBatch) -> None:
        for kind, payload in ordered_entries(batch):
            handler = self._handlers.get(kind) if isinstance(kind, EventKind) else None
            try:
                if handler is None:
                    self._log_event(kind, payload)
                else:
                    await handler(payload)
            except Exception as exc:
                label = kind.value if isinstance(kind, EventKind) else kind
                logger.error(f"[dispatcher] {label} handler failed: {exc}")
        self.batches_processed += 1

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_connection_update(self, update: ConnectionUpdate) -> None:
        logger.info(f"[dispatcher] connection update {update}")
        await self.connector.handle_connection_update(update)

    async def _on_credentials_update(self, update: dict[str, Any]) -> None:
        await self.connector.apply_credentials_update(update)

    async def _on_messages_upsert(self, upsert: MessagesUpsert) -> None:
        logger.debug(
            f"[dispatcher] recv {len(upsert.messages)} message(s) "
            f"(initial_sync={upsert.is_initial_sync})"
        )
        if upsert.is_initial_sync:
            return

        for message in upsert.messages:
            try:
                await self.router.route(message)
            except Exception as exc:
                logger.error(f"[dispatcher] Failed to route message {message.key.id}: {exc}")

    async def _on_history_set(self, history: HistorySync) -> None:
        logger.info(
            f"[dispatcher] recv {len(history.chats)} chats, {len(history.contacts)} contacts, "
            f"{len(history.messages)} msgs (is latest: {history.is_latest})"
        )

    async def _on_contacts_update(self, contacts: list[ContactUpdate]) -> None:
        for contact in contacts:
            if contact.picture is None:
                continue
            url = None
            if contact.picture == "changed":
                url = await self.connector.resolve_profile_image(contact.id)
            logger.info(f"[dispatcher] contact {contact.id} has a new profile pic: {url}")

    def _log_event(self, kind: Any, payload: Any) -> None:
        label = kind.value if isinstance(kind, EventKind) else kind
        logger.info(f"[dispatcher] {label}: {payload}")
