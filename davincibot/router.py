"""
Command router — turns chat messages into generation requests.

A message is a command when its first whitespace-delimited word matches a
configured token (``/ia``, ``/img`` by default); the rest of the body is the
argument. Command handlers run as background tasks so the batch loop never
waits on the generation service.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from davincibot.config import DEFAULT_COMMANDS
from davincibot.connector import SessionConnector
from davincibot.presence import PresenceSequencer
from davincibot.providers.base import GenerationProvider, is_failure
from davincibot.transport.base import InboundMessage, OutgoingMessage, is_broadcast


CommandHandler = Callable[[str, str], Awaitable[None]]   # (target, argument)


def parse_command(text: str | None) -> tuple[str, str] | None:
    """Split a body into (token, argument).

    Returns None when there is no argument: a bare ``/ia`` is not a request.
    """
    if not text:
        return None
    parts = text.split(None, 1)
    if len(parts) < 2:
        return None
    token, argument = parts[0], parts[1].strip()
    if not argument:
        return None
    return token, argument


class CommandRouter:
    """Routes inbound messages to command handlers."""

    def __init__(
        self,
        connector: SessionConnector,
        provider: GenerationProvider,
        presence: PresenceSequencer,
        commands: dict[str, str] | None = None,
    ) -> None:
        self.connector = connector
        self.provider = provider
        self.presence = presence

        handlers: dict[str, CommandHandler] = {
            "davinci3": self._handle_text,
            "dalle": self._handle_image,
        }
        table = commands or DEFAULT_COMMANDS
        # Chat token -> (command name, handler)
        self._commands: dict[str, tuple[str, CommandHandler]] = {
            token: (name, handlers[name]) for name, token in table.items() if name in handlers
        }
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def tokens(self) -> list[str]:
        return list(self._commands)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def should_route(self, message: InboundMessage) -> bool:
        jid = message.key.remote_id
        return bool(jid) and not message.key.from_me and not is_broadcast(jid)

    async def route(self, message: InboundMessage) -> asyncio.Task[None] | None:
        """Acknowledge a message and launch its command, if any.

        Returns the spawned handler task, or None when nothing was launched.
        """
        jid = message.key.remote_id
        if jid is None or not self.should_route(message):
            return None

        logger.info(f"[router] Replying to {jid}")
        await self.connector.mark_read([message.key])

        parsed = parse_command(message.text)
        if parsed is None:
            return None
        token, argument = parsed
        command = self._commands.get(token)
        if command is None:
            return None

        name, handler = command
        logger.info(f"[router] {name} from {jid}: {argument[:80]!r}")
        task = asyncio.create_task(
            self._run_handler(name, handler, jid, argument),
            name=f"command:{name}:{message.key.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for all in-flight command handlers."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    async def _run_handler(self, name: str, handler: CommandHandler, target: str, argument: str) -> None:
        try:
            await handler(target, argument)
        except Exception as exc:
            logger.error(f"[router] {name} reply to {target} failed: {exc}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_text(self, target: str, prompt: str) -> None:
        reply = await self.provider.complete_text(prompt)
        await self.presence.send_with_typing(OutgoingMessage(text=reply), target)

    async def _handle_image(self, target: str, prompt: str) -> None:
        result = await self.provider.complete_image(prompt)
        if is_failure(result):
            message = OutgoingMessage(text=result)
        else:
            message = OutgoingMessage.image(result, caption=prompt)
        await self.presence.send_with_typing(message, target)
