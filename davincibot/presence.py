"""
Typing choreography around outgoing replies.

subscribe → (pause) → composing → (longer pause) → paused → send
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from davincibot.config import PresenceConfig
from davincibot.connector import SessionConnector
from davincibot.transport.base import OutgoingMessage, PresenceState


class PresenceSequencer:
    """Sends replies the way a person would: shows typing first."""

    def __init__(self, connector: SessionConnector, config: PresenceConfig | None = None) -> None:
        self.connector = connector
        self.config = config or PresenceConfig()

    async def send_with_typing(self, message: OutgoingMessage, target: str) -> Any:
        """Run the typing sequence, then send. Any failing step aborts the rest."""
        await self.connector.subscribe_presence(target)
        await asyncio.sleep(self.config.subscribe_delay)

        await self.connector.set_presence(target, PresenceState.COMPOSING)
        await asyncio.sleep(self.config.composing_delay)

        await self.connector.set_presence(target, PresenceState.PAUSED)

        result = await self.connector.send(target, message)
        logger.debug(f"[presence] Sent {message.message_type.value} reply to {target}")
        return result
