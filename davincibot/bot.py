"""
Bot — wires the credential store, connector, dispatcher, router and
generation provider together.

    credentials → connector → dispatcher → router → provider → presence → connector.send
"""

from __future__ import annotations

from loguru import logger

from davincibot.auth import Credentials, CredentialStore, FileCredentialStore
from davincibot.config import BotConfig
from davincibot.connector import SessionConnector
from davincibot.dispatcher import EventDispatcher
from davincibot.presence import PresenceSequencer
from davincibot.providers.base import GenerationProvider
from davincibot.router import CommandRouter
from davincibot.transport import Transport, load_transport


class Bot:
    """The long-lived bot process.

    Usage::

        bot = Bot(BotConfig.from_env())
        await bot.run()
    """

    def __init__(
        self,
        config: BotConfig | None = None,
        *,
        transport: Transport | None = None,
        provider: GenerationProvider | None = None,
        store: CredentialStore | None = None,
    ) -> None:
        self.config = config or BotConfig()

        if provider is None:
            self.config.generation.require_api_key()
            from davincibot.providers.openai import OpenAIProvider
            provider = OpenAIProvider(self.config.generation)

        self.transport = transport or load_transport(self.config.transport)
        self.provider = provider
        self.store = store or FileCredentialStore(self.config.auth_dir)

        self.connector: SessionConnector | None = None
        self.router: CommandRouter | None = None
        self.dispatcher: EventDispatcher | None = None

    async def setup(self) -> SessionConnector:
        """Load credentials and build the component graph."""
        credentials = await self.store.load() or Credentials()

        connector = SessionConnector(
            self.transport,
            credentials,
            protocol_version=self.config.protocol_version,
            reconnect=self.config.reconnect,
        )
        connector.on_credentials_changed(self.store.save)

        presence = PresenceSequencer(connector, self.config.presence)
        self.router = CommandRouter(connector, self.provider, presence, self.config.commands)
        self.transport.set_idle_waiter(self.router.drain)
        self.dispatcher = EventDispatcher(connector, self.router).attach()
        self.connector = connector
        return connector

    async def run(self) -> None:
        """Run until logged out or stopped."""
        connector = self.connector or await self.setup()
        logger.info(
            f"[bot] Starting with transport={self.transport.name!r}, "
            f"provider={self.provider.name!r}, commands={self.router.tokens if self.router else []}"
        )
        finished = False
        try:
            await connector.run()
            finished = True
        finally:
            # Replies already launched run to completion unless we are interrupted
            await self.stop(cancel_replies=not finished)

    async def stop(self, *, cancel_replies: bool = True) -> None:
        """Settle in-flight replies and close the session.

        With ``cancel_replies=False`` the replies are awaited instead of
        cancelled.
        """
        if self.router is not None and self.router.pending:
            if cancel_replies:
                logger.info(f"[bot] Cancelling {self.router.pending} in-flight reply task(s)")
                await self.router.cancel()
            else:
                logger.info(f"[bot] Waiting for {self.router.pending} in-flight reply task(s)")
                await self.router.drain()
        if self.connector is not None:
            await self.connector.stop()
