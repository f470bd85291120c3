"""
davincibot — production entry point.

Reads config from environment variables (.env file or system env).
"""

import asyncio
import os
import sys
from typing import NoReturn

from dotenv import load_dotenv  # pip install python-dotenv
from loguru import logger

# Load .env from current directory or parent
load_dotenv()


def _fail(message: object) -> NoReturn:
    print(f"ERROR: {message}. Copy .env.example to .env and fill in values.")
    sys.exit(1)


async def main() -> None:
    # ----------------------------------------------------------------
    # Imports (lazy, so missing optional deps give clear errors)
    # ----------------------------------------------------------------
    from davincibot import Bot, BotConfig, FileCredentialStore
    from davincibot.errors import ConfigurationError
    from davincibot.providers.openai import OpenAIProvider
    from davincibot.transport import load_transport

    # ----------------------------------------------------------------
    # Config from env
    # ----------------------------------------------------------------
    try:
        config = BotConfig.from_env(dotenv=False)
        config.generation.require_api_key()
        transport = load_transport(config.transport)
    except ConfigurationError as exc:
        _fail(exc)

    # ----------------------------------------------------------------
    # Collaborators
    # ----------------------------------------------------------------
    logger.info(f"Transport: {transport.name}")

    provider = OpenAIProvider(config.generation)
    logger.info(f"Provider: OpenAI (text={config.generation.text_model}, image={config.generation.image_model})")

    store = FileCredentialStore(config.auth_dir)

    # ----------------------------------------------------------------
    # Bot
    # ----------------------------------------------------------------
    bot = Bot(config, transport=transport, provider=provider, store=store)

    logger.info("davincibot starting...")
    await bot.run()


if __name__ == "__main__":
    from davincibot.cli import configure_logging

    configure_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE", "~/.davincibot/davincibot.log"),
    )

    asyncio.run(main())
