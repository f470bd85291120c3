"""
Console bot — the simplest davincibot setup.

Run:
    export OPENAI_API_KEY=sk-...
    python examples/console_bot.py

Then type "/ia tell me a joke" or "/img a cat in a hat".
"""

import asyncio
import os

from davincibot import Bot, BotConfig, FileCredentialStore, PresenceConfig
from davincibot.config import GenerationConfig
from davincibot.providers.openai import OpenAIProvider
from davincibot.transport import ConsoleTransport


async def main() -> None:
    # 1. Provider
    provider = OpenAIProvider(
        GenerationConfig(api_key=os.environ["OPENAI_API_KEY"], text_model="gpt-4o-mini"),
    )

    # 2. Transport + credentials
    transport = ConsoleTransport(bot_name="Davinci")
    store = FileCredentialStore("./auth_info")

    # 3. Bot
    config = BotConfig(presence=PresenceConfig(subscribe_delay=0.2, composing_delay=1.0))
    bot = Bot(config, transport=transport, provider=provider, store=store)

    await bot.run()


if __name__ == "__main__":
    asyncio.run(main())
