"""
davincibot CLI entry point.

Usage:
    davincibot                          # Console transport, settings from env/.env
    davincibot --transport mypkg.wa:WhatsAppTransport --auth-dir ./auth
    davincibot --help
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger

from davincibot import __version__
from davincibot.config import BotConfig
from davincibot.errors import ConfigurationError


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Coloured stderr sink plus an optional rotating DEBUG file sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level=level.upper(),
    )
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            rotation="10 MB",
            retention="7 days",
            level="DEBUG",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="davincibot",
        description="davincibot - chat bot that answers /ia and /img with OpenAI",
    )
    parser.add_argument(
        "--transport",
        default=None,
        help="'console' or 'package.module:factory' (default: $DAVINCIBOT_TRANSPORT or console)",
    )
    parser.add_argument(
        "--auth-dir",
        default=None,
        help="Directory holding the session credentials (default: $AUTH_DIR or ~/.davincibot/auth)",
    )
    parser.add_argument("--text-model", default=None, help="Text completion model override")
    parser.add_argument("--image-model", default=None, help="Image generation model override")
    parser.add_argument(
        "--no-typing-delay",
        action="store_true",
        help="Skip the pauses of the typing indicator",
    )
    parser.add_argument("--log-level", default=None, help="stderr log level (default: $LOG_LEVEL or INFO)")
    parser.add_argument("--log-file", default=None, help="Rotating debug log file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"davincibot {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        config = BotConfig.from_env()
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.transport:
        config.transport = args.transport
    if args.auth_dir:
        config.auth_dir = args.auth_dir
    if args.text_model:
        config.generation.text_model = args.text_model
    if args.image_model:
        config.generation.image_model = args.image_model
    if args.no_typing_delay:
        config.presence.subscribe_delay = 0.0
        config.presence.composing_delay = 0.0
    if args.log_level:
        config.log_level = args.log_level
    if args.log_file:
        config.log_file = args.log_file

    configure_logging(config.log_level, config.log_file)

    try:
        asyncio.run(_run(config))
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n[davincibot] Bye!")


async def _run(config: BotConfig) -> None:
    from davincibot.bot import Bot

    bot = Bot(config)
    await bot.run()


if __name__ == "__main__":
    main()
