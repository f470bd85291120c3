"""
Configuration dataclasses.

Every setting has a default; ``BotConfig.from_env()`` overlays environment
variables (after loading a ``.env`` file, if present).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from dotenv import load_dotenv

from davincibot.errors import ConfigurationError
from davincibot.transport.base import ProtocolVersion


N = TypeVar("N", int, float)

# Command name -> chat token
DEFAULT_COMMANDS: dict[str, str] = {
    "davinci3": "/ia",
    "dalle": "/img",
}


@dataclass
class GenerationConfig:
    """Fixed parameters for the generation service."""

    api_key: str = ""
    organization: str = ""
    base_url: str = ""

    text_model: str = "gpt-4o-mini"
    temperature: float = 1.0
    max_tokens: int = 2048

    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    image_count: int = 1

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY (or OPENAI_KEY) is not set")
        return self.api_key


@dataclass
class PresenceConfig:
    """Pauses of the typing choreography, in seconds."""

    subscribe_delay: float = 0.5
    composing_delay: float = 2.0


@dataclass
class ReconnectConfig:
    """Retry policy for reconnect attempts whose connect() call fails.

    The first reconnect after a recoverable close is always immediate.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0

    def delay_for(self, failures: int) -> float:
        """Delay before the next attempt after ``failures`` failed attempts."""
        if failures <= 0:
            return 0.0
        return min(self.max_delay, self.base_delay * self.factor ** (failures - 1))


@dataclass
class BotConfig:
    """Top-level bot configuration."""

    auth_dir: str = "~/.davincibot/auth"
    transport: str = "console"           # "console" or "package.module:factory"
    protocol_version: ProtocolVersion | None = None   # None = negotiate

    commands: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COMMANDS))

    generation: GenerationConfig = field(default_factory=GenerationConfig)
    presence: PresenceConfig = field(default_factory=PresenceConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)

    log_level: str = "INFO"
    log_file: str = "~/.davincibot/davincibot.log"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "BotConfig":
        """Build a config from environment variables."""
        if dotenv:
            load_dotenv()

        config = cls()
        env = os.environ

        config.auth_dir = env.get("AUTH_DIR", config.auth_dir)
        config.transport = env.get("DAVINCIBOT_TRANSPORT", config.transport)
        if env.get("PROTOCOL_VERSION"):
            try:
                config.protocol_version = parse_version(env["PROTOCOL_VERSION"])
            except ValueError as exc:
                raise ConfigurationError(f"PROTOCOL_VERSION: {exc}") from exc

        config.commands["davinci3"] = env.get("TEXT_COMMAND", config.commands["davinci3"])
        config.commands["dalle"] = env.get("IMAGE_COMMAND", config.commands["dalle"])

        gen = config.generation
        gen.api_key = env.get("OPENAI_API_KEY", "") or env.get("OPENAI_KEY", "")
        gen.organization = env.get("OPENAI_ORGANIZATION", "") or env.get("ORGANIZATION_ID", "")
        gen.base_url = env.get("OPENAI_BASE_URL", "")
        gen.text_model = env.get("TEXT_MODEL", gen.text_model)
        gen.temperature = _env_number("TEMPERATURE", float, gen.temperature)
        gen.max_tokens = _env_number("MAX_TOKENS", int, gen.max_tokens)
        gen.image_model = env.get("IMAGE_MODEL", gen.image_model)
        gen.image_size = env.get("IMAGE_SIZE", gen.image_size)

        config.presence.subscribe_delay = _env_number(
            "TYPING_SUBSCRIBE_DELAY", float, config.presence.subscribe_delay
        )
        config.presence.composing_delay = _env_number(
            "TYPING_COMPOSING_DELAY", float, config.presence.composing_delay
        )

        config.reconnect.base_delay = _env_number("RECONNECT_BASE_DELAY", float, config.reconnect.base_delay)
        config.reconnect.max_delay = _env_number("RECONNECT_MAX_DELAY", float, config.reconnect.max_delay)

        config.log_level = env.get("LOG_LEVEL", config.log_level)
        config.log_file = env.get("LOG_FILE", config.log_file)
        return config


def _env_number(name: str, cast: Callable[[str], N], default: N) -> N:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def parse_version(text: str) -> ProtocolVersion:
    """Parse ``"2.3000.1015901307"`` into ``(2, 3000, 1015901307)``."""
    parts = [p for p in text.strip().split(".") if p]
    if not parts:
        raise ValueError(f"Invalid protocol version: {text!r}")
    return tuple(int(p) for p in parts)
