"""davincibot — a chat bot that answers commands with OpenAI text and images."""

__version__ = "0.1.0"

from davincibot.auth import Credentials, CredentialStore, FileCredentialStore
from davincibot.bot import Bot
from davincibot.config import BotConfig, GenerationConfig, PresenceConfig, ReconnectConfig
from davincibot.connector import ConnectorState, Session, SessionConnector
from davincibot.dispatcher import EventDispatcher
from davincibot.presence import PresenceSequencer
from davincibot.providers.base import GenerationProvider
from davincibot.router import CommandRouter, parse_command

__all__ = [
    # Core
    "Bot", "BotConfig",
    "SessionConnector", "Session", "ConnectorState",
    "EventDispatcher",
    "CommandRouter", "parse_command",
    "PresenceSequencer",
    # Credentials
    "Credentials", "CredentialStore", "FileCredentialStore",
    # Providers
    "GenerationProvider",
    # Config
    "GenerationConfig", "PresenceConfig", "ReconnectConfig",
]
