"""
Transport package.
"""

from __future__ import annotations

import importlib

from davincibot.errors import ConfigurationError
from davincibot.transport.base import (
    ConnectionState,
    ConnectionUpdate,
    ContactUpdate,
    DisconnectInfo,
    DisconnectReason,
    EventBatch,
    EventKind,
    HistorySync,
    InboundMessage,
    MessageKey,
    MessagesUpsert,
    MessageType,
    OutgoingMessage,
    PresenceState,
    Transport,
    TransportSocket,
    is_broadcast,
)
from davincibot.transport.console import ConsoleTransport


def load_transport(path: str) -> Transport:
    """Build a transport from ``"console"`` or a ``"package.module:factory"`` path.

    The factory may be a Transport subclass, a zero-argument callable
    returning a Transport, or a Transport instance.
    """
    if path == ConsoleTransport.name:
        return ConsoleTransport()

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid transport {path!r}; expected 'console' or 'module:factory'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import transport module {module_name!r}: {exc}") from exc

    factory = getattr(module, attr, None)
    if factory is None:
        raise ConfigurationError(f"Module {module_name!r} has no attribute {attr!r}")

    transport = factory if isinstance(factory, Transport) else factory()
    if not isinstance(transport, Transport):
        raise ConfigurationError(f"{path!r} did not produce a Transport (got {type(transport).__name__})")
    return transport


__all__ = [
    "ConnectionState",
    "ConnectionUpdate",
    "ConsoleTransport",
    "ContactUpdate",
    "DisconnectInfo",
    "DisconnectReason",
    "EventBatch",
    "EventKind",
    "HistorySync",
    "InboundMessage",
    "MessageKey",
    "MessageType",
    "MessagesUpsert",
    "OutgoingMessage",
    "PresenceState",
    "Transport",
    "TransportSocket",
    "is_broadcast",
    "load_transport",
]
