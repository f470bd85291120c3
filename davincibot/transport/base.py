"""
Transport boundary: the messaging network as seen by the bot.

The wire protocol itself lives outside this package. A transport only has to
open a socket for a set of credentials and a protocol version; the socket
then yields event batches and offers a handful of outbound primitives.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Literal, Mapping

if TYPE_CHECKING:
    from davincibot.auth import Credentials


BROADCAST_SUFFIX = "@broadcast"

ProtocolVersion = tuple[int, ...]


def is_broadcast(identity: str | None) -> bool:
    """True for broadcast/status pseudo-identities (e.g. ``status@broadcast``)."""
    if not identity:
        return False
    return identity.endswith(BROADCAST_SUFFIX)


def format_version(version: ProtocolVersion) -> str:
    return ".".join(str(part) for part in version)


# ---------------------------------------------------------------------------
# Event kinds
# ---------------------------------------------------------------------------

class EventKind(str, Enum):
    CONNECTION_UPDATE = "connection.update"
    CREDENTIALS_UPDATE = "creds.update"
    MESSAGES_UPSERT = "messages.upsert"
    HISTORY_SET = "messaging-history.set"
    MESSAGES_UPDATE = "messages.update"
    MESSAGE_RECEIPT_UPDATE = "message-receipt.update"
    MESSAGES_REACTION = "messages.reaction"
    PRESENCE_UPDATE = "presence.update"
    CHATS_UPDATE = "chats.update"
    CONTACTS_UPDATE = "contacts.update"
    CHATS_DELETE = "chats.delete"
    CALL = "call"


# An atomically delivered group of notifications: kind -> kind-specific payload
EventBatch = Mapping[EventKind, Any]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DisconnectReason(IntEnum):
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


class PresenceState(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    COMPOSING = "composing"
    RECORDING = "recording"
    PAUSED = "paused"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

@dataclass
class DisconnectInfo:
    """Why the transport closed."""

    status_code: int | None = None
    error: BaseException | None = None

    @property
    def is_logged_out(self) -> bool:
        return self.status_code == DisconnectReason.LOGGED_OUT


@dataclass
class ConnectionUpdate:
    connection: ConnectionState | None = None
    last_disconnect: DisconnectInfo | None = None
    qr: str | None = None                 # Pairing code to show the operator
    is_new_login: bool = False
    received_pending_notifications: bool = False

    @property
    def is_logged_out(self) -> bool:
        return self.last_disconnect is not None and self.last_disconnect.is_logged_out


@dataclass(frozen=True)
class MessageKey:
    remote_id: str | None             # Chat the message belongs to
    id: str
    from_me: bool = False
    participant: str | None = None    # Group member that sent it


@dataclass
class InboundMessage:
    """A message received from the network."""

    key: MessageKey
    text: str | None = None
    push_name: str = ""
    timestamp: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class MessagesUpsert:
    messages: list[InboundMessage]
    is_initial_sync: bool = False     # History replay rather than live delivery


@dataclass
class HistorySync:
    chats: list[Any] = field(default_factory=list)
    contacts: list[Any] = field(default_factory=list)
    messages: list[Any] = field(default_factory=list)
    is_latest: bool = False


@dataclass
class ContactUpdate:
    id: str
    picture: Literal["changed", "removed"] | None = None   # None = picture untouched


@dataclass
class OutgoingMessage:
    """A message to be sent to a chat."""

    text: str | None = None
    image_url: str | None = None
    caption: str | None = None
    message_type: MessageType = MessageType.TEXT

    @classmethod
    def image(cls, url: str, caption: str | None = None) -> "OutgoingMessage":
        return cls(image_url=url, caption=caption, message_type=MessageType.IMAGE)


# ---------------------------------------------------------------------------
# Capability interfaces
# ---------------------------------------------------------------------------

class TransportSocket(ABC):
    """One live connection. Never reused after it closes."""

    @abstractmethod
    def events(self) -> AsyncIterator[EventBatch]:
        """Yield event batches until the connection ends."""
        ...

    @abstractmethod
    async def send(self, target: str, message: OutgoingMessage) -> Any:
        ...

    @abstractmethod
    async def send_presence_update(self, state: PresenceState, target: str | None = None) -> None:
        ...

    @abstractmethod
    async def presence_subscribe(self, target: str) -> None:
        ...

    @abstractmethod
    async def read_messages(self, keys: list[MessageKey]) -> None:
        ...

    async def profile_picture_url(self, identity: str) -> str | None:
        """Look up a contact's profile picture (optional, none by default)."""
        return None

    @abstractmethod
    async def close(self) -> None:
        ...


class Transport(ABC):
    """Factory for transport sockets."""

    name: str = "base"
    default_version: ProtocolVersion = (0,)

    # Awaited before a transport reports an orderly local shutdown
    _idle_waiter: Callable[[], Awaitable[Any]] | None = None

    def set_idle_waiter(self, waiter: Callable[[], Awaitable[Any]]) -> None:
        """Register the coroutine that waits until in-flight replies are done."""
        self._idle_waiter = waiter

    async def wait_idle(self) -> None:
        if self._idle_waiter is not None:
            await self._idle_waiter()

    async def fetch_latest_version(self) -> tuple[ProtocolVersion, bool]:
        """Return (latest version, is_latest). Defaults to the built-in version."""
        return self.default_version, False

    @abstractmethod
    async def open(
        self,
        credentials: "Credentials",
        version: ProtocolVersion,
        *,
        should_ignore: Callable[[str], bool] | None = None,
    ) -> TransportSocket:
        """Open a new socket. Emits a CONNECTION_UPDATE once it is open."""
        ...
