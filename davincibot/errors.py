"""Exception types for davincibot."""

from __future__ import annotations


class DavinciBotError(Exception):
    """Base exception for davincibot."""


class ConfigurationError(DavinciBotError):
    """Raised when startup configuration is missing or invalid."""


class TransportError(DavinciBotError):
    """Raised when a transport primitive (send, presence, read receipt) fails."""


class NotConnectedError(TransportError):
    """Raised when an outbound primitive is used without an open session."""


class CredentialStoreError(DavinciBotError):
    """Raised when credentials cannot be loaded or persisted."""
