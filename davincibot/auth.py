"""
Authentication state and its on-disk store.

Layout of an auth directory (one file per key, so a key rotation rewrites
only what changed)::

    <auth_dir>/creds.json                     identity material
    <auth_dir>/keys/<category>/<key_id>.json  session keys

Binary values are stored as ``{"type": "Buffer", "data": "<base64>"}``.
"""

from __future__ import annotations

import base64
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import aiofiles
import aiofiles.os
from loguru import logger

from davincibot.errors import CredentialStoreError


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@dataclass
class Credentials:
    """Identity material plus session keys grouped by category."""

    identity: dict[str, Any] = field(default_factory=dict)
    keys: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def registered(self) -> bool:
        return bool(self.identity.get("registered"))

    def apply(self, update: Mapping[str, Any]) -> None:
        """Merge a transport update into this state.

        Identity fields are replaced. The reserved ``"keys"`` entry maps
        ``category -> {key_id -> value}``; a ``None`` value deletes the key.
        """
        for name, value in update.items():
            if name != "keys":
                self.identity[name] = value
                continue
            for category, entries in (value or {}).items():
                bucket = self.keys.setdefault(category, {})
                for key_id, key_value in entries.items():
                    if key_value is None:
                        bucket.pop(key_id, None)
                    else:
                        bucket[key_id] = key_value
                if not bucket:
                    del self.keys[category]

    def key_count(self) -> int:
        return sum(len(bucket) for bucket in self.keys.values())


# ---------------------------------------------------------------------------
# JSON helpers (binary safe)
# ---------------------------------------------------------------------------

def _encode(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"type": "Buffer", "data": base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode(obj: dict[str, Any]) -> Any:
    if obj.get("type") == "Buffer" and isinstance(obj.get("data"), str) and len(obj) == 2:
        return base64.b64decode(obj["data"])
    return obj


def dumps(data: Any) -> str:
    return json.dumps(data, default=_encode, ensure_ascii=False, sort_keys=True, indent=2)


def loads(text: str) -> Any:
    return json.loads(text, object_hook=_decode)


def _safe_name(key_id: str) -> str:
    return key_id.replace("/", "__").replace(":", "-")


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class CredentialStore(ABC):
    """Loads credentials at startup and persists them on every change."""

    @abstractmethod
    async def load(self) -> Credentials | None:
        """Return the persisted credentials, or None on first run."""
        ...

    @abstractmethod
    async def save(self, credentials: Credentials) -> None:
        """Persist credentials. Must be durable when this returns."""
        ...


class FileCredentialStore(CredentialStore):
    """Multi-file credential store backed by a directory."""

    def __init__(self, directory: str | Path = "~/.davincibot/auth") -> None:
        self.directory = Path(directory).expanduser()
        self.creds_path = self.directory / "creds.json"
        self.keys_dir = self.directory / "keys"
        # Path -> serialized content last written, to skip unchanged files
        self._written: dict[Path, str] = {}

    def _key_path(self, category: str, key_id: str) -> Path:
        return self.keys_dir / _safe_name(category) / f"{_safe_name(key_id)}.json"

    async def load(self) -> Credentials | None:
        if not self.creds_path.exists():
            logger.info(f"[auth] No credentials in {self.directory}, starting fresh")
            return None

        try:
            text = await self._read(self.creds_path)
            credentials = Credentials(identity=loads(text))
            self._written[self.creds_path] = text

            if self.keys_dir.exists():
                for category_dir in sorted(p for p in self.keys_dir.iterdir() if p.is_dir()):
                    for key_path in sorted(category_dir.glob("*.json")):
                        key_text = await self._read(key_path)
                        entry = loads(key_text)
                        category = entry.get("category", category_dir.name)
                        credentials.keys.setdefault(category, {})[entry["id"]] = entry["value"]
                        self._written[key_path] = key_text
        except (OSError, ValueError, KeyError) as exc:
            raise CredentialStoreError(f"Failed to load credentials from {self.directory}: {exc}") from exc

        logger.debug(
            f"[auth] Loaded credentials: registered={credentials.registered}, "
            f"keys={credentials.key_count()}"
        )
        return credentials

    async def save(self, credentials: Credentials) -> None:
        files: dict[Path, str] = {self.creds_path: dumps(credentials.identity)}
        for category, entries in credentials.keys.items():
            for key_id, value in entries.items():
                files[self._key_path(category, key_id)] = dumps(
                    {"category": category, "id": key_id, "value": value}
                )

        written = removed = 0
        try:
            for path, text in files.items():
                if self._written.get(path) == text:
                    continue
                await self._write_atomic(path, text)
                self._written[path] = text
                written += 1

            for path in [p for p in self._written if p not in files]:
                if path.exists():
                    await aiofiles.os.remove(path)
                del self._written[path]
                removed += 1
        except OSError as exc:
            raise CredentialStoreError(f"Failed to persist credentials to {self.directory}: {exc}") from exc

        logger.debug(f"[auth] Credentials saved ({written} written, {removed} removed)")

    @staticmethod
    async def _read(path: Path) -> str:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()

    @staticmethod
    async def _write_atomic(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(text)
            await f.flush()
            os.fsync(f.fileno())
        await aiofiles.os.replace(tmp, path)
