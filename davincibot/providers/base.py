"""
Generation provider base interface.

Providers wrap an external text/image generation service. The public
operations never raise: a failed call resolves to a reply string starting
with ``FAILURE_MARKER`` that is sent back to the user like any other reply.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger


FAILURE_MARKER = "❌"
TEXT_REPLY_PREFIX = "🤖"


def is_failure(reply: str | None) -> bool:
    return reply is not None and reply.startswith(FAILURE_MARKER)


class GenerationProvider(ABC):
    """Abstract generation provider."""

    name: str = "base"

    async def complete_text(self, prompt: str) -> str:
        """Complete ``prompt``; returns the reply text or a failure string."""
        try:
            text = await self._complete_text(prompt)
        except Exception as exc:
            logger.error(f"[{self.name}] Text completion failed: {exc}")
            return self.format_failure(exc)
        return f"{TEXT_REPLY_PREFIX}\n{text.strip()}"

    async def complete_image(self, prompt: str) -> str:
        """Generate an image for ``prompt``; returns its url or a failure string."""
        try:
            return await self._complete_image(prompt)
        except Exception as exc:
            logger.error(f"[{self.name}] Image generation failed: {exc}")
            return self.format_failure(exc)

    def format_failure(self, exc: BaseException) -> str:
        return f"{FAILURE_MARKER} {self.service_label} Response Error: {self.error_message(exc)}"

    @property
    def service_label(self) -> str:
        return self.name

    @staticmethod
    def error_message(exc: BaseException) -> str:
        """Human-readable message of a service error."""
        return str(exc)

    @abstractmethod
    async def _complete_text(self, prompt: str) -> str:
        ...

    @abstractmethod
    async def _complete_image(self, prompt: str) -> str:
        ...
