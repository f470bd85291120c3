"""
OpenAI generation provider.

Text goes through the chat completions API, images through the images API.
Works with any OpenAI-compatible endpoint via ``base_url``.
"""

from __future__ import annotations

import os
from typing import Any

from loguru import logger

from davincibot.config import GenerationConfig
from davincibot.providers.base import GenerationProvider


class OpenAIProvider(GenerationProvider):
    """
    Generation provider for OpenAI and compatible APIs.

    Args:
        config: Fixed model/sampling/image parameters and credentials.
            The API key falls back to the OPENAI_API_KEY env var.
        client: Pre-built ``AsyncOpenAI``-compatible client (mainly for tests).
    """

    name = "openai"

    def __init__(self, config: GenerationConfig | None = None, client: Any = None) -> None:
        self.config = config or GenerationConfig()

        if client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as exc:
                raise ImportError("openai package is required: pip install openai") from exc

            kwargs: dict[str, Any] = {
                "api_key": self.config.api_key or os.environ.get("OPENAI_API_KEY", ""),
            }
            if self.config.organization:
                kwargs["organization"] = self.config.organization
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            client = AsyncOpenAI(**kwargs)

        self._client = client
        logger.debug(
            f"OpenAIProvider initialized: text_model={self.config.text_model}, "
            f"image_model={self.config.image_model}, base_url={self.config.base_url or 'default'}"
        )

    @property
    def service_label(self) -> str:
        return "OpenAI"

    async def _complete_text(self, prompt: str) -> str:
        resp = await self._client.chat.completions.create(
            model=self.config.text_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        text = "".join(choice.message.content or "" for choice in resp.choices)

        usage = getattr(resp, "usage", None)
        logger.debug(
            f"OpenAI text response: model={getattr(resp, 'model', self.config.text_model)}, "
            f"choices={len(resp.choices)}, "
            f"total_tokens={getattr(usage, 'total_tokens', None)}"
        )
        return text

    async def _complete_image(self, prompt: str) -> str:
        resp = await self._client.images.generate(
            model=self.config.image_model,
            prompt=prompt,
            n=self.config.image_count,
            size=self.config.image_size,
        )
        if not resp.data or not resp.data[0].url:
            raise ValueError("image response contained no url")
        return resp.data[0].url

    @staticmethod
    def error_message(exc: BaseException) -> str:
        # APIStatusError.body is the decoded "error" object of the response
        body = getattr(exc, "body", None)
        if isinstance(body, dict):
            error = body.get("error", body)
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        message = getattr(exc, "message", None)
        return str(message) if message else str(exc)
