from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from davincibot.config import GenerationConfig
from davincibot.providers import FAILURE_MARKER, OpenAIProvider, is_failure


class FakeOpenAIClient:
    def __init__(self) -> None:
        self.text_calls: list[dict[str, Any]] = []
        self.image_calls: list[dict[str, Any]] = []
        self.error: Exception | None = None
        self.image_url: str | None = "https://oaidalle.example/img.png"

        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create_completion))
        self.images = SimpleNamespace(generate=self._generate_image)

    async def _create_completion(self, **kwargs: Any) -> Any:
        self.text_calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(
            model=kwargs["model"],
            choices=[
                SimpleNamespace(message=SimpleNamespace(content="\n\nHello")),
                SimpleNamespace(message=SimpleNamespace(content=" there\n")),
            ],
            usage=SimpleNamespace(total_tokens=12),
        )

    async def _generate_image(self, **kwargs: Any) -> Any:
        self.image_calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(data=[SimpleNamespace(url=self.image_url)])


class StatusError(Exception):
    """Shaped like openai.APIStatusError: the decoded error object lives in .body."""

    def __init__(self, message: str, body: Any) -> None:
        super().__init__(message)
        self.message = message
        self.body = body


@pytest.fixture
def client() -> FakeOpenAIClient:
    return FakeOpenAIClient()


@pytest.fixture
def openai_provider(client: FakeOpenAIClient) -> OpenAIProvider:
    config = GenerationConfig(text_model="gpt-test", temperature=1.0, max_tokens=512, image_size="512x512")
    return OpenAIProvider(config, client=client)


@pytest.mark.asyncio
async def test_text_completion_uses_fixed_parameters(openai_provider: OpenAIProvider, client: FakeOpenAIClient) -> None:
    reply = await openai_provider.complete_text("hello")

    assert reply == "🤖\nHello there"
    assert client.text_calls == [{
        "model": "gpt-test",
        "messages": [{"role": "user", "content": "hello"}],
        "temperature": 1.0,
        "max_tokens": 512,
    }]


@pytest.mark.asyncio
async def test_image_completion_returns_url(openai_provider: OpenAIProvider, client: FakeOpenAIClient) -> None:
    url = await openai_provider.complete_image("a cat")

    assert url == "https://oaidalle.example/img.png"
    assert client.image_calls == [{"model": "dall-e-3", "prompt": "a cat", "n": 1, "size": "512x512"}]
    assert not is_failure(url)


@pytest.mark.asyncio
async def test_service_error_message_is_surfaced(openai_provider: OpenAIProvider, client: FakeOpenAIClient) -> None:
    client.error = StatusError(
        "Error code: 429 - {...}",
        {"message": "You exceeded your current quota", "type": "insufficient_quota"},
    )

    reply = await openai_provider.complete_text("hello")

    assert reply == f"{FAILURE_MARKER} OpenAI Response Error: You exceeded your current quota"
    assert is_failure(reply)


@pytest.mark.asyncio
async def test_nested_error_body_is_understood(openai_provider: OpenAIProvider, client: FakeOpenAIClient) -> None:
    client.error = StatusError("bad", {"error": {"message": "Invalid prompt"}})

    assert (await openai_provider.complete_image("x")).endswith("Invalid prompt")


@pytest.mark.asyncio
async def test_plain_exceptions_never_escape(openai_provider: OpenAIProvider, client: FakeOpenAIClient) -> None:
    client.error = ConnectionError("connection reset")

    text = await openai_provider.complete_text("hello")
    image = await openai_provider.complete_image("hello")

    assert text == "❌ OpenAI Response Error: connection reset"
    assert image == "❌ OpenAI Response Error: connection reset"


@pytest.mark.asyncio
async def test_image_without_url_is_a_failure(openai_provider: OpenAIProvider, client: FakeOpenAIClient) -> None:
    client.image_url = None

    assert is_failure(await openai_provider.complete_image("a cat"))


def test_builds_async_client_from_config() -> None:
    provider = OpenAIProvider(
        GenerationConfig(api_key="sk-test", organization="org-test", base_url="https://llm.example/v1")
    )

    assert provider._client.api_key == "sk-test"
    assert provider._client.organization == "org-test"
    assert str(provider._client.base_url).startswith("https://llm.example/v1")
