"""OpenAI-compatible chat completions client.

Used as the stateless fallback provider. Defaults point at the IONOS AI
Model Hub, but any ``/chat/completions`` endpoint works.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from voicebridge.config import get_config
from voicebridge.contracts import Message
from voicebridge.errors import MalformedProviderMessage, ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Token usage statistics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatCompletion:
    """One completion with its tracing fields."""

    content: str
    model: str = ""
    finish_reason: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: int = 0


class ChatCompletionsClient:
    """Client for an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout: float = 30.0,
    ):
        config = get_config()
        self._api_key = api_key or config.FALLBACK_API_KEY
        self._base_url = base_url or config.FALLBACK_BASE_URL
        self.model = model or config.FALLBACK_MODEL
        self.max_tokens = max_tokens if max_tokens is not None else config.FALLBACK_MAX_TOKENS
        self.temperature = temperature if temperature is not None else config.FALLBACK_TEMPERATURE
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
            )
        return self._client

    async def create(
        self,
        messages: list[Message],
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatCompletion:
        """Send a completion request and return the parsed result."""
        if not self.configured:
            raise ProviderError("Fallback chat provider not configured")

        start_time = time.time()
        client = await self._get_client()
        model = model or self.model

        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
        }

        try:
            response = await client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Chat completion timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Chat completion failed: {e}") from e
        except ValueError as e:
            raise MalformedProviderMessage(f"Chat completion returned invalid JSON: {e}") from e

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedProviderMessage(f"Unexpected chat completion shape: {e}") from e

        usage_data = data.get("usage") or {}
        return ChatCompletion(
            content=content.strip(),
            model=data.get("model", model),
            finish_reason=choice.get("finish_reason") or "",
            usage=TokenUsage(
                prompt_tokens=usage_data.get("prompt_tokens", 0),
                completion_tokens=usage_data.get("completion_tokens", 0),
                total_tokens=usage_data.get("total_tokens", 0),
            ),
            latency_ms=int((time.time() - start_time) * 1000),
        )

    async def complete(self, messages: list[Message]) -> str:
        """Reply text for a message list."""
        completion = await self.create(messages)
        logger.debug(f"Fallback completion in {completion.latency_ms}ms ({completion.model})")
        return completion.content

    async def list_models(self) -> list[str]:
        """Model ids the endpoint offers."""
        client = await self._get_client()
        try:
            response = await client.get("/models")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"Could not list models: {e}") from e
        return [m["id"] for m in response.json().get("data", []) if "id" in m]

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
