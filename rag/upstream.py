"""
rag/upstream.py - Upstream LLM Providers
=========================================

Opens a streaming completion against the configured LLM and hands back the
raw byte stream; decoding is done by rag/stream.py.

- groq: OpenAI-compatible chat completions (server-sent events), called
  through the openai SDK pointed at Groq's base URL
- ollama: /api/generate with stream=true (NDJSON), called with httpx

Connection failures, timeouts and error statuses become UpstreamError.
Upstream error bodies are logged here and never passed on to the client.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx
import openai
from openai import AsyncOpenAI

from config import (
    GROQ_API_KEY,
    GROQ_BASE_URL,
    GROQ_MODEL,
    LLM_MAX_TOKENS,
    LLM_PROVIDER,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    OLLAMA_MODEL,
    OLLAMA_URL,
)

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """The LLM provider could not be reached or returned an error."""


class UpstreamStream:
    """An open streaming response from a provider."""

    def __init__(self, chunks: AsyncIterator[bytes], closer: Callable[[], Awaitable[None]]):
        self._chunks = chunks
        self._closer = closer
        self._closed = False

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._chunks:
                yield chunk
        except (httpx.HTTPError, openai.APIError) as e:
            raise UpstreamError(f"Stream interrupted: {e}") from e
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._closer()


class LLMProvider(ABC):
    """A streaming completion backend."""

    name: str
    # Key into rag.stream.DECODERS
    wire_format: str

    @abstractmethod
    async def connect(self, prompt: str, system_message: Optional[str] = None) -> UpstreamStream:
        """Send the request and return once response headers are in."""

    async def aclose(self) -> None:
        """Release the provider's HTTP client."""


# =============================================================================
# GROQ (OpenAI-compatible)
# =============================================================================

class GroqProvider(LLMProvider):
    name = "groq"
    wire_format = "event-stream"

    def __init__(
        self,
        api_key: str = GROQ_API_KEY,
        model: str = GROQ_MODEL,
        base_url: str = GROQ_BASE_URL,
        timeout: float = LLM_TIMEOUT_SECONDS,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None and not api_key:
            raise ValueError("GROQ_API_KEY not set. Add it to your .env file.")
        self.model = model
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    async def connect(self, prompt: str, system_message: Optional[str] = None) -> UpstreamStream:
        messages = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.append({"role": "user", "content": prompt})

        stack = AsyncExitStack()
        try:
            response = await stack.enter_async_context(
                self.client.chat.completions.with_streaming_response.create(
                    model=self.model,
                    messages=messages,
                    temperature=LLM_TEMPERATURE,
                    max_tokens=LLM_MAX_TOKENS,
                    stream=True,
                )
            )
        except openai.APIStatusError as e:
            await stack.aclose()
            logger.error("Groq error %s: %s (model=%s)", e.status_code, e.message, self.model)
            raise UpstreamError(f"LLM returned status {e.status_code}") from e
        except (openai.APIError, httpx.HTTPError) as e:
            await stack.aclose()
            logger.error("Groq fetch error: %s", e)
            raise UpstreamError("Failed to connect to LLM") from e

        return UpstreamStream(response.iter_bytes(), stack.aclose)

    async def aclose(self) -> None:
        await self.client.close()


# =============================================================================
# OLLAMA (NDJSON)
# =============================================================================

class OllamaProvider(LLMProvider):
    name = "ollama"
    wire_format = "ndjson"

    def __init__(
        self,
        url: str = OLLAMA_URL,
        model: str = OLLAMA_MODEL,
        timeout: float = LLM_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.model = model
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def connect(self, prompt: str, system_message: Optional[str] = None) -> UpstreamStream:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": True,
            "options": {"temperature": LLM_TEMPERATURE, "num_predict": LLM_MAX_TOKENS},
        }
        if system_message:
            payload["system"] = system_message

        request = self.client.build_request("POST", self.url, json=payload)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("Ollama fetch error: %s", e)
            raise UpstreamError("Failed to connect to LLM") from e

        if response.status_code >= 400:
            body = await response.aread()
            await response.aclose()
            logger.error("Ollama error %s: %s", response.status_code, body[:500])
            raise UpstreamError(f"LLM returned status {response.status_code}")

        return UpstreamStream(response.aiter_bytes(), response.aclose)

    async def aclose(self) -> None:
        await self.client.aclose()


def get_provider(name: str = LLM_PROVIDER) -> LLMProvider:
    """Create the provider selected by LLM_PROVIDER."""
    if name == "groq":
        return GroqProvider()
    if name == "ollama":
        return OllamaProvider()
    raise ValueError(f"Unsupported LLM provider: {name}")
