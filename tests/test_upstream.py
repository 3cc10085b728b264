import json

import httpx
import pytest
from openai import AsyncOpenAI

from rag.upstream import GroqProvider, OllamaProvider, UpstreamError, get_provider

OLLAMA_URL = "http://ollama.test/api/generate"


def ollama_provider(handler) -> OllamaProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaProvider(url=OLLAMA_URL, model="llama3", client=client)


async def read_all(stream) -> bytes:
    return b"".join([chunk async for chunk in stream.iter_bytes()])


# -------------------------------------------------------------------------
# Ollama
# -------------------------------------------------------------------------

async def test_ollama_streams_body():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            content=b'{"response": "Hi"}\n{"response": " there", "done": true}\n',
        )

    provider = ollama_provider(handler)
    stream = await provider.connect("the prompt", "be brief")

    assert await read_all(stream) == b'{"response": "Hi"}\n{"response": " there", "done": true}\n'
    assert seen["body"]["model"] == "llama3"
    assert seen["body"]["prompt"] == "the prompt"
    assert seen["body"]["stream"] is True
    assert seen["body"]["system"] == "be brief"
    assert provider.wire_format == "ndjson"
    await provider.aclose()


async def test_ollama_error_status_hides_body():
    provider = ollama_provider(lambda request: httpx.Response(500, text="model 'llama3' not found"))

    with pytest.raises(UpstreamError) as exc_info:
        await provider.connect("prompt")

    assert "500" in str(exc_info.value)
    assert "not found" not in str(exc_info.value)
    await provider.aclose()


async def test_ollama_connection_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = ollama_provider(handler)
    with pytest.raises(UpstreamError):
        await provider.connect("prompt")
    await provider.aclose()


async def test_ollama_broken_stream_raises_upstream_error():
    class BrokenStream(httpx.AsyncByteStream):
        async def __aiter__(self):
            yield b'{"response": "Hi"}\n'
            raise httpx.ReadError("connection reset")

    provider = ollama_provider(lambda request: httpx.Response(200, stream=BrokenStream()))
    stream = await provider.connect("prompt")

    with pytest.raises(UpstreamError):
        await read_all(stream)
    await provider.aclose()


# -------------------------------------------------------------------------
# Groq
# -------------------------------------------------------------------------

def groq_provider(handler) -> GroqProvider:
    client = AsyncOpenAI(
        api_key="test-key",
        base_url="http://groq.test/openai/v1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        max_retries=0,
    )
    return GroqProvider(model="llama-3.1-8b-instant", client=client)


async def test_groq_streams_event_stream():
    seen = {}
    body = (
        b'data: {"choices": [{"index": 0, "delta": {"content": "Hello"}}]}\n\n'
        b"data: [DONE]\n\n"
    )

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    provider = groq_provider(handler)
    stream = await provider.connect("the prompt", "system text")

    assert await read_all(stream) == body
    assert seen["path"].endswith("/chat/completions")
    assert seen["body"]["stream"] is True
    assert seen["body"]["messages"] == [
        {"role": "system", "content": "system text"},
        {"role": "user", "content": "the prompt"},
    ]
    assert provider.wire_format == "event-stream"
    await provider.aclose()


async def test_groq_error_status():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Invalid API Key"}})

    provider = groq_provider(handler)
    with pytest.raises(UpstreamError) as exc_info:
        await provider.connect("prompt")

    assert "Invalid API Key" not in str(exc_info.value)
    await provider.aclose()


def test_groq_requires_api_key():
    with pytest.raises(ValueError):
        GroqProvider(api_key="")


# -------------------------------------------------------------------------
# Provider selection
# -------------------------------------------------------------------------

async def test_get_provider():
    provider = get_provider("ollama")
    assert isinstance(provider, OllamaProvider)
    await provider.aclose()

    with pytest.raises(ValueError):
        get_provider("bard")
