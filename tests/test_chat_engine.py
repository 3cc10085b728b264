import asyncio

import pytest

from core.vectorstore import ScoredCandidate
from rag.chat_engine import CancellationToken, ChatEngine
from rag.upstream import UpstreamError, UpstreamStream
from tests.conftest import FakeProvider


def test_token_cancel_keeps_first_reason():
    token = CancellationToken()
    assert not token.cancelled
    assert token.remaining() is None

    token.cancel("client disconnected")
    token.cancel("timeout")
    assert token.cancelled
    assert token.reason == "client disconnected"


def test_token_deadline_means_timeout():
    token = CancellationToken(deadline_seconds=0)
    assert token.cancelled
    assert token.reason == "timeout"
    assert token.remaining() == 0.0


async def test_complete_collects_answer(faqs, provider):
    engine = ChatEngine(provider)
    candidates = [ScoredCandidate(faqs[0], 0.9)]

    answer = await engine.complete(candidates, "How do I book a session?")

    assert answer == "You can book online."
    assert len(provider.prompts) == 1
    assert "How do I book a session?" in provider.prompts[0]
    assert faqs[0].answer in provider.prompts[0]
    assert provider.closed_streams == 1


async def test_connect_timeout_becomes_upstream_error(faqs):
    class SlowProvider(FakeProvider):
        async def connect(self, prompt, system_message=None):
            await asyncio.sleep(1)
            return await super().connect(prompt, system_message)

    engine = ChatEngine(SlowProvider(), timeout=0.01)
    with pytest.raises(UpstreamError):
        await engine.open_stream([ScoredCandidate(faqs[0], 0.9)], "hello?")


async def test_cancelled_token_refuses_to_connect(faqs, provider):
    token = CancellationToken()
    token.cancel("client disconnected")

    with pytest.raises(UpstreamError):
        await ChatEngine(provider).open_stream([ScoredCandidate(faqs[0], 0.9)], "q", token)
    assert provider.prompts == []


async def test_relay_uses_provider_wire_format(faqs):
    body = (
        'data: {"choices": [{"delta": {"content": "Yes."}}]}\n\n'
        "data: [DONE]\n\n"
    ).encode("utf-8")
    provider = FakeProvider(fragments=[body])
    provider.wire_format = "event-stream"
    engine = ChatEngine(provider)
    candidates = [ScoredCandidate(faqs[1], 0.8)]

    stream = await engine.open_stream(candidates, "Is it confidential?")
    frames = [frame async for frame in engine.relay(stream, candidates)]

    assert frames[0].chunk == "Yes."
    assert frames[-1].done
    assert frames[-1].suggestions[0].question == faqs[1].question


async def test_complete_raises_on_stream_error(faqs):
    class BrokenProvider(FakeProvider):
        async def connect(self, prompt, system_message=None):
            async def chunks():
                yield b'{"response": "Hal"}\n'
                raise UpstreamError("reset")

            return UpstreamStream(chunks(), self._close_stream)

    with pytest.raises(UpstreamError):
        await ChatEngine(BrokenProvider()).complete([ScoredCandidate(faqs[0], 0.9)], "q")
