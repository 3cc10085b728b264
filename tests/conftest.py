"""Pytest configuration and fixtures for the assistant's tests."""

import json
from typing import AsyncIterator, Optional, Sequence

import pytest

from core.embeddings import EmbeddingError
from core.keyword_index import KeywordIndex
from core.ranking import HybridRanker
from core.service import CounsellingService
from core.vectorstore import FaqEntry, VectorIndex
from rag.chat_engine import ChatEngine
from rag.upstream import LLMProvider, UpstreamError, UpstreamStream


def make_entry(entry_id: int, question: str, answer: str, embedding: Sequence[float] = ()) -> FaqEntry:
    return FaqEntry.from_record(
        {"id": entry_id, "question": question, "answer": answer, "embedding": list(embedding)}
    )


async def aiter_list(items) -> AsyncIterator:
    for item in items:
        yield item


def ndjson_fragments(*texts: str) -> list[bytes]:
    """One Ollama-style line per text."""
    return [(json.dumps({"response": t, "done": False}) + "\n").encode("utf-8") for t in texts]


# -------------------------------------------------------------------------
# Corpus Fixtures
# -------------------------------------------------------------------------

@pytest.fixture
def faqs() -> tuple[FaqEntry, ...]:
    """Three FAQs on orthogonal unit vectors."""
    return (
        make_entry(
            1,
            "How do I book a counselling session?",
            "Write to the counselling team or use the booking portal.",
            [1.0, 0.0, 0.0],
        ),
        make_entry(
            2,
            "Are sessions confidential?",
            "Yes. What you share stays between you and your counsellor.",
            [0.0, 1.0, 0.0],
        ),
        make_entry(
            3,
            "Where is the counselling centre?",
            "The centre is on the ground floor of the student building.",
            [0.0, 0.0, 1.0],
        ),
    )


@pytest.fixture
def faq_file(tmp_path, faqs):
    path = tmp_path / "faqs_with_embeddings.json"
    path.write_text(
        json.dumps([
            {"id": f.id, "question": f.question, "answer": f.answer, "embedding": list(f.embedding)}
            for f in faqs
        ]),
        encoding="utf-8",
    )
    return path


# -------------------------------------------------------------------------
# Fakes
# -------------------------------------------------------------------------

class FakeGateway:
    """Stands in for the embedding pool; returns a fixed vector."""

    def __init__(self, vector: Sequence[float] = (1.0, 0.0, 0.0), error: bool = False):
        self.vector = list(vector)
        self.error = error
        self.calls: list[str] = []
        self.worker_count = 1
        self.started = False
        self.stopped = False

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error:
            raise EmbeddingError("model crashed")
        return self.vector

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


class FakeProvider(LLMProvider):
    """Streams canned NDJSON fragments instead of calling an LLM."""

    name = "fake"
    wire_format = "ndjson"

    def __init__(self, fragments: Optional[list] = None, error: bool = False):
        self.fragments = fragments if fragments is not None else ndjson_fragments("You can ", "book online.")
        self.error = error
        self.prompts: list[str] = []
        self.closed_streams = 0

    async def connect(self, prompt: str, system_message: Optional[str] = None) -> UpstreamStream:
        self.prompts.append(prompt)
        if self.error:
            raise UpstreamError("connection refused")
        return UpstreamStream(aiter_list(self.fragments), self._close_stream)

    async def _close_stream(self) -> None:
        self.closed_streams += 1


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def service(faqs, gateway, provider) -> CounsellingService:
    ranker = HybridRanker(VectorIndex(faqs), KeywordIndex(faqs))
    return CounsellingService(faqs, gateway, ranker, ChatEngine(provider))
