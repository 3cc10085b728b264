"""
core/service.py - Main Service Layer
=====================================

This module provides the main API for the assistant. The FastAPI backend
(or any other frontend) should ONLY call into this module.

The key method is `CounsellingService.answer()` which:
1. Validates the message (present, not too long)
2. Checks for crisis/depression/greeting/meta triage
3. Embeds the message on the worker pool
4. Runs hybrid retrieval and the confidence gate (guardrail)
5. Opens the LLM stream grounded in the matched FAQs
6. Returns a structured response: a complete reply or a frame stream

This separation keeps the HTTP layer thin and business logic testable.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional

from config import FAQ_FILE, MAX_MESSAGE_LENGTH
from core.embeddings import EmbeddingError, EmbeddingGateway
from core.keyword_index import KeywordIndex
from core.ranking import HybridRanker
from core.safety import FALLBACK_MESSAGE, Intent, check_triage
from core.vectorstore import FaqEntry, ScoredCandidate, VectorIndex, load_faqs
from rag.chat_engine import CancellationToken, ChatEngine
from rag.stream import StreamFrame
from rag.upstream import UpstreamError, get_provider

logger = logging.getLogger(__name__)


# =============================================================================
# RESPONSE DATA STRUCTURE
# =============================================================================

@dataclass
class ChatResponse:
    """
    Structured outcome of one chat request.

    Exactly one of `reply` and `frames` is set.

    Attributes:
        reply: Complete text to show the user (validation, triage, fallback
            or failure replies)
        frames: Streamed LLM answer, ending with one done frame
        intent: Triage intent that produced the reply, NONE otherwise
        candidates: Ranked FAQs the answer is grounded in
        context_sufficient: Whether retrieval cleared the confidence gate
        failed: True when an embedding or LLM step failed (HTTP 500)
    """
    reply: Optional[str] = None
    frames: Optional[AsyncIterator[StreamFrame]] = None
    intent: Intent = Intent.NONE
    candidates: list[ScoredCandidate] = field(default_factory=list)
    context_sufficient: bool = True
    failed: bool = False

    @property
    def streaming(self) -> bool:
        return self.frames is not None


# Replies for requests that never reach retrieval or the LLM
MESSAGE_REQUIRED = "Message is required."
MESSAGE_TOO_LONG = "Please keep your question brief."
EMBEDDING_FAILED = "Failed to process your question. Please try again."
LLM_FAILED = "Failed to connect to LLM. Please try again."

# Embedded once at startup to compare the model with the corpus
DIMENSION_CHECK_TEXT = "How do I book a counselling session?"


# =============================================================================
# SERVICE
# =============================================================================

class CounsellingService:
    """
    Orchestrates triage, retrieval and generation for one FAQ corpus.

    Args:
        faqs: The loaded corpus (for stats)
        gateway: Embedding worker pool
        ranker: Hybrid vector + keyword ranker
        chat_engine: Streams the grounded answer from the LLM
    """

    def __init__(
        self,
        faqs: tuple[FaqEntry, ...],
        gateway: EmbeddingGateway,
        ranker: HybridRanker,
        chat_engine: ChatEngine,
        max_message_length: int = MAX_MESSAGE_LENGTH,
    ):
        self.faqs = faqs
        self.gateway = gateway
        self.ranker = ranker
        self.chat_engine = chat_engine
        self.max_message_length = max_message_length

    async def answer(
        self,
        message: Optional[str],
        token: Optional[CancellationToken] = None,
    ) -> ChatResponse:
        """
        Process a user message and return a structured response.

        This is the MAIN ENTRY POINT the HTTP layer calls.

        Args:
            message: The user's raw message (None when missing)
            token: Cancellation for the streamed answer; a new one with
                the stream deadline is created when not given

        Returns:
            ChatResponse with either a complete reply or a frame stream
        """
        # ---------------------------------------------------------------------
        # Step 1: Input validation
        # ---------------------------------------------------------------------
        if not message:
            return ChatResponse(reply=MESSAGE_REQUIRED)
        if len(message) > self.max_message_length:
            return ChatResponse(reply=MESSAGE_TOO_LONG)

        # ---------------------------------------------------------------------
        # Step 2: Safety/Triage check (no embedding, retrieval or LLM)
        # ---------------------------------------------------------------------
        triage = check_triage(message)
        if triage is not None:
            return ChatResponse(reply=triage.message, intent=triage.intent)

        # ---------------------------------------------------------------------
        # Step 3: Embed the query on the worker pool
        # ---------------------------------------------------------------------
        try:
            query_embedding = await self.gateway.embed(message)
        except EmbeddingError as e:
            logger.error("Embedding failed: %s", e)
            return ChatResponse(reply=EMBEDDING_FAILED, failed=True)

        # ---------------------------------------------------------------------
        # Step 4: Hybrid retrieval + confidence gate (guardrail)
        # ---------------------------------------------------------------------
        # Fuzzy keyword scoring is CPU-bound; keep it off the event loop
        candidates = await asyncio.to_thread(self.ranker.search, message, query_embedding)
        if not self.ranker.is_confident(candidates):
            top = candidates[0].score if candidates else None
            logger.info("No confident match (top score %s); sending fallback", top)
            return ChatResponse(
                reply=FALLBACK_MESSAGE,
                candidates=candidates,
                context_sufficient=False,
            )

        # ---------------------------------------------------------------------
        # Step 5: Open the grounded LLM stream
        # ---------------------------------------------------------------------
        if token is None:
            token = self.chat_engine.new_token()
        try:
            stream = await self.chat_engine.open_stream(candidates, message, token)
        except UpstreamError as e:
            logger.error("LLM connection failed: %s", e)
            return ChatResponse(reply=LLM_FAILED, candidates=candidates, failed=True)

        return ChatResponse(
            frames=self.chat_engine.relay(stream, candidates, token),
            candidates=candidates,
        )

    async def reply(self, message: Optional[str]) -> ChatResponse:
        """
        Like answer(), but with the streamed answer collected into `reply`.

        A stream that ends in an error is reported as a failed LLM reply.
        """
        response = await self.answer(message)
        if not response.streaming:
            return response

        parts = []
        async for frame in response.frames:
            if frame.error:
                logger.error("LLM stream ended with error: %s", frame.error)
                return ChatResponse(reply=LLM_FAILED, candidates=response.candidates, failed=True)
            if frame.chunk:
                parts.append(frame.chunk)

        return ChatResponse(reply="".join(parts).strip(), candidates=response.candidates)

    def get_index_stats(self) -> dict:
        """Counts describing the loaded corpus and indexes."""
        return {
            "total_faqs": len(self.faqs),
            "indexed_vectors": self.ranker.vector_index.size,
            "embedding_dimension": self.ranker.vector_index.dimension,
            "embedding_workers": self.gateway.worker_count,
            "llm_provider": self.chat_engine.provider.name,
        }

    async def start(self) -> None:
        """
        Start the embedding pool and check the model against the corpus.

        Raises:
            ValueError: If the query model and the corpus embeddings have
                different dimensions (rebuild the corpus)
        """
        await self.gateway.start()
        dimension = self.ranker.vector_index.dimension
        if not dimension:
            return
        sample = await self.gateway.embed(DIMENSION_CHECK_TEXT)
        if len(sample) != dimension:
            raise ValueError(
                f"Embedding model produces {len(sample)}-dimensional vectors but the "
                f"corpus has {dimension}. Run 'python scripts/build_index.py' "
                "with the same EMBEDDING_MODEL_NAME."
            )

    async def aclose(self) -> None:
        await self.gateway.stop()
        await self.chat_engine.aclose()


# =============================================================================
# FACTORY
# =============================================================================

def build_service(faq_path: Path = FAQ_FILE) -> CounsellingService:
    """
    Load the corpus and wire up the indexes, worker pool and LLM provider.

    Raises:
        FileNotFoundError: If the corpus hasn't been built yet
        ValueError: If the corpus is malformed or the provider is unknown
    """
    faqs = load_faqs(faq_path)
    ranker = HybridRanker(VectorIndex(faqs), KeywordIndex(faqs))
    chat_engine = ChatEngine(get_provider())
    logger.info(
        "Service ready: %d FAQs, %d indexed vectors, provider=%s",
        len(faqs), ranker.vector_index.size, chat_engine.provider.name,
    )
    return CounsellingService(faqs, EmbeddingGateway(), ranker, chat_engine)
