"""
rag/chat_engine.py
==================

The LLM half of the pipeline: builds the grounded prompt from the ranked
FAQs, opens a streaming completion on the configured provider and relays
it as NDJSON frames.

Retrieval happens before this module is called (see core/service.py), so
the engine never decides *whether* to answer, only how to stream the answer.

Usage:
    from rag.chat_engine import ChatEngine
    from rag.upstream import get_provider

    engine = ChatEngine(get_provider())
    token = engine.new_token()
    stream = await engine.open_stream(candidates, "How do I book a session?", token)
    async for frame in engine.relay(stream, candidates, token):
        print(frame.to_ndjson(), end="")
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Optional, Sequence

from config import LLM_STREAM_TIMEOUT_SECONDS, LLM_TIMEOUT_SECONDS
from core.vectorstore import ScoredCandidate
from rag.prompts import SYSTEM_MESSAGE, build_prompt
from rag.stream import StreamFrame, StreamRelay, create_decoder, suggestions_from
from rag.upstream import LLMProvider, UpstreamError, UpstreamStream

logger = logging.getLogger(__name__)


# =============================================================================
# CANCELLATION
# =============================================================================

class CancellationToken:
    """
    Cancellation state shared by one request and its upstream stream.

    The token is cancelled either explicitly (e.g. the client went away) or
    implicitly once its deadline has passed, in which case the reason is
    "timeout".
    """

    def __init__(self, deadline_seconds: Optional[float] = None):
        self._deadline = None
        if deadline_seconds is not None:
            self._deadline = time.monotonic() + deadline_seconds
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        # First reason wins
        if self._reason is None:
            self._reason = reason

    @property
    def cancelled(self) -> bool:
        if self._reason is None and self._deadline is not None:
            if time.monotonic() >= self._deadline:
                self._reason = "timeout"
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())


# =============================================================================
# CHAT ENGINE
# =============================================================================

class ChatEngine:
    """
    Streams grounded answers from an upstream LLM provider.

    Args:
        provider: The LLM backend (see rag/upstream.py)
        timeout: Seconds allowed for the provider to start responding
        stream_timeout: Overall deadline for one streamed answer
    """

    def __init__(
        self,
        provider: LLMProvider,
        timeout: float = LLM_TIMEOUT_SECONDS,
        stream_timeout: float = LLM_STREAM_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.timeout = timeout
        self.stream_timeout = stream_timeout

    def new_token(self) -> CancellationToken:
        return CancellationToken(self.stream_timeout)

    async def open_stream(
        self,
        candidates: Sequence[ScoredCandidate],
        user_message: str,
        token: Optional[CancellationToken] = None,
    ) -> UpstreamStream:
        """
        Build the prompt and connect to the provider.

        Raises:
            UpstreamError: If the provider is unreachable, answers with an
                error status, or doesn't respond within the timeout
        """
        prompt = build_prompt(candidates, user_message)

        timeout = self.timeout
        if token is not None:
            if token.cancelled:
                raise UpstreamError(f"Request cancelled before connecting: {token.reason}")
            remaining = token.remaining()
            if remaining is not None:
                timeout = min(timeout, remaining)

        try:
            return await asyncio.wait_for(
                self.provider.connect(prompt, SYSTEM_MESSAGE), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            logger.error("%s did not respond within %.0fs", self.provider.name, timeout)
            raise UpstreamError("LLM connection timed out") from e

    def relay(
        self,
        stream: UpstreamStream,
        candidates: Sequence[ScoredCandidate],
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamFrame]:
        """Decode an open stream into frames ending with the suggestions."""
        relay = StreamRelay(
            create_decoder(self.provider.wire_format),
            suggestions_from(candidates),
            token,
        )
        return relay.relay(stream.iter_bytes())

    async def complete(
        self,
        candidates: Sequence[ScoredCandidate],
        user_message: str,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Collect a whole answer, for callers that don't stream.

        Raises:
            UpstreamError: If connecting fails or the stream ends in an error
        """
        stream = await self.open_stream(candidates, user_message, token)
        parts = []
        async for frame in self.relay(stream, candidates, token):
            if frame.error:
                raise UpstreamError(frame.error)
            if frame.chunk:
                parts.append(frame.chunk)
        return "".join(parts).strip()

    async def aclose(self) -> None:
        await self.provider.aclose()
