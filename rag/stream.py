"""
rag/stream.py - Streaming Relay
================================

Turns a chunked upstream LLM response into normalized NDJSON frames.

Two upstream wire formats are supported, both line-based:
- Event stream (Groq / OpenAI-compatible): "data: {json}" lines with text at
  choices[0].delta.content, terminated by a "data: [DONE]" sentinel.
- NDJSON (Ollama): one JSON object per line with text at "response"; the
  stream ends when the connection closes.

Both share the same buffering: append each fragment, split on newlines,
keep the trailing partial line for the next fragment, and parse whatever is
left as one final line when the stream ends. A malformed line is skipped,
never fatal.
"""

import asyncio
import codecs
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional, Sequence, Union

from pydantic import BaseModel

from config import SUGGESTION_COUNT
from core.vectorstore import ScoredCandidate
from rag.upstream import UpstreamError

logger = logging.getLogger(__name__)


# =============================================================================
# FRAMES
# =============================================================================

class Suggestion(BaseModel):
    question: str
    answer: str


class StreamFrame(BaseModel):
    """One NDJSON line sent to the client. Only the last frame has done=True."""

    chunk: Optional[str] = None
    done: bool = False
    suggestions: Optional[list[Suggestion]] = None
    error: Optional[str] = None

    def to_ndjson(self) -> str:
        return self.model_dump_json(exclude_none=True) + "\n"


def suggestions_from(candidates: Sequence[ScoredCandidate], limit: int = SUGGESTION_COUNT) -> list[Suggestion]:
    return [
        Suggestion(question=c.entry.question, answer=c.entry.answer)
        for c in candidates[:limit]
    ]


# =============================================================================
# DECODERS
# =============================================================================

class StreamDecoder(ABC):
    """
    Line-buffering decoder shared by both wire formats.

    Subclasses only decide how one complete line maps to a text chunk.
    """

    def __init__(self):
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, fragment: Union[bytes, str]) -> list[str]:
        """Add a fragment and return the chunks from every completed line."""
        if isinstance(fragment, bytes):
            fragment = self._utf8.decode(fragment)
        self._buffer += fragment

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._decode_lines(lines)

    def flush(self) -> list[str]:
        """Decode whatever is left once the stream has ended."""
        self._buffer += self._utf8.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        return self._decode_lines([remaining])

    def _decode_lines(self, lines: list[str]) -> list[str]:
        chunks = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.strip():
                continue
            chunk = self.decode_line(line)
            if chunk:
                chunks.append(chunk)
        return chunks

    @abstractmethod
    def decode_line(self, line: str) -> Optional[str]:
        """Return the text carried by one complete line, if any."""

    @staticmethod
    def _parse_json(payload: str) -> Optional[Any]:
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed stream line: %r", payload[:200])
            return None


class EventStreamDecoder(StreamDecoder):
    """Format A: server-sent events with an OpenAI-style delta payload."""

    PREFIX = "data:"
    SENTINEL = "[DONE]"

    def decode_line(self, line: str) -> Optional[str]:
        if not line.startswith(self.PREFIX):
            return None
        payload = line[len(self.PREFIX):].strip()
        if not payload or payload == self.SENTINEL:
            return None

        data = self._parse_json(payload)
        try:
            content = data["choices"][0]["delta"].get("content")
        except (TypeError, KeyError, IndexError, AttributeError):
            return None
        return content if isinstance(content, str) else None


class NdjsonDecoder(StreamDecoder):
    """Format B: one JSON object per line with the text in "response"."""

    def decode_line(self, line: str) -> Optional[str]:
        data = self._parse_json(line)
        if not isinstance(data, dict):
            return None
        if data.get("error"):
            logger.warning("Upstream reported an error in stream: %s", data["error"])
        content = data.get("response")
        return content if isinstance(content, str) else None


# Wire format name (as declared by each provider) -> decoder
DECODERS = {
    "event-stream": EventStreamDecoder,
    "ndjson": NdjsonDecoder,
}


def create_decoder(wire_format: str) -> StreamDecoder:
    try:
        return DECODERS[wire_format]()
    except KeyError:
        raise ValueError(f"Unsupported stream format: {wire_format}") from None


# =============================================================================
# RELAY
# =============================================================================

class StreamRelay:
    """
    Relays an upstream fragment stream as StreamFrames.

    Exactly one frame with done=True ends every relay: either the final
    frame with suggestions, or an error frame if the upstream failed or the
    request was cancelled.
    """

    def __init__(
        self,
        decoder: StreamDecoder,
        suggestions: Sequence[Suggestion] = (),
        token=None,
    ):
        self.decoder = decoder
        self.suggestions = list(suggestions)
        self.token = token
        self.text = ""

    async def relay(self, fragments: AsyncIterator[Union[bytes, str]]) -> AsyncIterator[StreamFrame]:
        iterator = fragments.__aiter__()
        try:
            try:
                while True:
                    if self._cancelled():
                        yield self._cancelled_frame()
                        return
                    # A silent upstream must not outlive the request deadline
                    try:
                        fragment = await asyncio.wait_for(iterator.__anext__(), self._remaining())
                    except StopAsyncIteration:
                        break
                    except asyncio.TimeoutError:
                        self.token.cancel("timeout")
                        yield self._cancelled_frame()
                        return
                    for chunk in self.decoder.feed(fragment):
                        self.text += chunk
                        yield StreamFrame(chunk=chunk)
                for chunk in self.decoder.flush():
                    self.text += chunk
                    yield StreamFrame(chunk=chunk)
            except UpstreamError as e:
                logger.error("Stream error: %s", e)
                yield StreamFrame(error="Stream error", done=True)
                return
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()

        yield StreamFrame(done=True, suggestions=self.suggestions)

    def _remaining(self) -> Optional[float]:
        return self.token.remaining() if self.token is not None else None

    def _cancelled(self) -> bool:
        return self.token is not None and self.token.cancelled

    def _cancelled_frame(self) -> StreamFrame:
        reason = self.token.reason or "cancelled"
        logger.warning("Stream cancelled: %s", reason)
        if reason == "timeout":
            return StreamFrame(error="Response timed out. Please try again.", done=True)
        return StreamFrame(error="Request cancelled", done=True)
