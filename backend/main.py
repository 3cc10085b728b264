"""
backend/main.py
===============

FastAPI backend for the Counselling FAQ Assistant.

Provides REST API endpoints for the chat interface:
- POST /chat - Send a message and get a streamed NDJSON answer
- POST /api/faq-match - Send a message and get the whole answer as JSON
- GET /health - Health check endpoint
- GET /stats - Corpus and index statistics

Run with:
    uvicorn backend.main:app --reload --port 8000

Or from project root:
    python -m uvicorn backend.main:app --reload --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from config import ALLOWED_ORIGINS, LOG_LEVEL, validate_config
from core.service import ChatResponse, CounsellingService, build_service
from rag.chat_engine import CancellationToken
from rag.stream import StreamFrame

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

NDJSON_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

SYSTEM_ERROR = "System error. Please contact the administrator."


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ChatMessage(BaseModel):
    """Request model for chat endpoints. Length is checked by the service."""
    message: Optional[str] = Field(None, description="User's message")


class ReplyResponse(BaseModel):
    """Response model for non-streaming replies."""
    reply: str = Field(..., description="Answer text")


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    faqs_loaded: bool
    total_faqs: Optional[int] = None
    indexed_vectors: Optional[int] = None


# =============================================================================
# SERVICE LIFECYCLE
# =============================================================================

# Global service instance (built at startup)
_service: Optional[CounsellingService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the corpus and start the embedding pool; refuse to start on bad config."""
    global _service
    validate_config()
    _service = build_service()
    try:
        await _service.start()
        yield
    finally:
        await _service.aclose()
        _service = None


def get_optional_service() -> Optional[CounsellingService]:
    return _service


def get_service(
    service: Optional[CounsellingService] = Depends(get_optional_service),
) -> CounsellingService:
    """Return the running service instance."""
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


# =============================================================================
# FASTAPI APP
# =============================================================================

app = FastAPI(
    title="Counselling FAQ Assistant API",
    description="Hybrid-retrieval FAQ assistant with a streaming LLM answer",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# =============================================================================
# STREAMING HELPERS
# =============================================================================

def _canned_frames(text: str) -> list[StreamFrame]:
    return [StreamFrame(chunk=text), StreamFrame(done=True)]


async def _ndjson_lines(response: ChatResponse, token: CancellationToken) -> AsyncIterator[str]:
    """
    Serialise frames for the wire.

    Starlette stops iterating when the client disconnects; closing the
    frame iterator then closes the upstream stream.
    """
    completed = False
    try:
        async for frame in response.frames:
            yield frame.to_ndjson()
        completed = True
    finally:
        if not completed:
            logger.info("Client disconnected before the answer finished")
            token.cancel("client disconnected")
        await response.frames.aclose()


def _stream(lines) -> StreamingResponse:
    return StreamingResponse(lines, media_type="application/x-ndjson", headers=NDJSON_HEADERS)


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(service: Optional[CounsellingService] = Depends(get_optional_service)):
    """
    Health check endpoint.

    Returns the status of the API and corpus loading state.
    """
    if service is None:
        return HealthResponse(status="degraded", faqs_loaded=False)
    stats = service.get_index_stats()
    return HealthResponse(
        status="healthy",
        faqs_loaded=True,
        total_faqs=stats["total_faqs"],
        indexed_vectors=stats["indexed_vectors"],
    )


@app.post("/chat", tags=["Chat"])
async def chat(request: ChatMessage, service: CounsellingService = Depends(get_service)):
    """
    Send a message and get a streamed answer.

    The response is NDJSON: zero or more {"chunk": ...} frames followed by
    exactly one {"done": true} frame, which carries up to two suggested
    FAQs or an error. Validation, triage and fallback replies are sent as a
    single chunk. If the LLM can't be reached, the reply is HTTP 500 JSON.
    """
    token = service.chat_engine.new_token()
    try:
        response = await service.answer(request.message, token)
    except Exception:
        logger.exception("Chat error")
        return JSONResponse(status_code=500, content={"reply": SYSTEM_ERROR})

    if response.failed:
        return JSONResponse(status_code=500, content={"reply": response.reply})

    if not response.streaming:
        return _stream(frame.to_ndjson() for frame in _canned_frames(response.reply))

    return _stream(_ndjson_lines(response, token))


@app.post("/api/faq-match", response_model=ReplyResponse, tags=["Chat"])
async def faq_match(request: ChatMessage, service: CounsellingService = Depends(get_service)):
    """
    Send a message and get the whole answer in one JSON object.

    Same pipeline as /chat, for clients that can't read a stream.
    """
    try:
        response = await service.reply(request.message)
    except Exception:
        logger.exception("FAQ match error")
        return JSONResponse(status_code=500, content={"reply": SYSTEM_ERROR})

    if response.failed:
        return JSONResponse(status_code=500, content={"reply": response.reply})
    return ReplyResponse(reply=response.reply)


@app.get("/stats", tags=["System"])
async def get_stats(service: CounsellingService = Depends(get_service)):
    """
    Get statistics about the knowledge base.

    Returns counts of FAQs and indexed vectors plus the pool and provider.
    """
    return service.get_index_stats()


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
