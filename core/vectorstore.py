"""
core/vectorstore.py - FAQ Corpus and FAISS Vector Index
=========================================================

This module handles the dense half of retrieval:
- Loading the precomputed FAQ corpus (question, answer, embedding)
- Deriving each entry's L2 norm once, at load time
- Building a FAISS inner-product index over norm-scaled embeddings
- Cosine similarity search with a threshold and top-k cut

Key Concepts:
- Cosine similarity: dot(q, e) / (|q| * |e|). Entries are divided by their
  precomputed norm when the index is built and the query is divided by its
  own norm, so FAISS inner product is exactly the cosine.
- Entries with a zero or malformed embedding never enter the FAISS index,
  but stay in the corpus for keyword search.
"""

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import faiss
import numpy as np

from config import (
    EMBEDDING_DIMENSION,
    EMBEDDING_MODEL_NAME,
    FAQ_FILE,
    TOP_K_RESULTS,
    VECTOR_THRESHOLD,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class FaqEntry:
    """
    One question/answer pair with its precomputed embedding.

    Attributes:
        id: Stable integer identity (used for deduplication)
        question: FAQ question text
        answer: FAQ answer text
        embedding: Fixed-length vector computed from the question
        norm: L2 norm of the embedding (0.0 when missing or malformed)
    """
    id: int
    question: str
    answer: str
    embedding: tuple[float, ...] = ()
    norm: float = 0.0

    @classmethod
    def from_record(cls, record: dict, position: int = 0) -> "FaqEntry":
        """Build an entry from a corpus record, deriving the norm."""
        entry_id = int(record.get("id", position + 1))
        embedding = _coerce_embedding(record.get("embedding"), entry_id)
        norm = math.sqrt(sum(v * v for v in embedding)) if embedding else 0.0
        return cls(
            id=entry_id,
            question=str(record.get("question", "")),
            answer=str(record.get("answer", "")),
            embedding=embedding,
            norm=norm,
        )


@dataclass(frozen=True)
class ScoredCandidate:
    """An FAQ entry with a relevance score (higher is better)."""
    entry: FaqEntry
    score: float


def _coerce_embedding(raw, entry_id: int) -> tuple[float, ...]:
    if raw is None:
        logger.warning("FAQ %s has no embedding; vector search will skip it", entry_id)
        return ()
    try:
        values = tuple(float(v) for v in raw)
    except (TypeError, ValueError):
        logger.warning("FAQ %s has a malformed embedding; vector search will skip it", entry_id)
        return ()
    if not all(math.isfinite(v) for v in values):
        logger.warning("FAQ %s has non-finite embedding values; vector search will skip it", entry_id)
        return ()
    return values


# =============================================================================
# CORPUS LOADING
# =============================================================================

def load_faqs(path: Path = FAQ_FILE) -> tuple[FaqEntry, ...]:
    """
    Load the FAQ corpus produced by scripts/build_index.py.

    Args:
        path: JSON file holding a list of {id, question, answer, embedding}

    Returns:
        Immutable tuple of FaqEntry objects

    Raises:
        FileNotFoundError: If the corpus file doesn't exist
        ValueError: If the file is not a JSON list of records
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(
            f"FAQ corpus not found at {path}. "
            "Run 'python scripts/build_index.py' first."
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"FAQ corpus at {path} is not valid JSON: {e}") from e

    if not isinstance(records, list):
        raise ValueError(f"FAQ corpus at {path} must be a JSON list of records")

    entries = tuple(FaqEntry.from_record(record, i) for i, record in enumerate(records))
    logger.info("Loaded %d FAQs from %s", len(entries), path)
    return entries


# =============================================================================
# VECTOR INDEX
# =============================================================================

class VectorIndex:
    """
    Read-only FAISS index over the FAQ embeddings.

    Usage:
        index = VectorIndex(load_faqs())
        candidates = index.search(query_embedding)
    """

    def __init__(
        self,
        entries: Sequence[FaqEntry],
        top_k: int = TOP_K_RESULTS,
        threshold: float = VECTOR_THRESHOLD,
    ):
        self.top_k = top_k
        self.threshold = threshold
        self.dimension = _corpus_dimension(entries)
        if self.dimension and self.dimension != EMBEDDING_DIMENSION:
            logger.warning(
                "Corpus embeddings have dimension %d but %s produces %d; "
                "rebuild with scripts/build_index.py",
                self.dimension, EMBEDDING_MODEL_NAME, EMBEDDING_DIMENSION,
            )

        # Only entries that can be divided by their norm are searchable
        self._entries: list[FaqEntry] = [
            e for e in entries
            if e.norm > 0 and len(e.embedding) == self.dimension
        ]
        skipped = len(entries) - len(self._entries)
        if skipped:
            logger.warning("%d FAQ(s) excluded from vector search (empty or malformed embedding)", skipped)

        self._index = faiss.IndexFlatIP(max(self.dimension, 1))
        if self._entries:
            matrix = np.array([e.embedding for e in self._entries], dtype=np.float32)
            norms = np.array([e.norm for e in self._entries], dtype=np.float32)
            self._index.add(matrix / norms[:, None])

    @property
    def size(self) -> int:
        """Number of searchable vectors."""
        return int(self._index.ntotal)

    def search(
        self,
        query_embedding: Sequence[float],
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[ScoredCandidate]:
        """
        Find the FAQs most similar to a query vector.

        Args:
            query_embedding: Query vector with the corpus dimension
            top_k: Maximum results (defaults to the index setting)
            threshold: Minimum cosine similarity (defaults to the index setting)

        Returns:
            ScoredCandidates, highest cosine similarity first

        Raises:
            ValueError: If the query dimension doesn't match the corpus
        """
        top_k = self.top_k if top_k is None else top_k
        threshold = self.threshold if threshold is None else threshold
        if self.size == 0 or top_k <= 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float32).reshape(1, -1)
        if query.shape[1] != self.dimension:
            raise ValueError(
                f"Query embedding has dimension {query.shape[1]}, "
                f"expected {self.dimension}"
            )

        query_norm = float(np.linalg.norm(query))
        if not math.isfinite(query_norm) or query_norm == 0.0:
            return []

        scores, indices = self._index.search(query / query_norm, min(top_k, self.size))

        results = []
        for score, idx in zip(scores[0], indices[0]):
            if idx < 0:  # FAISS pads missing results with -1
                continue
            if score < threshold:
                continue
            results.append(ScoredCandidate(entry=self._entries[idx], score=float(score)))
        return results


def _corpus_dimension(entries: Sequence[FaqEntry]) -> int:
    """Most common embedding length among usable entries."""
    lengths: dict[int, int] = {}
    for entry in entries:
        if entry.norm > 0:
            lengths[len(entry.embedding)] = lengths.get(len(entry.embedding), 0) + 1
    if not lengths:
        return 0
    return max(lengths, key=lambda n: (lengths[n], n))
