"""
core/keyword_index.py - Fuzzy Keyword Index
=============================================

Backup for semantic search: approximate string matching over each FAQ's
question and answer, tolerant of typos, case and punctuation.

Distances are in [0, 1] where 0 is an exact match. A field's distance is
1 minus the best SequenceMatcher ratio between the query and either the
whole field or any window of the field with as many words as the query,
so a short query can match a phrase inside a long answer.

Windows are only drawn from the first _MAX_CHUNKS overlapping chunks of a
field, which caps the cost of one query per FAQ. Phrases further into a
long answer still count toward the whole-field ratio.
"""

import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Optional, Sequence

from config import KEYWORD_THRESHOLD, KEYWORD_TOP_K
from core.vectorstore import FaqEntry

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")

# Long fields are scanned in a bounded number of overlapping word chunks
_MAX_CHUNKS = 8
_CHUNK_SIZE = 12
_CHUNK_OVERLAP = 8


def normalise_text(text: str) -> str:
    without_punctuation = _PUNCTUATION_RE.sub(" ", (text or "").lower())
    return _WHITESPACE_RE.sub(" ", without_punctuation).strip()


@dataclass(frozen=True)
class KeywordMatch:
    """A fuzzy match with its raw distance (0 = exact)."""
    entry: FaqEntry
    distance: float

    @property
    def score(self) -> float:
        """Distance inverted so 1 is best, clamped to [0, 1]."""
        return min(1.0, max(0.0, 1.0 - self.distance))


class KeywordIndex:
    """Approximate matcher over FAQ question and answer text."""

    def __init__(
        self,
        entries: Sequence[FaqEntry],
        threshold: float = KEYWORD_THRESHOLD,
        limit: int = KEYWORD_TOP_K,
    ):
        self.threshold = threshold
        self.limit = limit
        # (entry, [normalised question, normalised answer])
        self._documents = [
            (entry, [normalise_text(entry.question), normalise_text(entry.answer)])
            for entry in entries
        ]

    def search(self, query_text: str, limit: Optional[int] = None) -> list[KeywordMatch]:
        """
        Fuzzy-search the corpus.

        Args:
            query_text: Raw user text
            limit: Maximum matches (defaults to the index setting)

        Returns:
            KeywordMatches within the threshold, closest first
        """
        limit = self.limit if limit is None else limit
        query = normalise_text(query_text)
        if not query or limit <= 0:
            return []

        matches = []
        for entry, fields in self._documents:
            distance = min(_field_distance(query, field) for field in fields)
            if distance <= self.threshold:
                matches.append(KeywordMatch(entry=entry, distance=distance))

        matches.sort(key=lambda m: (m.distance, m.entry.id))
        return matches[:limit]


def _field_distance(query: str, field: str) -> float:
    if not field:
        return 1.0

    best = SequenceMatcher(None, query, field).ratio()

    for window in _phrase_windows(field, len(query.split())):
        matcher = SequenceMatcher(None, query, window)
        # Cheap upper bounds first; ratio() is the expensive call
        if matcher.real_quick_ratio() <= best or matcher.quick_ratio() <= best:
            continue
        best = max(best, matcher.ratio())
        if best == 1.0:
            break

    return 1.0 - best


def _chunk_words(tokens: list[str], size: int) -> list[list[str]]:
    if len(tokens) <= size:
        return [tokens]

    chunks: list[list[str]] = []
    step = max(1, size - _CHUNK_OVERLAP)
    for i in range(0, len(tokens), step):
        chunks.append(tokens[i:i + size])
        if len(chunks) >= _MAX_CHUNKS or i + size >= len(tokens):
            break
    return chunks


def _phrase_windows(field: str, query_words: int) -> list[str]:
    """Query-length word windows drawn from the field's leading chunks."""
    tokens = field.split()
    if query_words <= 0 or len(tokens) <= query_words:
        return []

    windows: list[str] = []
    seen = set()
    for chunk in _chunk_words(tokens, max(_CHUNK_SIZE, query_words)):
        for start in range(len(chunk) - query_words + 1):
            window = " ".join(chunk[start:start + query_words])
            if window not in seen:
                seen.add(window)
                windows.append(window)
    return windows
