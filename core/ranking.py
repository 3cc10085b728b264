"""
core/ranking.py - Hybrid Ranking
=================================

Merges vector (cosine) and keyword (inverted fuzzy distance) results into
one ranked list and decides whether the best match is confident enough to
answer from.

The two score scales are not calibrated against each other. Duplicates keep
the maximum of their scores, so a confident signal from either source wins;
this is a known approximation and scores are not renormalized.
"""

from typing import Iterable, Optional, Sequence

from config import CONFIDENCE_THRESHOLD, TOP_K_RESULTS
from core.keyword_index import KeywordIndex
from core.vectorstore import ScoredCandidate, VectorIndex


def merge_results(
    vector_results: Iterable,
    keyword_results: Iterable,
    top_k: int = TOP_K_RESULTS,
) -> list[ScoredCandidate]:
    """
    Deduplicate by FAQ id keeping the max score, then rank.

    Both inputs only need `.entry` and `.score`. Ties are broken by id, so
    the output doesn't depend on the order of either input.
    """
    best: dict[int, ScoredCandidate] = {}
    for item in list(vector_results) + list(keyword_results):
        score = float(item.score)
        current = best.get(item.entry.id)
        if current is None or score > current.score:
            best[item.entry.id] = ScoredCandidate(entry=item.entry, score=score)

    ranked = sorted(best.values(), key=lambda c: (-c.score, c.entry.id))
    return ranked[:top_k]


class HybridRanker:
    """
    Runs both searches and applies the confidence gate.

    Usage:
        ranker = HybridRanker(VectorIndex(faqs), KeywordIndex(faqs))
        candidates = ranker.search(message, query_embedding)
        if not ranker.is_confident(candidates):
            ...  # fallback reply
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        keyword_index: KeywordIndex,
        top_k: int = TOP_K_RESULTS,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
    ):
        self.vector_index = vector_index
        self.keyword_index = keyword_index
        self.top_k = top_k
        self.confidence_threshold = confidence_threshold

    def merge(
        self,
        vector_results: Iterable,
        keyword_results: Iterable,
        top_k: Optional[int] = None,
    ) -> list[ScoredCandidate]:
        return merge_results(vector_results, keyword_results, self.top_k if top_k is None else top_k)

    def search(self, query_text: str, query_embedding: Sequence[float]) -> list[ScoredCandidate]:
        """Semantic + fuzzy search, merged and truncated to top-k."""
        vector_results = self.vector_index.search(query_embedding)
        keyword_results = self.keyword_index.search(query_text)
        return self.merge(vector_results, keyword_results)

    def is_confident(self, candidates: Sequence[ScoredCandidate]) -> bool:
        """True when the merged top score clears the confidence threshold."""
        return bool(candidates) and candidates[0].score >= self.confidence_threshold
