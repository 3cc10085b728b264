import pytest

from core.keyword_index import KeywordIndex, KeywordMatch
from core.ranking import HybridRanker, merge_results
from core.vectorstore import ScoredCandidate, VectorIndex


def test_merge_keeps_max_score(faqs):
    e1, e2, _ = faqs
    vector = [ScoredCandidate(e1, 0.6), ScoredCandidate(e2, 0.5)]
    keyword = [KeywordMatch(e1, 0.1)]

    merged = merge_results(vector, keyword)

    assert [(c.entry.id, round(c.score, 6)) for c in merged] == [(1, 0.9), (2, 0.5)]


def test_merge_is_order_independent(faqs):
    e1, e2, e3 = faqs
    vector = [ScoredCandidate(e3, 0.7), ScoredCandidate(e1, 0.4)]
    keyword = [KeywordMatch(e2, 0.3), KeywordMatch(e1, 0.5)]

    forward = merge_results(vector, keyword)
    backward = merge_results(list(reversed(keyword)), list(reversed(vector)))

    assert forward == backward
    # 0.7 tie between ids 2 and 3 is broken by id
    assert [c.entry.id for c in forward] == [2, 3, 1]


def test_merge_truncates(faqs):
    vector = [ScoredCandidate(e, 0.9 - 0.1 * i) for i, e in enumerate(faqs)]
    assert len(merge_results(vector, [], top_k=2)) == 2


def test_confidence_gate(faqs):
    ranker = HybridRanker(VectorIndex(faqs), KeywordIndex(faqs), confidence_threshold=0.5)
    assert not ranker.is_confident([])
    assert ranker.is_confident([ScoredCandidate(faqs[0], 0.5)])
    assert not ranker.is_confident([ScoredCandidate(faqs[0], 0.49)])


def test_hybrid_search(faqs):
    ranker = HybridRanker(VectorIndex(faqs), KeywordIndex(faqs))
    candidates = ranker.search("Where is the counselling centre?", [0.0, 0.0, 1.0])

    assert candidates[0].entry.id == 3
    assert candidates[0].score == pytest.approx(1.0)
    assert ranker.is_confident(candidates)
