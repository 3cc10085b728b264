import json
import math

import pytest

from core.vectorstore import FaqEntry, VectorIndex, load_faqs
from tests.conftest import make_entry


def test_from_record_derives_norm():
    entry = FaqEntry.from_record({"id": 7, "question": "q", "answer": "a", "embedding": [3, 4]})
    assert entry.id == 7
    assert entry.embedding == (3.0, 4.0)
    assert entry.norm == 5.0


def test_missing_id_uses_position():
    entry = FaqEntry.from_record({"question": "q", "answer": "a", "embedding": [1]}, position=4)
    assert entry.id == 5


@pytest.mark.parametrize("embedding", [None, ["x", 1.0], [1.0, float("nan")]])
def test_bad_embedding_is_emptied(embedding):
    entry = FaqEntry.from_record({"id": 1, "question": "q", "answer": "a", "embedding": embedding})
    assert entry.embedding == ()
    assert entry.norm == 0.0


def test_search_returns_cosine_ranked(faqs):
    index = VectorIndex(faqs, top_k=3, threshold=0.1)
    results = index.search([2.0, 1.0, 0.0])

    assert [r.entry.id for r in results] == [1, 2]
    assert results[0].score == pytest.approx(2 / math.sqrt(5), abs=1e-5)
    assert results[1].score == pytest.approx(1 / math.sqrt(5), abs=1e-5)


def test_threshold_is_inclusive(faqs):
    query = [1.0, 0.0, 0.0]
    assert [r.entry.id for r in VectorIndex(faqs, top_k=3, threshold=1.0).search(query)] == [1]

    # Orthogonal entries score exactly 0 and survive a zero threshold
    results = VectorIndex(faqs, top_k=3, threshold=0.0).search(query)
    assert [r.entry.id for r in results] == [1, 2, 3]
    assert [r.score for r in results[1:]] == [0.0, 0.0]


def test_search_applies_threshold_and_top_k(faqs):
    index = VectorIndex(faqs, top_k=1, threshold=0.4)
    assert [r.entry.id for r in index.search([2.0, 1.0, 0.0])] == [1]
    assert index.search([0.0, 0.0, -1.0]) == []


def test_zero_norm_entries_are_skipped():
    entries = (
        make_entry(1, "a", "a", [0.0, 0.0]),
        make_entry(2, "b", "b", [1.0, 0.0]),
    )
    index = VectorIndex(entries, threshold=-1.0)
    assert index.size == 1
    assert [r.entry.id for r in index.search([1.0, 1.0])] == [2]


def test_zero_query_returns_nothing(faqs):
    assert VectorIndex(faqs).search([0.0, 0.0, 0.0]) == []


def test_dimension_mismatch_raises(faqs):
    with pytest.raises(ValueError):
        VectorIndex(faqs).search([1.0, 0.0])


def test_load_faqs(faq_file):
    entries = load_faqs(faq_file)
    assert [e.id for e in entries] == [1, 2, 3]
    assert isinstance(entries, tuple)


def test_load_faqs_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_faqs(tmp_path / "missing.json")


def test_load_faqs_rejects_non_list(tmp_path):
    path = tmp_path / "corpus.json"
    path.write_text(json.dumps({"question": "q"}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_faqs(path)
