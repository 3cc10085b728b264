from scripts.build_index import build_corpus


def test_build_corpus_assigns_ids_and_embeddings():
    records = [
        {"question": "How do I book?", "answer": "Online."},
        {"q": "Is it free?", "a": "Yes."},
        {"id": 10, "question": "Where?", "answer": "Ground floor."},
        {"question": "", "answer": "orphan answer"},
    ]

    corpus = build_corpus(records, lambda text: [float(len(text)), 0.5])

    assert [c["id"] for c in corpus] == [1, 2, 10]
    assert corpus[1] == {"id": 2, "question": "Is it free?", "answer": "Yes.", "embedding": [11.0, 0.5]}
