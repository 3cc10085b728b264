#!/usr/bin/env python3
"""
scripts/build_index.py - Precompute FAQ Embeddings
===================================================

This script reads the raw FAQ list from data/faq.json, embeds every
question with the local sentence-transformers model, and writes the corpus
the server loads at startup (data/faqs_with_embeddings.json).

Usage:
    python scripts/build_index.py
    python scripts/build_index.py --input my_faqs.json --output corpus.json
    python scripts/build_index.py --smoke-test "How do I book a session?"

Run this script whenever you:
- Add, edit or remove FAQs
- Change EMBEDDING_MODEL_NAME in config.py

The script will overwrite any existing corpus file.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import EMBEDDING_MODEL_NAME, FAQ_FILE, FAQ_SOURCE_FILE


def build_corpus(records: list, embed) -> list[dict]:
    """
    Attach ids and question embeddings to raw FAQ records.

    Records may use {question, answer} or the short {q, a} keys. Ids are
    kept when present, otherwise assigned from position (1-based).

    Args:
        records: Raw FAQ dictionaries
        embed: Function mapping text to a normalized vector

    Returns:
        List of {id, question, answer, embedding} dictionaries
    """
    corpus = []
    for i, record in enumerate(records):
        question = record.get("question") or record.get("q") or ""
        answer = record.get("answer") or record.get("a") or ""
        if not question.strip():
            print(f"   ⚠️  Skipping record {i + 1}: no question")
            continue

        print(f"   Embedding {i + 1}/{len(records)} → {question[:60]}")
        corpus.append({
            "id": record.get("id", i + 1),
            "question": question,
            "answer": answer,
            "embedding": [float(v) for v in embed(question)],
        })
    return corpus


def smoke_test(query: str, corpus_path: Path) -> None:
    """Run one hybrid search against a built corpus (no LLM call)."""
    from core.embeddings import load_sentence_transformer
    from core.keyword_index import KeywordIndex
    from core.ranking import HybridRanker
    from core.vectorstore import VectorIndex, load_faqs

    faqs = load_faqs(corpus_path)
    ranker = HybridRanker(VectorIndex(faqs), KeywordIndex(faqs))
    embed = load_sentence_transformer()
    candidates = ranker.search(query, embed(query))

    print(f"\n🔍 Query: {query}")
    for c in candidates:
        print(f"   [{c.score:.3f}] #{c.entry.id} {c.entry.question}")
    verdict = "confident" if ranker.is_confident(candidates) else "fallback"
    print(f"   → {verdict}")


def main():
    parser = argparse.ArgumentParser(
        description="Precompute embeddings for the counselling FAQ corpus",
    )
    parser.add_argument(
        "--input",
        type=str,
        default=str(FAQ_SOURCE_FILE),
        help=f"Raw FAQ JSON list (default: {FAQ_SOURCE_FILE})"
    )
    parser.add_argument(
        "--output",
        type=str,
        default=str(FAQ_FILE),
        help=f"Corpus file to write (default: {FAQ_FILE})"
    )
    parser.add_argument(
        "--smoke-test",
        type=str,
        metavar="QUERY",
        help="Search the built corpus for QUERY instead of rebuilding"
    )
    args = parser.parse_args()

    input_path = Path(args.input)
    output_path = Path(args.output)

    if args.smoke_test:
        smoke_test(args.smoke_test, output_path)
        return

    print("=" * 60)
    print("COUNSELLING FAQ - Precomputing Embeddings")
    print("=" * 60)
    print()

    # Step 1: Load raw FAQs
    print(f"📁 Reading FAQs from: {input_path}")
    if not input_path.exists():
        print(f"❌ File does not exist: {input_path}")
        sys.exit(1)

    with open(input_path, "r", encoding="utf-8") as f:
        records = json.load(f)

    if not isinstance(records, list) or not records:
        print("❌ Expected a non-empty JSON list of {question, answer} records")
        sys.exit(1)

    print(f"   Found {len(records)} FAQs")
    print()

    # Step 2: Embed questions
    print("🔢 STEP 1: Loading model and embedding questions")
    print("-" * 40)
    print(f"   Model: {EMBEDDING_MODEL_NAME} (first run downloads model files)")
    from core.embeddings import load_sentence_transformer
    embed = load_sentence_transformer(EMBEDDING_MODEL_NAME)
    corpus = build_corpus(records, embed)

    print()

    # Step 3: Save the corpus
    print("💾 STEP 2: Saving corpus to disk")
    print("-" * 40)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(corpus, f, indent=2, ensure_ascii=False)

    print()
    print("=" * 60)
    print("✅ CORPUS BUILD COMPLETE")
    print("=" * 60)
    print()
    print(f"   FAQs embedded: {len(corpus)}")
    print(f"   Dimension: {len(corpus[0]['embedding']) if corpus else 0}")
    print(f"   Corpus location: {output_path}")
    print()
    print("You can now start the API with: uvicorn backend.main:app --port 8000")


if __name__ == "__main__":
    main()
