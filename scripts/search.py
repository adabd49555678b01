#!/usr/bin/env python
"""Run semantic searches against the manual index to check retrieval quality.

Usage:
    python scripts/search.py "What are the robot size restrictions?"
    python scripts/search.py --top-k 5 "rule R205" "autonomous period"
    python scripts/search.py               # Run the built-in sample queries
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from manual_qa.log_config import configure_logging
from manual_qa.rag.embeddings import Embedder
from manual_qa.rag.retriever import Retriever
from manual_qa.rag.vector_store import VectorStore

SAMPLE_QUERIES = [
    "What are the dimensions of the playing field?",
    "What are the robot size restrictions?",
    "What happens during the autonomous period?",
    "How long is a match?",
    "What are the penalties for fouls?",
]


async def main():
    parser = argparse.ArgumentParser(description="Search the manual index")
    parser.add_argument("queries", nargs="*", help="Queries to run")
    parser.add_argument("--top-k", type=int, default=3, help="Results per query")
    parser.add_argument("--store-path", type=Path, default=None, help="Vector store snapshot")
    args = parser.parse_args()

    configure_logging("WARNING")

    store = VectorStore(path=args.store_path)
    stats = store.stats()
    if not stats["exists"]:
        print(f"\nNo index found at {store.path}. Run scripts/reindex.py first.\n")
        sys.exit(1)

    print(f"\nIndex: {store.path} ({stats['count']} chunks)")

    retriever = Retriever(store, Embedder(), top_k=args.top_k)

    for query in args.queries or SAMPLE_QUERIES:
        print(f"\nQuery: \"{query}\"")
        print("-" * 80)

        chunks = await retriever.retrieve(query)
        if not chunks:
            print("No results found")
            continue

        for i, chunk in enumerate(chunks, 1):
            print(f"\nResult {i} (Score: {chunk.score:.3f})")
            print(f"   Source: {chunk.source}")
            print(f"   Page: {chunk.page or 'Unknown'}")
            print(f"   Text: {chunk.text[:300]}")

    print()


if __name__ == "__main__":
    asyncio.run(main())
