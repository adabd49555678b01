#!/usr/bin/env python
"""Rebuild the manual vector index from the PDFs in the manual directory.

Usage:
    python scripts/reindex.py              # Rebuild from existing PDFs
    python scripts/reindex.py --download   # Download the latest manual first
    python scripts/reindex.py --verbose    # Show detailed progress
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from manual_qa import config
from manual_qa.log_config import configure_logging
from manual_qa.rag.ingest import IngestEvent, IngestPipeline, download_manual
from manual_qa.rag.vector_store import VectorStore
import structlog

logger = structlog.get_logger()

STAGE_LABELS = {"read": "Reading PDFs", "embed": "Embedding", "store": "Storing"}


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None
        self._stage = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, event: IngestEvent):
        """Update progress."""
        if event.stage != self._stage:
            if self._stage is not None:
                print()
            self._stage = event.stage

        total = event.total
        percentage = (event.current / total) * 100 if total > 0 else 100.0
        bar_length = 40
        filled = int(bar_length * event.current / total) if total > 0 else bar_length
        bar = "█" * filled + "░" * (bar_length - filled)

        label = STAGE_LABELS.get(event.stage, event.stage)
        print(
            f"\r  {label:<13} [{bar}] {percentage:5.1f}% ({event.current}/{total}) {event.detail[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict, store_path: Path):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Files processed:      {stats['files_processed']}")
        print(f"  Files failed:         {stats['files_failed']}")
        print(f"  Pages read:           {stats['pages_read']}")
        print(f"  Chunks created:       {stats['chunks_created']}")
        print(
            f"  Chunk size (chars):   avg {stats['avg_chunk_size']}, "
            f"min {stats['min_chunk_size']}, max {stats['max_chunk_size']}"
        )
        print(f"  Vectors stored:       {stats['vectors_stored']}")
        print(f"  Time elapsed:         {elapsed_seconds:.1f}s")

        if stats["chunks_created"] > 0 and elapsed_seconds > 0:
            rate = stats["chunks_created"] / elapsed_seconds
            print(f"  Indexing rate:        {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if stats["files_failed"] > 0:
            print(f"Warning: {stats['files_failed']} file(s) failed to index.")
            print("   Check logs for details.\n")

        if stats["vectors_stored"] > 0:
            print(f"Index ready at: {store_path}\n")


async def main():
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Rebuild the manual vector index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reindex.py              # Rebuild from existing PDFs
  python scripts/reindex.py --download   # Download the latest manual first
  python scripts/reindex.py --verbose    # Show detailed progress
        """,
    )

    parser.add_argument(
        "--download",
        action="store_true",
        help=f"Download the manual from {config.MANUAL_URL} before indexing",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    parser.add_argument(
        "--manual-dir",
        type=Path,
        default=None,
        help=f"Manual PDF directory (default: {config.MANUAL_DIR})",
    )

    parser.add_argument(
        "--store-path",
        type=Path,
        default=None,
        help=f"Vector store snapshot (default: {config.VECTOR_STORE_PATH})",
    )

    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")
    progress = ProgressReporter(verbose=args.verbose)
    manual_dir = args.manual_dir or config.MANUAL_DIR
    store = VectorStore(path=args.store_path)

    try:
        print("\nConfiguration:")
        print(f"   Manual directory:  {manual_dir}")
        print(f"   Vector store:      {store.path}")
        print(f"   Embedding model:   {config.EMBEDDING_MODEL}")
        print(f"   Chunk size:        {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:     {config.CHUNK_OVERLAP} chars")

        if args.download:
            path = await download_manual(manual_dir=manual_dir)
            print(f"\nDownloaded manual to: {path}")

        print("\nRebuild will replace the existing index.")
        print("   Stop the API server first; the index cannot be rebuilt while serving.")

        progress.start("Rebuilding Manual Index")

        pipeline = IngestPipeline(manual_dir=manual_dir, vector_store=store)
        stats = await pipeline.run(on_event=progress.update)

        progress.finish(stats, store.path)

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIndexing cancelled by user.\n")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
