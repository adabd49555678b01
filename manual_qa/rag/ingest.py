"""Ingest pipeline for indexing manual PDFs.

Orchestrates:
- Manual download
- PDF discovery and page extraction
- Text chunking
- Embedding generation
- Vector store rebuild and persistence

Ingestion always rebuilds the store from scratch and must not run while the
same store is serving queries.
"""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog

from manual_qa import config
from manual_qa.rag.chunker import TextChunk, TextChunker
from manual_qa.rag.embeddings import Embedder
from manual_qa.rag.models import ChunkMetadata, VectorRecord
from manual_qa.rag.pdf_reader import PDFReader
from manual_qa.rag.vector_store import AddProgress, VectorStore

logger = structlog.get_logger()

DEFAULT_MANUAL_FILENAME = "manual.pdf"
_FILENAME_RE = re.compile(r"filename[^;=\n]*=((['\"]).*?\2|[^;\n]*)")


@dataclass
class IngestEvent:
    """Progress notification for CLI reporting."""

    stage: str
    current: int
    total: int
    detail: str = ""


def filename_from_disposition(header: Optional[str]) -> str:
    """Pick the filename out of a Content-Disposition header."""
    if header:
        match = _FILENAME_RE.search(header)
        if match and match.group(1):
            name = match.group(1).strip().strip("'\"")
            if name:
                return Path(name).name
    return DEFAULT_MANUAL_FILENAME


async def download_manual(url: str = None, manual_dir: Path = None, timeout: float = 60.0) -> Path:
    """Download the manual PDF into the manual directory.

    Returns:
        Path of the saved file

    Raises:
        httpx.HTTPError: If the download fails
    """
    url = url or config.MANUAL_URL
    manual_dir = Path(manual_dir or config.MANUAL_DIR)

    logger.info("manual_download_started", url=url)

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()

    manual_dir.mkdir(parents=True, exist_ok=True)
    path = manual_dir / filename_from_disposition(response.headers.get("content-disposition"))
    path.write_bytes(response.content)

    logger.info("manual_downloaded", path=str(path), size=len(response.content))
    return path


class IngestPipeline:
    """Pipeline for ingesting manual PDFs into the vector store."""

    def __init__(
        self,
        manual_dir: Path = None,
        vector_store: VectorStore = None,
        embedder: Embedder = None,
        reader: PDFReader = None,
        chunker: TextChunker = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            manual_dir: Directory containing PDFs (default from config)
            vector_store: Store to rebuild (default from config)
            embedder: Embedding provider (default from config)
            reader: PDF reader
            chunker: Text chunker (default chunk size/overlap from config)
        """
        self.manual_dir = Path(manual_dir or config.MANUAL_DIR)
        self.vector_store = vector_store or VectorStore()
        self.embedder = embedder or Embedder()
        self.reader = reader or PDFReader()
        self.chunker = chunker or TextChunker()

        self.stats = self._empty_stats()

        logger.info(
            "ingest_pipeline_initialized",
            manual_dir=str(self.manual_dir),
            embedding_model=self.embedder.model,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
        )

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            "files_processed": 0,
            "files_failed": 0,
            "pages_read": 0,
            "chunks_created": 0,
            "chars_chunked": 0,
            "avg_chunk_size": 0,
            "min_chunk_size": 0,
            "max_chunk_size": 0,
            "embeddings_generated": 0,
            "vectors_stored": 0,
        }

    def discover_pdfs(self) -> List[Path]:
        """Find all PDFs in the manual directory.

        Raises:
            FileNotFoundError: If the directory doesn't exist or holds no PDFs
        """
        if not self.manual_dir.exists():
            raise FileNotFoundError(f"Manual directory not found: {self.manual_dir}")

        pdfs = sorted(p for p in self.manual_dir.iterdir() if p.suffix.lower() == ".pdf")

        if not pdfs:
            raise FileNotFoundError(f"No PDF files found in: {self.manual_dir}")

        logger.info("pdf_files_discovered", count=len(pdfs), manual_dir=str(self.manual_dir))
        return pdfs

    def chunk_files(self, pdfs: List[Path], on_event: Callable[[IngestEvent], None] = None) -> List[TextChunk]:
        """Read and chunk every PDF, numbering chunks globally.

        A file that fails to read is logged and skipped.
        """
        chunks: List[TextChunk] = []

        for idx, pdf in enumerate(pdfs, 1):
            if on_event:
                on_event(IngestEvent("read", idx, len(pdfs), pdf.name))
            try:
                pages = self.reader.read(pdf)
            except Exception as e:
                logger.error("file_ingestion_failed", path=str(pdf), error=str(e))
                self.stats["files_failed"] += 1
                continue

            file_chunks = self.chunker.chunk_pages(pages, start_index=len(chunks))
            chunks.extend(file_chunks)

            self.stats["files_processed"] += 1
            self.stats["pages_read"] += len(pages)

            logger.info("file_chunked", path=str(pdf), pages=len(pages), chunks=len(file_chunks))

        self.stats["chunks_created"] = len(chunks)
        self.stats.update(self.chunker.size_stats(chunks))
        return chunks

    @staticmethod
    def build_records(chunks: List[TextChunk], embeddings: List[List[float]]) -> List[VectorRecord]:
        """Pair chunks with embeddings, validating metadata."""
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Got {len(embeddings)} embeddings for {len(chunks)} chunks"
            )

        return [
            VectorRecord(
                content=chunk.text,
                embedding=embedding,
                metadata=ChunkMetadata(
                    source=chunk.source,
                    page=chunk.page,
                    chunk_index=chunk.chunk_index,
                    length=len(chunk.text),
                ),
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

    async def run(self, on_event: Callable[[IngestEvent], None] = None) -> Dict[str, Any]:
        """Rebuild the vector store from every PDF in the manual directory.

        Args:
            on_event: Optional callable receiving IngestEvent progress

        Returns:
            Dictionary with ingestion statistics

        Raises:
            FileNotFoundError: If there are no PDFs to ingest
            RuntimeError: If no chunks could be produced
        """
        logger.info("starting_ingest", manual_dir=str(self.manual_dir))
        self.stats = self._empty_stats()

        pdfs = self.discover_pdfs()
        chunks = self.chunk_files(pdfs, on_event)

        if not chunks:
            raise RuntimeError("No text could be extracted from the manual PDFs")

        def on_batch(processed: int, total: int) -> None:
            if on_event:
                on_event(IngestEvent("embed", processed, total))

        embeddings = await self.embedder.embed_many([c.text for c in chunks], on_batch=on_batch)
        self.stats["embeddings_generated"] = len(embeddings)

        records = self.build_records(chunks, embeddings)

        # The old snapshot is never read, so a corrupt one is simply replaced
        self.vector_store.rebuild()

        progress: Optional[AddProgress] = None
        for progress in self.vector_store.add(records):
            if on_event:
                on_event(IngestEvent("store", progress.added, progress.total))

        await self.vector_store.save()
        self.stats["vectors_stored"] = progress.added if progress else 0

        logger.info("ingest_completed", stats=self.stats)
        return self.stats
