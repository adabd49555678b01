"""Page-aware text chunking with overlap.

Chunks never span pages, so every chunk carries the page it came from.
Sizes are in characters to avoid tokenizer dependencies.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List

import structlog
from langchain_text_splitters import RecursiveCharacterTextSplitter

from manual_qa import config
from manual_qa.rag.pdf_reader import PageText

logger = structlog.get_logger()

SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


@dataclass
class TextChunk:
    """A chunk of page text with its global position."""

    text: str
    page: int
    chunk_index: int
    source: str


class TextChunker:
    """Recursive character chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
        """
        self.chunk_size = chunk_size or config.CHUNK_SIZE
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            separators=SEPARATORS,
        )

    def chunk_pages(self, pages: Iterable[PageText], start_index: int = 0) -> List[TextChunk]:
        """Split pages into chunks numbered from ``start_index``.

        Args:
            pages: Page texts in reading order
            start_index: First chunk index, so indexes stay unique across files

        Returns:
            List of TextChunk objects
        """
        chunks = []
        chunk_index = start_index

        for page in pages:
            for text in self._splitter.split_text(page.text):
                if not text.strip():
                    continue
                chunks.append(
                    TextChunk(
                        text=text,
                        page=page.page,
                        chunk_index=chunk_index,
                        source=page.source,
                    )
                )
                chunk_index += 1

        if chunks:
            logger.info("text_chunked", chunk_count=len(chunks), **self.size_stats(chunks))

        return chunks

    @staticmethod
    def size_stats(chunks: List[TextChunk]) -> Dict[str, int]:
        """Character-size summary of a set of chunks (all zero when empty)."""
        sizes = [len(c.text) for c in chunks]
        if not sizes:
            return {"chars_chunked": 0, "avg_chunk_size": 0, "min_chunk_size": 0, "max_chunk_size": 0}

        return {
            "chars_chunked": sum(sizes),
            "avg_chunk_size": sum(sizes) // len(sizes),
            "min_chunk_size": min(sizes),
            "max_chunk_size": max(sizes),
        }
