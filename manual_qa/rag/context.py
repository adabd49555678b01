"""Select the retrieved chunks that go into the prompt.

Chunks below the similarity threshold are dropped, survivors are ranked by
score and packed greedily into a token budget. Token counts are estimated
from character length, there is no tokenizer.
"""
import math
from typing import List, Sequence

import structlog

from manual_qa import config
from manual_qa.rag.models import RetrievedChunk

logger = structlog.get_logger()

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class ContextSelector:
    """Filters, ranks and budget-packs retrieved chunks."""

    def __init__(self, min_score: float = None, max_context_tokens: int = None):
        self.min_score = config.RAG_MIN_SCORE if min_score is None else min_score
        self.max_context_tokens = (
            config.RAG_MAX_CONTEXT_TOKENS if max_context_tokens is None else max_context_tokens
        )

    def filter(self, chunks: Sequence[RetrievedChunk]) -> List[RetrievedChunk]:
        return [c for c in chunks if c.score >= self.min_score]

    @staticmethod
    def rank(chunks: Sequence[RetrievedChunk]) -> List[RetrievedChunk]:
        # sorted() is stable, ties keep retrieval order
        return sorted(chunks, key=lambda c: c.score, reverse=True)

    def pack(self, ranked: Sequence[RetrievedChunk]) -> List[RetrievedChunk]:
        """Take chunks in order until the next one would exceed the budget."""
        selected = []
        total_tokens = 0

        for chunk in ranked:
            chunk_tokens = estimate_tokens(chunk.text)
            if total_tokens + chunk_tokens > self.max_context_tokens:
                break
            selected.append(chunk)
            total_tokens += chunk_tokens

        return selected

    def select(self, chunks: Sequence[RetrievedChunk]) -> List[RetrievedChunk]:
        """Filter, rank and pack.

        An empty result means nothing relevant fits in the prompt; callers
        answer with the standard "not found" guidance.
        """
        relevant = self.filter(chunks)
        if not relevant:
            logger.info(
                "no_chunks_above_threshold",
                retrieved=len(chunks),
                min_score=self.min_score,
            )
            return []

        selected = self.pack(self.rank(relevant))

        logger.info(
            "context_selected",
            retrieved=len(chunks),
            relevant=len(relevant),
            selected=len(selected),
            tokens=sum(estimate_tokens(c.text) for c in selected),
            max_tokens=self.max_context_tokens,
        )
        return selected
