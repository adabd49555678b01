"""Merge evidence from every retrieval round into the final answer.

Only chunks that were shown to the model are cited: the budget-packed
initial context plus the threshold-filtered results of each tool search.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from manual_qa.rag.models import RetrievedChunk, Source


@dataclass
class RAGAnswer:
    """Answer with deduplicated citations and observability counters."""

    answer: str
    sources: List[Source] = field(default_factory=list)
    contexts_used: int = 0
    tokens_estimate: int = 0
    found: bool = True
    reason: Optional[str] = None

    def sources_as_dicts(self) -> List[Dict]:
        return [s.to_dict() for s in self.sources]


def extract_sources(chunks: Iterable[RetrievedChunk]) -> List[Source]:
    """One source per (source, page) holding its best score, best first."""
    best: Dict[Tuple[str, int], Source] = {}

    for chunk in chunks:
        key = (chunk.source, chunk.page)
        existing = best.get(key)
        if existing is None or chunk.score > existing.score:
            best[key] = Source(source=chunk.source, page=chunk.page, score=chunk.score)

    return sorted(best.values(), key=lambda s: s.score, reverse=True)


def distinct_chunks(chunks: Iterable[RetrievedChunk]) -> List[RetrievedChunk]:
    """Drop repeats of the same chunk seen in more than one round."""
    seen = set()
    unique = []
    for chunk in chunks:
        key = (chunk.source, chunk.chunk_index, chunk.text)
        if key not in seen:
            seen.add(key)
            unique.append(chunk)
    return unique


class AnswerAssembler:
    """Builds the final RAGAnswer from the answer text and all chunks used."""

    def assemble(
        self,
        answer: str,
        initial_chunks: Sequence[RetrievedChunk],
        tool_chunks: Sequence[RetrievedChunk] = (),
        tokens_estimate: int = 0,
    ) -> RAGAnswer:
        all_chunks = list(initial_chunks) + list(tool_chunks)

        return RAGAnswer(
            answer=answer,
            sources=extract_sources(all_chunks),
            contexts_used=len(distinct_chunks(all_chunks)),
            tokens_estimate=tokens_estimate,
        )

    @staticmethod
    def no_answer(message: str, reason: str) -> RAGAnswer:
        return RAGAnswer(answer=message, found=False, reason=reason)
