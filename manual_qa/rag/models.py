"""Data types shared by the RAG pipeline."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SNAPSHOT_VERSION = 1


class ChunkMetadata(BaseModel):
    """Metadata attached to every indexed chunk.

    Unknown keys are preserved so ingestion can attach extra fields
    without a schema change.
    """

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    source: str = Field(..., min_length=1, description="Originating document, e.g. a filename")
    page: int = Field(..., ge=1, description="1-based page number")
    chunk_index: int = Field(..., ge=0, alias="chunkIndex")
    length: int = Field(..., ge=0, description="Character count of the chunk")

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class VectorRecord(BaseModel):
    """One embedded chunk. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    content: str
    embedding: List[float]
    metadata: ChunkMetadata


class Snapshot(BaseModel):
    """On-disk layout of a persisted vector store."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = SNAPSHOT_VERSION
    vectors: List[VectorRecord] = Field(default_factory=list)
    saved_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="savedAt"
    )
    count: int = 0


@dataclass(frozen=True)
class RetrievedChunk:
    """A chunk returned by a similarity query."""

    text: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str:
        return self.metadata.get("source") or "Unknown"

    @property
    def page(self) -> int:
        return self.metadata.get("page") or 0

    @property
    def chunk_index(self) -> Optional[int]:
        return self.metadata.get("chunkIndex")


@dataclass
class Source:
    """A deduplicated citation."""

    source: str
    page: int
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "page": self.page, "score": self.score}


class ConversationTurn(BaseModel):
    """A prior message in the conversation, supplied by the caller."""

    role: Literal["user", "assistant"]
    content: str
