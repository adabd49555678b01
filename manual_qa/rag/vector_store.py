"""JSON-backed vector store with brute-force cosine search.

Handles:
- Snapshot loading and atomic persistence
- Bulk rebuild and append of embedded chunks
- Top-K cosine similarity queries (linear scan)
- Cheap status reporting for health checks

The collection is read-only while serving queries. A rebuild puts the store
into the REBUILDING state, in which queries are refused until the new
collection is saved.
"""
import enum
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import numpy as np
import structlog

from manual_qa import config
from manual_qa.errors import DimensionMismatchError, StorageError, StoreBusyError
from manual_qa.rag.models import SNAPSHOT_VERSION, Snapshot, VectorRecord

logger = structlog.get_logger()


class StoreState(str, enum.Enum):
    CLOSED = "closed"
    READY = "ready"
    REBUILDING = "rebuilding"


@dataclass
class AddProgress:
    """Progress event emitted while appending records."""

    added: int
    total: int

    @property
    def done(self) -> bool:
        return self.added == self.total


@dataclass
class QueryResult:
    """Parallel lists of the top-K matches, best first."""

    documents: List[str] = field(default_factory=list)
    scores: List[float] = field(default_factory=list)
    metadatas: List[Dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.documents)


def _cosine_scores(matrix: np.ndarray, norms: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of each row of ``matrix`` to ``query``.

    Rows or queries with zero norm score 0.0; results are clipped to [-1, 1].
    """
    denom = norms * np.linalg.norm(query)
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, (matrix @ query) / denom, 0.0)
    return np.clip(scores, -1.0, 1.0)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors, in [-1, 1].

    A zero vector has no direction, so its similarity to anything is 0.0.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    if va.shape != vb.shape:
        raise DimensionMismatchError(expected=va.shape[0], actual=vb.shape[0])

    return float(_cosine_scores(va[np.newaxis, :], np.linalg.norm(va, keepdims=True), vb)[0])


class VectorStore:
    """In-memory collection of embedded chunks persisted as a JSON snapshot."""

    def __init__(self, path: Path = None, progress_every: int = 100):
        """Initialize the vector store.

        Args:
            path: Snapshot file location (default: config.VECTOR_STORE_PATH)
            progress_every: Emit an AddProgress event every N appended records
        """
        self.path = Path(path or config.VECTOR_STORE_PATH)
        self.progress_every = progress_every

        self.state = StoreState.CLOSED
        self._records: List[VectorRecord] = []
        self._dimension: Optional[int] = None
        self._matrix: Optional[np.ndarray] = None
        self._norms: Optional[np.ndarray] = None

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def is_open(self) -> bool:
        return self.state is not StoreState.CLOSED

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> List[VectorRecord]:
        """Return a copy of the stored records."""
        return list(self._records)

    async def open(self) -> "VectorStore":
        """Load the persisted snapshot, or start empty if none exists.

        Idempotent: once open, later calls return without reading disk.

        Raises:
            StorageError: If the snapshot exists but cannot be parsed
        """
        if self.is_open:
            return self

        if not self.path.exists():
            logger.info("vector_store_empty", path=str(self.path))
            self._set_records([])
            self.state = StoreState.READY
            return self

        snapshot = self._read_snapshot()
        self._set_records(snapshot.vectors)
        self.state = StoreState.READY

        logger.info(
            "vector_store_loaded",
            path=str(self.path),
            vector_count=len(self._records),
            dimension=self._dimension,
            saved_at=snapshot.saved_at.isoformat(),
        )
        return self

    def rebuild(self) -> None:
        """Discard every record and start a fresh collection.

        Queries are refused until save() is called.
        """
        logger.warning(
            "vector_store_rebuilding",
            path=str(self.path),
            discarded=len(self._records),
        )
        self._set_records([])
        self.state = StoreState.REBUILDING

    def add(self, records: Iterable[VectorRecord]) -> Iterator[AddProgress]:
        """Append records, yielding progress events as they are added.

        Records are only appended while the generator is consumed. An event
        is emitted every ``progress_every`` records and once at completion.

        Raises:
            StorageError: If the store is not open
            DimensionMismatchError: If a record does not match the store dimension
        """
        self._require_open()

        batch = list(records)
        total = len(batch)

        # Validate the whole batch before appending anything
        expected = self._dimension
        for record in batch:
            dim = len(record.embedding)
            if expected is None:
                expected = dim
            elif dim != expected:
                raise DimensionMismatchError(expected=expected, actual=dim)
        self._dimension = expected

        for i, record in enumerate(batch, 1):
            self._records.append(record)
            self._matrix = None

            if i % self.progress_every == 0 and i != total:
                yield AddProgress(added=i, total=total)

        logger.info("vectors_added", count=total, total_vectors=len(self._records))
        yield AddProgress(added=total, total=total)

    def add_all(self, records: Iterable[VectorRecord]) -> int:
        """Append records without observing progress. Returns the count added."""
        last = None
        for last in self.add(records):
            pass
        return last.added if last else 0

    def query(self, query_embedding: Sequence[float], top_k: int = None) -> QueryResult:
        """Rank every record by cosine similarity to the query.

        Args:
            query_embedding: Query vector
            top_k: Number of results to return (default from config)

        Returns:
            QueryResult with at most top_k matches, highest score first

        Raises:
            StorageError: If the store is not open
            StoreBusyError: If the store is being rebuilt
            DimensionMismatchError: If the query has the wrong dimension
        """
        self._require_open()
        if self.state is StoreState.REBUILDING:
            raise StoreBusyError("Vector store is being rebuilt; queries are unavailable")

        if top_k is None:
            top_k = config.RAG_TOP_K

        if not self._records or top_k <= 0:
            return QueryResult()

        query = np.asarray(query_embedding, dtype=np.float64)
        if query.shape[0] != self._dimension:
            raise DimensionMismatchError(expected=self._dimension, actual=query.shape[0])

        matrix, norms = self._get_matrix()
        scores = _cosine_scores(matrix, norms, query)

        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:top_k]

        result = QueryResult()
        for idx in order:
            record = self._records[idx]
            result.documents.append(record.content)
            result.scores.append(float(scores[idx]))
            result.metadatas.append(record.metadata.as_dict())

        logger.debug(
            "vector_search_completed",
            top_k=top_k,
            results_found=len(result),
            top_score=result.scores[0],
        )
        return result

    async def save(self) -> None:
        """Write the full collection to disk in one atomic replace.

        Raises:
            StorageError: If the store is not open or the write fails
        """
        self._require_open()

        snapshot = Snapshot(
            version=SNAPSHOT_VERSION,
            vectors=self._records,
            count=len(self._records),
        )
        payload = snapshot.model_dump_json(by_alias=True)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=self.path.name, suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error("vector_store_save_failed", path=str(self.path), error=str(e))
            raise StorageError(f"Failed to save vector store: {e}") from e

        self.state = StoreState.READY

        logger.info(
            "vector_store_saved",
            path=str(self.path),
            vector_count=snapshot.count,
        )

    def stats(self) -> Dict[str, Any]:
        """Report snapshot presence and record count without loading it.

        Raises:
            StorageError: If the snapshot exists but cannot be parsed
        """
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(f"Unreadable vector store snapshot: {e}") from e

            if not isinstance(data, dict):
                raise StorageError("Vector store snapshot is not a JSON object")

            count = data.get("count")
            if count is None:
                count = len(data.get("vectors") or [])
            return {"exists": True, "count": count, "path": str(self.path), "state": self.state.value}

        if self._records:
            return {"exists": True, "count": len(self._records), "path": None, "state": self.state.value}

        return {"exists": False, "count": 0, "path": str(self.path), "state": self.state.value}

    def close(self) -> None:
        """Release the in-memory collection."""
        self._set_records([])
        self.state = StoreState.CLOSED
        logger.info("vector_store_closed", path=str(self.path))

    def _read_snapshot(self) -> Snapshot:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
            snapshot = Snapshot.model_validate_json(raw)
        except (OSError, ValueError) as e:
            logger.error(
                "vector_store_snapshot_invalid",
                path=str(self.path),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageError(f"Failed to load vector store from {self.path}: {e}") from e

        if snapshot.version != SNAPSHOT_VERSION:
            raise StorageError(
                f"Unsupported vector store snapshot version {snapshot.version} "
                f"(expected {SNAPSHOT_VERSION})"
            )

        dims = {len(v.embedding) for v in snapshot.vectors}
        if len(dims) > 1:
            raise StorageError(f"Snapshot mixes embedding dimensions: {sorted(dims)}")

        return snapshot

    def _set_records(self, records: List[VectorRecord]) -> None:
        self._records = list(records)
        self._dimension = len(records[0].embedding) if records else None
        self._matrix = None
        self._norms = None

    def _get_matrix(self):
        if self._matrix is None:
            self._matrix = np.asarray(
                [r.embedding for r in self._records], dtype=np.float64
            )
            self._norms = np.linalg.norm(self._matrix, axis=1)
        return self._matrix, self._norms

    def _require_open(self) -> None:
        if not self.is_open:
            raise StorageError("Vector store is not open. Call open() first.")
