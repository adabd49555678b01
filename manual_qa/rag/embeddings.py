"""Embedding provider used for both ingestion and querying."""
import asyncio
from typing import List, Optional, Sequence

import numpy as np
import structlog

from manual_qa import config
from manual_qa.llm_client import OllamaClient

logger = structlog.get_logger()


class Embedder:
    """Maps text to a unit-length vector using an Ollama embedding model."""

    def __init__(
        self,
        client: Optional[OllamaClient] = None,
        model: str = None,
        batch_size: int = None,
    ):
        self.client = client or OllamaClient()
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE

    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Raises:
            RuntimeError: If the provider returns an empty embedding
            httpx.HTTPError: On API errors
        """
        response = await self.client.embeddings(prompt=text, model=self.model)
        embedding = response.get("embedding") or []

        if not embedding:
            raise RuntimeError("Empty embedding returned from embedding provider")

        return _normalize(embedding)

    async def embed_many(self, texts: Sequence[str], on_batch=None) -> List[List[float]]:
        """Embed texts in concurrent batches of ``batch_size``.

        Args:
            texts: Texts to embed
            on_batch: Optional callable(processed, total) after each batch
        """
        embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            embeddings.extend(await asyncio.gather(*(self.embed(t) for t in batch)))

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )
            if on_batch:
                on_batch(len(embeddings), len(texts))

        return embeddings


def _normalize(embedding: Sequence[float]) -> List[float]:
    vector = np.asarray(embedding, dtype=np.float64)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector.tolist()
    return (vector / norm).tolist()
