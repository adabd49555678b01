"""Retriever for semantic search over the indexed manual.

Handles:
- Query embedding generation
- Vector store top-K search
- Conversion to RetrievedChunk results
"""
from typing import List, Optional

import structlog

from manual_qa import config
from manual_qa.rag.embeddings import Embedder
from manual_qa.rag.models import RetrievedChunk
from manual_qa.rag.vector_store import VectorStore

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        top_k: int = None,
    ):
        """Initialize the retriever.

        Args:
            vector_store: Opened (or lazily opened) vector store
            embedder: Embedding provider, same model as used for ingestion
            top_k: Number of results to retrieve (default from config)
        """
        self.vector_store = vector_store
        self.embedder = embedder
        self.top_k = config.RAG_TOP_K if top_k is None else top_k

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[RetrievedChunk]:
        """Retrieve the chunks most similar to a query.

        Args:
            query: Query text
            top_k: Number of results to return (overrides default)

        Returns:
            List of RetrievedChunk objects, best first. Empty if the store is
            empty or the query is blank.

        Raises:
            StorageError: If the store cannot be opened or is being rebuilt
            DimensionMismatchError: If the embedder does not match the index
            httpx.HTTPError: If the embedding provider fails
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = self.top_k if top_k is None else top_k
        store = await self.vector_store.open()

        if len(store) == 0:
            logger.warning("empty_index_no_results")
            return []

        try:
            query_embedding = await self.embedder.embed(query)
            result = store.query(query_embedding, top_k=top_k)
        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise

        chunks = [
            RetrievedChunk(text=doc, score=score, metadata=metadata)
            for doc, score, metadata in zip(result.documents, result.scores, result.metadatas)
        ]

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            top_k=top_k,
            results_returned=len(chunks),
            top_score=round(chunks[0].score, 3) if chunks else None,
            bottom_score=round(chunks[-1].score, 3) if chunks else None,
        )
        return chunks
