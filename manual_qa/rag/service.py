"""Question answering over the manual.

Pipeline per question:
1. Retrieve the top-K chunks for the question
2. Keep the relevant ones that fit in the context budget
3. Let the model answer, searching the manual again if it needs to
4. Cite every page that was shown to the model
"""
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import structlog

from manual_qa import config
from manual_qa.llm_client import ClaudeClient
from manual_qa.orchestrator import ChatBackend, ToolCallingOrchestrator
from manual_qa.prompts import NO_RELEVANT_INFO_MESSAGE, build_system_prompt, build_user_prompt
from manual_qa.rag.answer import AnswerAssembler, RAGAnswer
from manual_qa.rag.context import ContextSelector, estimate_tokens
from manual_qa.rag.embeddings import Embedder
from manual_qa.rag.models import ConversationTurn, Source
from manual_qa.rag.retriever import Retriever
from manual_qa.rag.vector_store import VectorStore
from manual_qa.tools.registry import ToolRegistry
from manual_qa.tools.search_manual import build_search_manual_tool

logger = structlog.get_logger()

REASON_NO_MATCH = "no_match"
REASON_NOT_INDEXED = "not_indexed"


@dataclass
class StreamingAnswer:
    """Sources and counters known up front, answer text delivered in fragments."""

    sources: List[Source]
    contexts_used: int
    tokens_estimate: int
    fragments: AsyncIterator[str]
    found: bool = True
    reason: Optional[str] = None


class RAGService:
    """Answers questions about the manual with retrieval and tool calling."""

    def __init__(
        self,
        vector_store: VectorStore = None,
        embedder: Embedder = None,
        backend: ChatBackend = None,
        selector: ContextSelector = None,
        top_k: int = None,
        tool_top_k: int = None,
        max_iterations: int = None,
        fragment_size: int = None,
    ):
        self.vector_store = vector_store or VectorStore()
        self.embedder = embedder or Embedder()
        self.backend = backend or ClaudeClient()
        self.selector = selector or ContextSelector()
        self.top_k = config.RAG_TOP_K if top_k is None else top_k
        self.fragment_size = fragment_size or config.STREAM_FRAGMENT_SIZE

        self.retriever = Retriever(self.vector_store, self.embedder, top_k=self.top_k)

        self.registry = ToolRegistry()
        self.registry.register(
            build_search_manual_tool(self.retriever, self.selector, top_k=tool_top_k)
        )

        self.orchestrator = ToolCallingOrchestrator(
            self.backend, self.registry, max_iterations=max_iterations
        )
        self.assembler = AnswerAssembler()

    async def open(self) -> None:
        await self.vector_store.open()

    def close(self) -> None:
        self.vector_store.close()

    async def answer(
        self,
        question: str,
        conversation_history: Sequence[ConversationTurn] = (),
    ) -> RAGAnswer:
        """Answer a question, citing the manual pages used.

        Returns a RAGAnswer with ``found=False`` and the standard guidance
        message when the index is empty or nothing relevant is retrieved.

        Raises:
            ConfigurationError: If the chat backend is not configured
            UnresolvedAnswerError: If the model never produces a text answer
            StorageError: If the vector store cannot be loaded
        """
        result, _ = await self._resolve(question, conversation_history, stream_final=False)
        return result

    async def stream_answer(
        self,
        question: str,
        conversation_history: Sequence[ConversationTurn] = (),
    ) -> StreamingAnswer:
        """Resolve the sources, then deliver the answer text in fragments.

        Sources depend on every tool round, so the tool loop finishes before
        the first fragment is produced. A forced final answer comes straight
        from the model's streaming call; any other answer is already complete
        and is split into fixed-size fragments.
        """
        result, final_stream = await self._resolve(
            question, conversation_history, stream_final=True
        )

        return StreamingAnswer(
            sources=result.sources,
            contexts_used=result.contexts_used,
            tokens_estimate=result.tokens_estimate,
            fragments=final_stream or _fragments(result.answer, self.fragment_size),
            found=result.found,
            reason=result.reason,
        )

    async def _resolve(
        self,
        question: str,
        conversation_history: Sequence[ConversationTurn],
        stream_final: bool,
    ) -> Tuple[RAGAnswer, Optional[AsyncIterator[str]]]:
        logger.info(
            "rag_query",
            question_preview=question[:100],
            history=len(conversation_history),
            stream=stream_final,
        )

        await self.vector_store.open()

        if len(self.vector_store) == 0:
            logger.warning("rag_store_empty")
            return self.assembler.no_answer(NO_RELEVANT_INFO_MESSAGE, REASON_NOT_INDEXED), None

        retrieved = await self.retriever.retrieve(question, top_k=self.top_k)
        selected = self.selector.select(retrieved)

        if not selected:
            logger.info("rag_no_relevant_chunks", retrieved=len(retrieved))
            return self.assembler.no_answer(NO_RELEVANT_INFO_MESSAGE, REASON_NO_MATCH), None

        system_prompt = build_system_prompt(with_tools=True)
        user_prompt = build_user_prompt(question, selected)
        tokens_estimate = estimate_tokens(system_prompt) + estimate_tokens(user_prompt)

        messages: List[Dict[str, Any]] = [
            {"role": turn.role, "content": turn.content} for turn in conversation_history
        ]
        messages.append({"role": "user", "content": user_prompt})

        logger.info(
            "rag_generating_answer",
            contexts=len(selected),
            tokens_estimate=tokens_estimate,
        )

        outcome = await self.orchestrator.run(system_prompt, messages, stream_final=stream_final)

        result = self.assembler.assemble(
            outcome.text,
            initial_chunks=selected,
            tool_chunks=outcome.chunks,
            tokens_estimate=tokens_estimate,
        )

        logger.info(
            "rag_answer_generated",
            answer_length=len(result.answer),
            streamed=outcome.final_stream is not None,
            sources=len(result.sources),
            contexts_used=result.contexts_used,
            tool_iterations=outcome.iterations,
        )
        return result, outcome.final_stream

    def get_config(self) -> Dict[str, Any]:
        return {
            "topK": self.top_k,
            "minSimilarityScore": self.selector.min_score,
            "maxContextTokens": self.selector.max_context_tokens,
            "maxIterations": self.orchestrator.max_iterations,
        }


async def _fragments(text: str, size: int) -> AsyncIterator[str]:
    for i in range(0, len(text), size):
        yield text[i : i + size]
