"""Shared fixtures and fakes for the manual QA tests."""
import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from manual_qa.llm_client import ChatResponse
from manual_qa.rag.context import ContextSelector
from manual_qa.rag.models import ChunkMetadata, VectorRecord
from manual_qa.rag.vector_store import VectorStore


class FakeEmbedder:
    """Deterministic embedder: looks texts up in a table."""

    def __init__(self, vectors: Dict[str, List[float]] = None, default: List[float] = None):
        self.vectors = dict(vectors or {})
        self.default = default or [0.0, 0.0, 1.0]
        self.model = "fake-embedding-model"
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))

    async def embed_many(self, texts: Sequence[str], on_batch=None) -> List[List[float]]:
        result = [await self.embed(t) for t in texts]
        if on_batch:
            on_batch(len(result), len(texts))
        return result


Step = Union[ChatResponse, Exception, Callable[[Dict[str, Any]], ChatResponse]]


class ScriptedBackend:
    """Chat backend that replays a fixed list of responses.

    Each call is recorded with a copy of the messages, the tools and the
    tool choice passed. Streaming calls replay the next step's text in
    small pieces.
    """

    def __init__(self, steps: Sequence[Step] = ()):
        self.steps = list(steps)
        self.calls: List[Dict[str, Any]] = []

    def _next(self, system, messages, tools, tool_choice, stream) -> ChatResponse:
        call = {
            "system": system,
            "messages": list(messages),
            "tools": tools,
            "tool_choice": tool_choice,
            "stream": stream,
        }
        self.calls.append(call)

        if not self.steps:
            raise AssertionError(f"Unexpected model call #{len(self.calls)}")

        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(call)
        return step

    async def create_message(self, system, messages, tools=None, tool_choice=None) -> ChatResponse:
        return self._next(system, messages, tools, tool_choice, stream=False)

    async def stream_message(self, system, messages, tools=None, tool_choice=None):
        text = self._next(system, messages, tools, tool_choice, stream=True).text
        for i in range(0, len(text), 7):
            yield text[i : i + 7]

    def model_info(self) -> Dict[str, Any]:
        return {"model": "scripted", "maxTokens": 1024, "temperature": 0.0}


class AlwaysToolBackend:
    """Requests a search whenever tool use is allowed; answers otherwise."""

    def __init__(self, final_text: Optional[str] = "Final answer."):
        self.final_text = final_text
        self.calls: List[Dict[str, Any]] = []

    async def create_message(self, system, messages, tools=None, tool_choice=None) -> ChatResponse:
        self.calls.append({"messages": list(messages), "tools": tools, "tool_choice": tool_choice})
        if tools and tool_choice is None:
            return tool_response("rule R205", tool_id=f"toolu_{len(self.calls)}")
        return text_response(self.final_text) if self.final_text else ChatResponse(stop_reason="end_turn")

    async def stream_message(self, system, messages, tools=None, tool_choice=None):
        self.calls.append(
            {"messages": list(messages), "tools": tools, "tool_choice": tool_choice, "stream": True}
        )
        for word in (self.final_text or "").split(" "):
            if word:
                yield word + " "


class BlockingBackend:
    """Never returns; used to test cancellation."""

    def __init__(self):
        self.calls = 0
        self.started = asyncio.Event()

    async def create_message(self, system, messages, tools=None, tool_choice=None) -> ChatResponse:
        self.calls += 1
        self.started.set()
        await asyncio.Event().wait()


def text_response(text: str, stop_reason: str = "end_turn") -> ChatResponse:
    return ChatResponse(stop_reason=stop_reason, content=[{"type": "text", "text": text}])


def tool_response(*queries: str, tool_id: str = "toolu_1", name: str = "search_manual") -> ChatResponse:
    content = [
        {
            "type": "tool_use",
            "id": f"{tool_id}_{i}" if len(queries) > 1 else tool_id,
            "name": name,
            "input": {"query": q},
        }
        for i, q in enumerate(queries)
    ]
    return ChatResponse(stop_reason="tool_use", content=content)


def make_record(
    content: str,
    embedding: List[float],
    source: str = "manual.pdf",
    page: int = 1,
    chunk_index: int = 0,
    **extra,
) -> VectorRecord:
    return VectorRecord(
        content=content,
        embedding=embedding,
        metadata=ChunkMetadata(
            source=source,
            page=page,
            chunk_index=chunk_index,
            length=len(content),
            **extra,
        ),
    )


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "vector_store.json"


@pytest.fixture
async def store(store_path):
    store = VectorStore(path=store_path)
    await store.open()
    return store


@pytest.fixture
def selector():
    return ContextSelector(min_score=0.3, max_context_tokens=3000)
