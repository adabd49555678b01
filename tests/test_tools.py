"""Tests for the tool registry and the search_manual tool."""
import asyncio

import pytest
from pydantic import BaseModel

from conftest import FakeEmbedder, make_record
from manual_qa.rag.retriever import Retriever
from manual_qa.tools import Tool, ToolOutput, ToolRegistry, build_search_manual_tool


class EchoInput(BaseModel):
    message: str


async def echo(input_data: EchoInput) -> ToolOutput:
    return ToolOutput(text=input_data.message)


@pytest.fixture
def registry():
    registry = ToolRegistry(timeout=0.05)
    registry.register(Tool(name="echo", description="Echo a message", input_model=EchoInput, handler=echo))
    return registry


class TestToolRegistry:
    def test_schemas(self, registry):
        schema = registry.schemas()[0]

        assert schema["name"] == "echo"
        assert schema["description"] == "Echo a message"
        assert schema["input_schema"]["type"] == "object"
        assert schema["input_schema"]["required"] == ["message"]
        assert "title" not in schema["input_schema"]

    def test_lookup(self, registry):
        assert registry.get_tool("echo").name == "echo"
        assert registry.get_tool("missing") is None
        assert [t.name for t in registry.list_tools()] == ["echo"]

    async def test_success(self, registry):
        result = await registry.execute_tool("echo", {"message": "hi"})

        assert result.success is True
        assert result.content == "hi"
        assert result.error is None

    async def test_unknown_tool(self, registry):
        result = await registry.execute_tool("nope", {})

        assert result.success is False
        assert result.content == "Error: Unknown tool: nope"

    async def test_invalid_input(self, registry):
        result = await registry.execute_tool("echo", {"wrong": 1})

        assert result.success is False
        assert result.content.startswith("Error: Invalid input for echo")

    async def test_handler_exception(self, registry):
        async def boom(input_data: EchoInput) -> ToolOutput:
            raise ValueError("bad things")

        registry.register(Tool(name="boom", description="", input_model=EchoInput, handler=boom))

        result = await registry.execute_tool("boom", {"message": "x"})

        assert result.success is False
        assert "bad things" in result.error

    async def test_timeout(self, registry):
        async def slow(input_data: EchoInput) -> ToolOutput:
            await asyncio.sleep(1)
            return ToolOutput(text="late")

        registry.register(Tool(name="slow", description="", input_model=EchoInput, handler=slow))

        result = await registry.execute_tool("slow", {"message": "x"})

        assert result.success is False
        assert "timeout" in result.error


class TestSearchManualTool:
    @pytest.fixture
    async def tool(self, store, selector):
        store.add_all([
            make_record("R205: robots must pass inspection.", [0.0, 1.0, 0.0], page=42, chunk_index=7),
            make_record("Inspection steps, see rule R205.", [1.0, 0.0, 0.0], page=5, chunk_index=1),
        ])
        embedder = FakeEmbedder({"rule R205": [0.0, 1.0, 0.0], "unrelated": [0.0, 0.0, 1.0]})
        return build_search_manual_tool(Retriever(store, embedder), selector, top_k=5)

    async def test_schema(self, tool):
        schema = tool.schema()

        assert schema["name"] == "search_manual"
        assert "query" in schema["input_schema"]["properties"]

    async def test_returns_relevant_results_only(self, tool):
        output = await tool.handler(tool.input_model(query="rule R205"))

        assert output.text.startswith('Additional context retrieved for "rule R205":\n\n')
        assert "[Result 1 - manual.pdf, Page 42, Relevance: 1.00]" in output.text
        assert "Page 5" not in output.text
        assert [c.page for c in output.chunks] == [42]

    async def test_low_scores(self, tool):
        output = await tool.handler(tool.input_model(query="unrelated"))

        assert output.text.startswith('No highly relevant information found for query: "unrelated"')
        assert output.chunks == []

    async def test_empty_index(self, store, selector):
        tool = build_search_manual_tool(Retriever(store, FakeEmbedder()), selector)

        output = await tool.handler(tool.input_model(query="anything"))

        assert output.text.startswith('No information found for query: "anything"')

    async def test_blank_query_rejected_by_registry(self, tool):
        registry = ToolRegistry()
        registry.register(tool)

        result = await registry.execute_tool("search_manual", {"query": ""})

        assert result.success is False


class TestRetriever:
    async def test_zero_top_k(self, store):
        store.add_all([make_record("text", [1.0, 0.0, 0.0])])
        retriever = Retriever(store, FakeEmbedder(default=[1.0, 0.0, 0.0]), top_k=0)

        assert retriever.top_k == 0
        assert await retriever.retrieve("anything") == []
        assert len(await retriever.retrieve("anything", top_k=1)) == 1

    async def test_blank_query(self, store):
        embedder = FakeEmbedder()

        assert await Retriever(store, embedder).retrieve("   ") == []
        assert embedder.calls == []

    async def test_search_tool_zero_top_k(self, store, selector):
        store.add_all([make_record("text", [1.0, 0.0, 0.0])])
        tool = build_search_manual_tool(
            Retriever(store, FakeEmbedder(default=[1.0, 0.0, 0.0])), selector, top_k=0
        )

        output = await tool.handler(tool.input_model(query="anything"))

        assert output.text.startswith('No information found for query: "anything"')
