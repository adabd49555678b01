"""Tool registry for model-driven tool calling.

Tools declare a Pydantic input model; the registry renders them as tool
schemas for the chat model and executes requested calls, turning every
failure into an error result the model can react to.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, ValidationError

from manual_qa import config
from manual_qa.rag.models import RetrievedChunk

logger = structlog.get_logger()


@dataclass
class ToolOutput:
    """What a tool handler returns: text for the model plus the chunks behind it."""

    text: str
    chunks: List[RetrievedChunk] = field(default_factory=list)


@dataclass
class Tool:
    """Tool definition with input schema and handler."""
    name: str
    description: str
    input_model: type[BaseModel]
    handler: Callable[[BaseModel], Awaitable[ToolOutput]]

    def schema(self) -> Dict[str, Any]:
        """Render the tool in the chat model's tool-definition format."""
        input_schema = self.input_model.model_json_schema()
        input_schema.pop("title", None)
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": input_schema,
        }


@dataclass
class ToolResult:
    """Result of a tool execution."""
    success: bool
    content: str
    chunks: List[RetrievedChunk] = field(default_factory=list)
    error: Optional[str] = None


class ToolRegistry:
    """Registry for available tools."""

    def __init__(self, timeout: float = None):
        self.tools: Dict[str, Tool] = {}
        self._timeout = timeout or config.TOOL_TIMEOUT

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self.tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get_tool(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self.tools.get(name)

    def list_tools(self) -> list[Tool]:
        """List all registered tools."""
        return list(self.tools.values())

    def schemas(self) -> List[Dict[str, Any]]:
        """Tool definitions to attach to a chat request."""
        return [tool.schema() for tool in self.tools.values()]

    async def execute_tool(self, tool_name: str, args: Dict[str, Any]) -> ToolResult:
        """Execute a tool with the given arguments.

        Never raises for tool failures: unknown tools, invalid input,
        timeouts and handler exceptions all come back as an unsuccessful
        ToolResult. Cancellation still propagates.

        Args:
            tool_name: Name of the tool to execute
            args: Arguments to pass to the tool

        Returns:
            ToolResult with success status and content or error
        """
        tool = self.get_tool(tool_name)

        if not tool:
            logger.error("tool_not_found", tool_name=tool_name)
            return _failure(f"Unknown tool: {tool_name}")

        try:
            validated_input = tool.input_model(**(args or {}))
        except ValidationError as e:
            logger.warning("tool_input_invalid", tool_name=tool_name, error=str(e))
            return _failure(f"Invalid input for {tool_name}: {e}")

        try:
            async with asyncio.timeout(self._timeout):
                output = await tool.handler(validated_input)

        except TimeoutError:
            logger.error("tool_timeout", tool_name=tool_name, timeout=self._timeout)
            return _failure(f"Tool execution timeout after {self._timeout}s")

        except Exception as e:
            logger.exception("tool_execution_failed", tool_name=tool_name, error=str(e))
            return _failure(f"Tool execution failed: {e}")

        logger.info(
            "tool_executed",
            tool_name=tool_name,
            success=True,
            chunks=len(output.chunks),
            result_preview=output.text[:100],
        )

        return ToolResult(success=True, content=output.text, chunks=list(output.chunks))


def _failure(message: str) -> ToolResult:
    return ToolResult(success=False, content=f"Error: {message}", error=message)
