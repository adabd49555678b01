"""Tools the chat model can call while answering."""
from manual_qa.tools.registry import Tool, ToolOutput, ToolRegistry, ToolResult
from manual_qa.tools.search_manual import build_search_manual_tool

__all__ = ["Tool", "ToolOutput", "ToolRegistry", "ToolResult", "build_search_manual_tool"]
