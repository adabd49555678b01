"""Bounded tool-calling loop between the chat model and the manual search tool.

The model is called with the tool schemas attached. Whenever it asks for
tools, every requested call is executed in order, the results are appended
to the conversation and the model is called again. After ``max_iterations``
tool rounds one last call is made with tool use disabled
(``tool_choice: none``) so the model has to answer with whatever context it
has gathered. A run therefore makes at most ``max_iterations + 1`` model calls.

The tool schemas stay declared on the final call because the conversation
already holds tool_use and tool_result blocks that refer to them.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import structlog

from manual_qa import config
from manual_qa.errors import EmptyResponseError, UnresolvedAnswerError
from manual_qa.llm_client import ChatResponse
from manual_qa.rag.models import RetrievedChunk
from manual_qa.tools.registry import ToolRegistry

logger = structlog.get_logger()

NO_TOOL_CHOICE = {"type": "none"}


class ChatBackend(Protocol):
    async def create_message(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Dict[str, Any]] = None,
    ) -> ChatResponse:
        ...

    def stream_message(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        ...


class LoopState(str, enum.Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    ITERATION_LIMIT = "iteration_limit"
    DONE = "done"


@dataclass
class ToolCallRecord:
    """One executed tool call, kept for observability."""

    name: str
    input: Dict[str, Any]
    success: bool
    error: Optional[str] = None
    chunks: int = 0


@dataclass
class OrchestrationResult:
    """Final answer plus everything retrieved by tools along the way.

    When the final answer is streamed, ``text`` is empty and
    ``final_stream`` yields the answer; it has not been requested yet.
    """

    text: str
    chunks: List[RetrievedChunk] = field(default_factory=list)
    iterations: int = 0
    llm_calls: int = 0
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    forced_final: bool = False
    final_stream: Optional[AsyncIterator[str]] = None


class ToolCallingOrchestrator:
    """Drives the model/tool conversation for a single question."""

    def __init__(
        self,
        backend: ChatBackend,
        registry: ToolRegistry,
        max_iterations: int = None,
    ):
        self.backend = backend
        self.registry = registry
        self.max_iterations = (
            config.RAG_MAX_TOOL_ITERATIONS if max_iterations is None else max_iterations
        )

    async def run(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        stream_final: bool = False,
    ) -> OrchestrationResult:
        """Run the loop until the model answers in text.

        Args:
            system_prompt: System prompt for every call
            messages: Initial conversation (history plus the user prompt).
                The list is copied, the caller's list is not modified.
            stream_final: Deliver the forced final answer through the
                backend's streaming call instead of waiting for it

        Returns:
            OrchestrationResult with the answer and tool-retrieved chunks

        Raises:
            EmptyResponseError: If the model returns neither text nor tool calls
            UnresolvedAnswerError: If the final no-tool call returns no text
        """
        conversation = list(messages)
        tools = self.registry.schemas()
        result = OrchestrationResult(text="")
        state = LoopState.AWAITING_MODEL if self.max_iterations > 0 else LoopState.ITERATION_LIMIT

        while state is not LoopState.DONE:
            if state is LoopState.AWAITING_MODEL:
                logger.info(
                    "tool_iteration",
                    iteration=result.iterations + 1,
                    max_iterations=self.max_iterations,
                )
                response = await self.backend.create_message(
                    system=system_prompt, messages=conversation, tools=tools
                )
                result.llm_calls += 1

                if response.tool_calls:
                    state = LoopState.EXECUTING_TOOLS
                elif response.text:
                    result.text = response.text
                    state = LoopState.DONE
                else:
                    logger.error(
                        "empty_model_response",
                        stop_reason=response.stop_reason,
                        content_blocks=len(response.content),
                    )
                    raise EmptyResponseError(
                        "Model response contained no text and no tool use"
                    )

            elif state is LoopState.EXECUTING_TOOLS:
                conversation.append({"role": "assistant", "content": response.content})
                conversation.append(
                    {"role": "user", "content": await self._execute_tools(response, result)}
                )
                result.iterations += 1

                if result.iterations >= self.max_iterations:
                    state = LoopState.ITERATION_LIMIT
                else:
                    state = LoopState.AWAITING_MODEL

            elif state is LoopState.ITERATION_LIMIT:
                logger.warning(
                    "max_tool_iterations_reached",
                    max_iterations=self.max_iterations,
                    streamed=stream_final,
                )
                result.llm_calls += 1
                result.forced_final = True

                if stream_final:
                    result.final_stream = self._stream_final(system_prompt, conversation, tools)
                else:
                    final = await self.backend.create_message(
                        system=system_prompt,
                        messages=conversation,
                        tools=tools,
                        tool_choice=NO_TOOL_CHOICE,
                    )
                    if not final.text:
                        raise UnresolvedAnswerError(
                            "Failed to get a text response after max iterations and final attempt"
                        )
                    result.text = final.text
                state = LoopState.DONE

        logger.info(
            "orchestration_completed",
            iterations=result.iterations,
            llm_calls=result.llm_calls,
            tool_chunks=len(result.chunks),
            forced_final=result.forced_final,
            streamed=result.final_stream is not None,
            answer_length=len(result.text),
        )
        return result

    async def _stream_final(
        self,
        system_prompt: str,
        conversation: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> AsyncIterator[str]:
        produced = False
        async for text in self.backend.stream_message(
            system=system_prompt,
            messages=conversation,
            tools=tools,
            tool_choice=NO_TOOL_CHOICE,
        ):
            if text:
                produced = True
                yield text

        if not produced:
            raise UnresolvedAnswerError(
                "Failed to get a text response after max iterations and final attempt"
            )

    async def _execute_tools(
        self, response: ChatResponse, result: OrchestrationResult
    ) -> List[Dict[str, Any]]:
        """Run each requested tool in order and build the tool_result blocks."""
        blocks = []

        for call in response.tool_calls:
            logger.info("tool_call_detected", tool=call.name, args=call.input)

            outcome = await self.registry.execute_tool(call.name, call.input)

            block = {
                "type": "tool_result",
                "tool_use_id": call.id,
                "content": outcome.content,
            }
            if not outcome.success:
                block["is_error"] = True
            blocks.append(block)

            result.chunks.extend(outcome.chunks)
            result.tool_calls.append(
                ToolCallRecord(
                    name=call.name,
                    input=dict(call.input),
                    success=outcome.success,
                    error=outcome.error,
                    chunks=len(outcome.chunks),
                )
            )

        return blocks
