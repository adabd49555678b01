"""HTTP clients for the embedding provider (Ollama) and chat model (Claude)."""
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from manual_qa import config
from manual_qa.errors import ConfigurationError

logger = structlog.get_logger()


class OllamaClient:
    """Async client for the Ollama embeddings API."""

    def __init__(self, base_url: str = None, timeout: float = 60.0):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout

    async def embeddings(
        self,
        prompt: str,
        model: str = None,
    ) -> Dict:
        """Generate embeddings for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Response dict with 'embedding' list

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.EMBEDDING_MODEL

        payload = {
            "model": model,
            "prompt": prompt,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    prompt_length=len(prompt),
                )

                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json=payload,
                )
                response.raise_for_status()

                data = response.json()

                logger.debug(
                    "ollama_embedding_response",
                    model=model,
                    dimension=len(data.get("embedding", [])),
                )

                return data

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: Dict[str, Any]


@dataclass
class ChatResponse:
    """Normalized response from the chat model.

    ``content`` keeps the raw content blocks so the assistant turn can be
    echoed back verbatim alongside tool results.
    """

    stop_reason: Optional[str]
    content: List[Dict[str, Any]] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)
    model: Optional[str] = None

    @property
    def text(self) -> str:
        return "".join(b.get("text", "") for b in self.content if b.get("type") == "text")

    @property
    def tool_calls(self) -> List[ToolCall]:
        return [
            ToolCall(id=b["id"], name=b["name"], input=b.get("input") or {})
            for b in self.content
            if b.get("type") == "tool_use"
        ]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ChatResponse":
        return cls(
            stop_reason=data.get("stop_reason"),
            content=list(data.get("content") or []),
            usage=dict(data.get("usage") or {}),
            model=data.get("model"),
        )


class ClaudeClient:
    """Async client for the Anthropic Messages API with tool support."""

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        model: str = None,
        max_tokens: int = None,
        temperature: float = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or config.ANTHROPIC_API_KEY
        self.base_url = base_url or config.ANTHROPIC_BASE_URL
        self.model = model or config.CLAUDE_MODEL
        self.max_tokens = max_tokens or config.CLAUDE_MAX_TOKENS
        self.temperature = config.CLAUDE_TEMPERATURE if temperature is None else temperature
        self.timeout = timeout or config.LLM_TIMEOUT
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY not found in environment variables. "
                "Please add it to your .env file."
            )
        return {
            "x-api-key": self.api_key,
            "anthropic-version": config.ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _payload(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system,
            "messages": messages,
        }
        if tools:
            payload["tools"] = tools
            if tool_choice:
                payload["tool_choice"] = tool_choice
        return payload

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def create_message(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Dict[str, Any]] = None,
    ) -> ChatResponse:
        """Send a non-streaming Messages API request.

        Args:
            system: System prompt
            messages: Conversation turns ({'role', 'content'})
            tools: Tool schemas
            tool_choice: e.g. {"type": "none"} to keep tools declared but
                forbid calling them

        Returns:
            ChatResponse with stop reason and content blocks

        Raises:
            ConfigurationError: If no API key is configured
            httpx.HTTPError: On API errors
        """
        headers = self._headers()
        payload = self._payload(system, messages, tools, tool_choice)

        try:
            async with self._client() as client:
                logger.info(
                    "claude_request",
                    model=self.model,
                    message_count=len(messages),
                    tools=[t["name"] for t in tools or []],
                    tool_choice=(tool_choice or {}).get("type"),
                )

                response = await client.post(
                    f"{self.base_url}/v1/messages",
                    headers=headers,
                    json=payload,
                )
                response.raise_for_status()

                result = ChatResponse.from_api(response.json())

                logger.info(
                    "claude_response",
                    model=result.model,
                    stop_reason=result.stop_reason,
                    content_blocks=len(result.content),
                    input_tokens=result.usage.get("input_tokens"),
                    output_tokens=result.usage.get("output_tokens"),
                )

                return result

        except httpx.ConnectError as e:
            logger.error("claude_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "claude_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def stream_message(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        """Send a streaming Messages API request and yield answer text deltas.

        Only ``text_delta`` content is yielded; other server events are used
        for logging or ignored.

        Raises:
            ConfigurationError: If no API key is configured
            httpx.HTTPError: On API errors
            RuntimeError: If the stream reports an error event
        """
        headers = self._headers()
        payload = self._payload(system, messages, tools, tool_choice)
        payload["stream"] = True

        stop_reason = None
        output_tokens = None
        text_length = 0

        try:
            async with self._client() as client:
                logger.info(
                    "claude_stream_request",
                    model=self.model,
                    message_count=len(messages),
                    tools=[t["name"] for t in tools or []],
                    tool_choice=(tool_choice or {}).get("type"),
                )

                async with client.stream(
                    "POST",
                    f"{self.base_url}/v1/messages",
                    headers=headers,
                    json=payload,
                ) as response:
                    response.raise_for_status()

                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue

                        try:
                            event = json.loads(line.removeprefix("data:").strip())
                        except json.JSONDecodeError:
                            logger.warning("claude_stream_bad_event", line=line[:100])
                            continue

                        kind = event.get("type")
                        if kind == "content_block_delta":
                            delta = event.get("delta") or {}
                            if delta.get("type") == "text_delta" and delta.get("text"):
                                text_length += len(delta["text"])
                                yield delta["text"]
                        elif kind == "message_delta":
                            stop_reason = (event.get("delta") or {}).get("stop_reason")
                            output_tokens = (event.get("usage") or {}).get("output_tokens")
                        elif kind == "error":
                            error = event.get("error") or {}
                            logger.error("claude_stream_error_event", error=error)
                            raise RuntimeError(
                                f"Claude stream error: {error.get('message', 'unknown error')}"
                            )
                        elif kind == "message_stop":
                            break

            logger.info(
                "claude_stream_completed",
                model=self.model,
                stop_reason=stop_reason,
                output_tokens=output_tokens,
                text_length=text_length,
            )

        except httpx.ConnectError as e:
            logger.error("claude_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "claude_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    def model_info(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "maxTokens": self.max_tokens,
            "temperature": self.temperature,
        }
