"""Quart application exposing the manual question-answering API."""
import json
import time
from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError
from quart import Quart, jsonify, make_response, request

from manual_qa import config
from manual_qa.errors import (
    ConfigurationError,
    DimensionMismatchError,
    StorageError,
    StoreBusyError,
    UnresolvedAnswerError,
)
from manual_qa.log_config import configure_logging
from manual_qa.rag.models import ConversationTurn
from manual_qa.rag.service import REASON_NOT_INDEXED, RAGService

logger = structlog.get_logger()

_history_adapter = TypeAdapter(list[ConversationTurn])


def _error(status: int, error: str, message: str, **extra):
    body = {"error": error, "message": message}
    body.update(extra)
    return jsonify(body), status


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _classify_error(e: Exception) -> tuple[int, str, str]:
    """Map an exception to (status, error title, user-facing message)."""
    if isinstance(e, ConfigurationError):
        return 500, "Configuration Error", str(e)
    if isinstance(e, StoreBusyError):
        return 503, "Service Unavailable", "The manual is being re-indexed. Please try again shortly."
    if isinstance(e, StorageError):
        return 503, "Service Unavailable", "The manual index could not be loaded."
    if isinstance(e, DimensionMismatchError):
        return 500, "Index Configuration Error", str(e)
    if isinstance(e, UnresolvedAnswerError):
        return 500, "Unresolved Answer", "The assistant could not produce an answer. Please try again."
    if isinstance(e, httpx.HTTPError):
        return 500, "Backend Error", "A model service request failed. Please try again."
    return 500, "Internal Server Error", "An error occurred processing your request. Please try again."


def create_app(service: Optional[RAGService] = None) -> Quart:
    """Build the Quart app around a RAG service.

    Args:
        service: RAG service to use (a default one is built from config)
    """
    app = Quart(__name__)
    rag_service = service or RAGService()
    app.config["RAG_SERVICE"] = rag_service

    @app.before_serving
    async def startup():
        try:
            await rag_service.open()
        except StorageError as e:
            logger.error("vector_store_open_failed", error=str(e))

    @app.after_serving
    async def shutdown():
        rag_service.close()

    @app.route("/chat", methods=["POST"])
    async def chat():
        """Answer a question about the manual.

        Expects JSON body:
        {
            "question": "question text",        // required, max 1000 chars
            "conversationHistory": [...],       // optional prior turns
            "stream": false                     // optional, SSE when true
        }

        Returns JSON:
        {
            "question": "...",
            "answer": "...",
            "sources": [{"source": "...", "page": 1, "score": 0.8}],
            "metadata": {"contextsUsed": 3, "tokensEstimate": 900, "durationMs": 1200}
        }
        """
        data = await request.get_json(silent=True)

        if not isinstance(data, dict):
            return _error(400, "Bad Request", "Request body must be a JSON object")

        question = data.get("question")
        if not isinstance(question, str):
            return _error(400, "Bad Request", "Field 'question' is required and must be a string")

        if not question.strip():
            return _error(400, "Bad Request", "Question cannot be empty")

        if len(question) > config.MAX_QUESTION_LENGTH:
            return _error(
                400,
                "Bad Request",
                f"Question is too long (max {config.MAX_QUESTION_LENGTH} characters)",
            )

        try:
            history = _history_adapter.validate_python(data.get("conversationHistory") or [])
        except ValidationError as e:
            logger.warning("invalid_conversation_history", error=str(e))
            return _error(
                400,
                "Bad Request",
                "Field 'conversationHistory' must be a list of {role, content} messages",
            )

        stream = bool(data.get("stream", False))

        logger.info(
            "chat_request_received",
            question_length=len(question),
            history=len(history),
            stream=stream,
        )

        start = time.monotonic()

        if stream:
            return await _stream_chat(rag_service, question, history, start)

        try:
            result = await rag_service.answer(question, history)
        except Exception as e:
            status, title, message = _classify_error(e)
            logger.error("chat_endpoint_error", error=str(e), error_type=type(e).__name__)
            return _error(status, title, message)

        duration_ms = int((time.monotonic() - start) * 1000)

        if not result.found:
            status = 503 if result.reason == REASON_NOT_INDEXED else 404
            logger.info("chat_no_answer", reason=result.reason, status=status)
            return _error(
                status,
                "Service Unavailable" if status == 503 else "Not Found",
                "Could not find relevant information in the manual",
                question=question,
                answer=result.answer,
                sources=[],
            )

        logger.info("chat_response_sent", duration_ms=duration_ms, sources=len(result.sources))

        return jsonify(
            {
                "question": question,
                "answer": result.answer,
                "sources": result.sources_as_dicts(),
                "metadata": {
                    "contextsUsed": result.contexts_used,
                    "tokensEstimate": result.tokens_estimate,
                    "durationMs": duration_ms,
                },
            }
        )

    @app.route("/health")
    async def health():
        """Report vector store presence and model configuration."""
        try:
            stats = rag_service.vector_store.stats()
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            return jsonify({"status": "unhealthy", "error": str(e)}), 503

        model_info = getattr(rag_service.backend, "model_info", None)

        return jsonify(
            {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "vectorStore": {
                    "exists": stats["exists"],
                    "documents": stats["count"],
                    "state": stats["state"],
                },
                "rag": rag_service.get_config(),
                "model": model_info() if callable(model_info) else None,
            }
        )

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


async def _stream_chat(rag_service: RAGService, question: str, history, start: float):
    """Resolve the answer, then send it as server-sent events.

    Frames: one ``metadata`` frame with sources, ``content`` frames with
    answer text, and a final ``done`` frame. Failures become an ``error``
    frame.
    """
    try:
        result = await rag_service.stream_answer(question, history)
    except Exception as e:
        status, title, message = _classify_error(e)
        logger.error("chat_stream_setup_error", error=str(e), error_type=type(e).__name__)
        return _error(status, title, message)

    async def events():
        try:
            yield _sse(
                {
                    "type": "metadata",
                    "sources": [s.to_dict() for s in result.sources],
                    "contextsUsed": result.contexts_used,
                    "tokensEstimate": result.tokens_estimate,
                }
            )
            async for fragment in result.fragments:
                yield _sse({"type": "content", "content": fragment})

            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info("chat_stream_completed", duration_ms=duration_ms)
            yield _sse({"type": "done", "metadata": {"durationMs": duration_ms}})

        except Exception as e:
            logger.error("chat_stream_error", error=str(e), error_type=type(e).__name__)
            yield _sse({"type": "error", "error": _classify_error(e)[2]})

    response = await make_response(
        events(),
        200,
        {
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
    response.timeout = None
    return response


def main() -> None:
    """Run the development server."""
    configure_logging()
    create_app().run(host="0.0.0.0", port=5000, debug=False)


if __name__ == "__main__":
    main()
