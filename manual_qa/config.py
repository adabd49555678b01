"""Application configuration with sensible defaults."""
import os
from pathlib import Path

from dotenv import load_dotenv

# Paths
BASE_DIR = Path(__file__).parent.parent

load_dotenv(BASE_DIR / ".env")

DATA_DIR = BASE_DIR / "data"
MANUAL_DIR = Path(os.getenv("MANUAL_DIR", str(BASE_DIR / "manual")))
MANUAL_URL = os.getenv("MANUAL_URL", "https://ftc-resources.firstinspires.org/ftc/game/manual")
VECTOR_STORE_PATH = Path(os.getenv("VECTOR_STORE_PATH", str(DATA_DIR / "vector_store.json")))

# Embedding provider (Ollama)
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-minilm:latest")
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "10"))

# LLM backend (Anthropic Messages API)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
ANTHROPIC_VERSION = os.getenv("ANTHROPIC_VERSION", "2023-06-01")
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-3-5-sonnet-20241022")
CLAUDE_MAX_TOKENS = int(os.getenv("CLAUDE_MAX_TOKENS", "4096"))
CLAUDE_TEMPERATURE = float(os.getenv("CLAUDE_TEMPERATURE", "1.0"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "120.0"))

# RAG parameters (character-based token estimates, ~4 chars per token)
RAG_TOP_K = int(os.getenv("RAG_TOP_K", "5"))
RAG_MIN_SCORE = float(os.getenv("RAG_MIN_SCORE", "0.3"))
RAG_MAX_CONTEXT_TOKENS = int(os.getenv("RAG_MAX_CONTEXT_TOKENS", "3000"))
RAG_MAX_TOOL_ITERATIONS = int(os.getenv("RAG_MAX_TOOL_ITERATIONS", "3"))
TOOL_SEARCH_TOP_K = int(os.getenv("TOOL_SEARCH_TOP_K", "5"))
TOOL_TIMEOUT = float(os.getenv("TOOL_TIMEOUT", "30.0"))

# Chunking
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))

# API
MAX_QUESTION_LENGTH = int(os.getenv("MAX_QUESTION_LENGTH", "1000"))
STREAM_FRAGMENT_SIZE = int(os.getenv("STREAM_FRAGMENT_SIZE", "50"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
