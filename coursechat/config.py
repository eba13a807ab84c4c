"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "courses.sqlite")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "1024"))
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))

# Chunking (character-based, applied to unit plain text)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1500"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
CHUNK_THRESHOLD = int(os.getenv("CHUNK_THRESHOLD", "1500"))  # units at or below stay whole
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "4"))

# Timeouts (seconds)
EMBED_TIMEOUT = float(os.getenv("EMBED_TIMEOUT", "60.0"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60.0"))
DB_TIMEOUT = float(os.getenv("DB_TIMEOUT", "10.0"))
INGEST_TIMEOUT = float(os.getenv("INGEST_TIMEOUT", "600.0"))
SEARCH_TIMEOUT = float(os.getenv("SEARCH_TIMEOUT", "30.0"))

# Retrieval
RETRIEVAL_LIMIT = int(os.getenv("RETRIEVAL_LIMIT", "5"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "6000"))

# Uploads
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
ALLOWED_UPLOAD_EXTENSIONS = (".md", ".txt")
DEFAULT_TECHNOLOGY = os.getenv("DEFAULT_TECHNOLOGY", "General")

# Chat persona
ASSISTANT_NAME = os.getenv("ASSISTANT_NAME", "TeknoTassen")
DEFAULT_ROLE = os.getenv("DEFAULT_ROLE", "healthcare worker")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
