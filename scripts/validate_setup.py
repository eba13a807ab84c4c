#!/usr/bin/env python
"""Check that the course chat service can start.

Runs each check in order and prints a pass/fail line per item:
installed libraries, configuration, Ollama models, embedding dimension
and the course database.

Usage:
    python scripts/validate_setup.py
"""
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx

from coursechat import config
from coursechat.db import CourseDatabase
from coursechat.errors import EmbeddingError, StorageError
from coursechat.llm_client import OllamaClient
from coursechat.rag.embeddings import EmbeddingGateway

OK = "\033[92m✓\033[0m"
FAIL = "\033[91m✗\033[0m"
NOTE = "\033[94mℹ\033[0m"

REQUIRED_MODULES = {
    "quart": "web framework",
    "hypercorn": "ASGI server",
    "httpx": "HTTP client",
    "faiss": "vector index",
    "numpy": "vector math",
    "pydantic": "metadata validation",
    "structlog": "structured logging",
}


def heading(title):
    print(f"\n== {title} ==")


def check_modules(errors):
    heading("Libraries")
    for name, purpose in REQUIRED_MODULES.items():
        try:
            __import__(name)
        except ImportError as e:
            print(f"{FAIL} {name} ({purpose}): {e}")
            errors.append(f"missing library {name}")
        else:
            print(f"{OK} {name} ({purpose})")


def show_config():
    heading("Configuration")
    for label, value in (
        ("Ollama URL", config.OLLAMA_BASE_URL),
        ("Chat model", config.CHAT_MODEL),
        ("Embedding model", f"{config.EMBEDDING_MODEL} (dim {config.EMBEDDING_DIMENSION})"),
        ("Chunking", f"{config.CHUNK_SIZE} chars, overlap {config.CHUNK_OVERLAP}, "
                     f"threshold {config.CHUNK_THRESHOLD}"),
        ("Database", config.DB_PATH),
    ):
        print(f"{NOTE} {label}: {value}")


async def check_models(client, errors):
    heading("Ollama")
    try:
        installed = set(await client.list_models())
    except httpx.HTTPError as e:
        print(f"{FAIL} Ollama unreachable at {config.OLLAMA_BASE_URL}: {e}")
        print(f"{NOTE} Start it with: ollama serve")
        errors.append("ollama unreachable")
        return False

    print(f"{OK} Ollama reachable ({len(installed)} models)")
    for model in (config.CHAT_MODEL, config.EMBEDDING_MODEL):
        if model in installed:
            print(f"{OK} {model}")
        else:
            print(f"{FAIL} {model} not installed; run: ollama pull {model}")
            errors.append(f"missing model {model}")
    return True


async def check_embedding(client, errors):
    heading("Embedding")
    try:
        vector = await EmbeddingGateway(client).embed_one("setup check")
    except EmbeddingError as e:
        print(f"{FAIL} {e.message}")
        print(f"{NOTE} EMBEDDING_DIMENSION must match the model's output size")
        errors.append("embedding check failed")
    else:
        print(f"{OK} {len(vector)}-dimensional vectors")


def check_database(errors):
    heading("Database")
    try:
        database = CourseDatabase()
        database.init_schema()
        courses = database.list_courses()
        chunk_count = database.get_chunk_count()
    except StorageError as e:
        print(f"{FAIL} {e.message}")
        errors.append("database unavailable")
    else:
        print(f"{OK} {database.db_path}: {len(courses)} courses, {chunk_count} chunks")


async def main():
    errors = []
    if sys.version_info < (3, 10):
        errors.append("python 3.10+ required")

    check_modules(errors)
    show_config()

    client = OllamaClient()
    if await check_models(client, errors):
        await check_embedding(client, errors)
    check_database(errors)
    return errors


if __name__ == "__main__":
    problems = asyncio.run(main())
    heading("Summary")
    if problems:
        for problem in problems:
            print(f"{FAIL} {problem}")
        sys.exit(1)
    print(f"{OK} all checks passed")
