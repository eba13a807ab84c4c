"""Shared pytest fixtures.

Tests run against a temporary SQLite file, an in-memory FAISS index and a
fake Ollama client, so no model server is needed.
"""
import pytest

from coursechat.db import CourseDatabase
from coursechat.rag.embeddings import EmbeddingGateway
from coursechat.rag.ingest import build_metadata
from coursechat.services import wire_services
from tests.fakes import DIMENSION, FakeOllamaClient

SAMPLE_COURSE = """[//]: # ({"level": "beginner", "duration": 30})
# Night Supervision

## Getting Started
### Welcome
Welcome to the **night supervision** course.
This course explains sensors and cameras.
https://cdn.example.com/audio/welcome.mp3

### Equipment
- Motion sensor in the bedroom
- Door sensor on the front door
![Sensor layout](https://cdn.example.com/img/layout.png)

## Daily Routines
### Evening Checks
Check that every sensor is online before the evening shift.

### Alarm Handling
When an alarm goes off, follow the [alarm guide](https://example.com/guide).
1. Confirm the alarm
2. Call the resident
"""


@pytest.fixture
def fake_client():
    return FakeOllamaClient()


@pytest.fixture
def database(tmp_path):
    db = CourseDatabase(tmp_path / "courses.sqlite", timeout=1.0)
    db.init_schema()
    return db


@pytest.fixture
def embedder(fake_client):
    return EmbeddingGateway(fake_client, model="fake-embed", dimension=DIMENSION, timeout=5.0)


@pytest.fixture
def services(database, fake_client, embedder):
    return wire_services(database, fake_client, embedder)


@pytest.fixture
def sample_course():
    return SAMPLE_COURSE


@pytest.fixture
def metadata():
    return build_metadata(
        title="Night Supervision",
        technology="Nattugla",
        tags="night, sensors",
        uploaded_by="user-1",
    )
