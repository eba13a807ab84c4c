"""HTTP tests for the Quart application."""
import io

import pytest
from werkzeug.datastructures import FileStorage

from coursechat.main import create_app


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
def client(app):
    return app.test_client()


def course_file(text, filename="night-supervision.md"):
    return FileStorage(io.BytesIO(text.encode("utf-8")), filename=filename)


async def upload(client, text, filename="night-supervision.md", **form):
    return await client.post(
        "/api/courses/upload",
        files={"file": course_file(text, filename)},
        form=form,
        headers={"X-User-Id": "user-7"},
    )


async def test_upload_course(client, services, sample_course):
    response = await upload(client, sample_course, title="Night Supervision", technology="Nattugla", tags="night")

    assert response.status_code == 201
    data = await response.get_json()
    assert data["success"] is True
    assert data["chunk_count"] == 4
    assert data["nano_count"] == 2
    assert data["unit_count"] == 4
    assert data["asset_count"] == 2

    course = services.database.get_course(data["course_id"])
    assert course.uploaded_by == "user-7"
    assert course.tags == ["night"]


async def test_upload_title_defaults_to_file_name(client, services, sample_course):
    response = await upload(client, sample_course, filename="alarm-basics.md")
    data = await response.get_json()

    assert services.database.get_course(data["course_id"]).title == "alarm-basics"


async def test_upload_rejects_wrong_extension(client, sample_course):
    response = await upload(client, sample_course, filename="course.pdf")

    assert response.status_code == 400
    data = await response.get_json()
    assert data["error"] == "InputValidationError"
    assert data["retryable"] is False
    assert data["details"][0]["field"] == "file"


async def test_oversized_request_body_is_json_413(app, client, services, sample_course):
    app.config["MAX_CONTENT_LENGTH"] = 200

    response = await upload(client, sample_course)

    assert response.status_code == 413
    data = await response.get_json()
    assert data["error"] == "InputValidationError"
    assert data["retryable"] is False
    assert data["details"][0]["field"] == "file"
    assert services.database.list_courses() == []


async def test_upload_without_file(client):
    response = await client.post("/api/courses/upload", form={"title": "x"})
    assert response.status_code == 400


async def test_duplicate_upload_conflicts(client, sample_course):
    await upload(client, sample_course, title="Night Supervision")
    response = await upload(client, sample_course, title="Night Supervision")

    assert response.status_code == 409
    assert (await response.get_json())["error"] == "CourseConflictError"


async def test_embedding_outage_is_503(client, fake_client, sample_course):
    fake_client.fail_when = lambda inputs: True

    response = await upload(client, sample_course, title="Night Supervision")

    assert response.status_code == 503
    assert (await response.get_json())["retryable"] is True


async def test_create_course_from_json(client, sample_course):
    response = await client.post(
        "/api/courses",
        json={"title": "Night Supervision", "content_md": sample_course, "tags": ["night"]},
    )
    assert response.status_code == 201

    response = await client.post("/api/courses", json={"title": "Empty", "content_md": " "})
    assert response.status_code == 400


async def test_list_get_and_delete_course(client, sample_course):
    created = await (await upload(client, sample_course, title="Night Supervision", technology="Nattugla")).get_json()
    course_id = created["course_id"]

    listing = await (await client.get("/api/courses?technology=Nattugla")).get_json()
    assert [c["id"] for c in listing["courses"]] == [course_id]
    other = await (await client.get("/api/courses?technology=Medido")).get_json()
    assert other["courses"] == []

    detail = await client.get(f"/api/courses/{course_id}")
    assert detail.status_code == 200
    body = await detail.get_json()
    assert len(body["chunks"]) == 4
    assert body["content_md"] == sample_course

    deleted = await client.delete(f"/api/courses/{course_id}")
    assert deleted.status_code == 200
    assert (await deleted.get_json())["vectors_removed"] == 4

    assert (await client.get(f"/api/courses/{course_id}")).status_code == 404
    assert (await client.delete(f"/api/courses/{course_id}")).status_code == 404


async def test_search_endpoint(client, sample_course):
    await upload(client, sample_course, title="Night Supervision")

    response = await client.post("/api/search", json={"query": "sensor alarm", "limit": 4})

    assert response.status_code == 200
    data = await response.get_json()
    assert data["query"] == "sensor alarm"
    assert data["total_chunks"] == 4
    assert set(data["results"]) == {"getting-started", "daily-routines"}


async def test_search_with_no_courses_returns_empty_contract(client):
    response = await client.post("/api/search", json={"query": "sensor"})

    assert response.status_code == 200
    assert await response.get_json() == {"query": "sensor", "total_chunks": 0, "results": {}}


@pytest.mark.parametrize(
    "body",
    [{}, {"query": "   "}, {"query": "x", "limit": 0}, {"query": "x", "limit": "many"}],
)
async def test_search_rejects_bad_input(client, body):
    response = await client.post("/api/search", json=body)
    assert response.status_code == 400


async def test_search_provider_failure_is_503(client, fake_client, sample_course):
    await upload(client, sample_course, title="Night Supervision")
    fake_client.fail_when = lambda inputs: True

    response = await client.post("/api/search", json={"query": "sensor"})

    assert response.status_code == 503
    assert (await response.get_json())["error"] == "RetrievalError"


async def test_chat_endpoint(client, fake_client, sample_course):
    await upload(client, sample_course, title="Night Supervision", technology="Nattugla")

    response = await client.post("/api/chat", json={"message": "What about alarms?", "technology": "Nattugla"})

    assert response.status_code == 200
    data = await response.get_json()
    assert data["response"] == fake_client.chat_reply
    assert data["confidence"] == "high"
    assert data["context"]


@pytest.mark.parametrize("message", ["", "   ", "x" * 2001])
async def test_chat_rejects_bad_message(client, message):
    response = await client.post("/api/chat", json={"message": message})
    assert response.status_code == 400


async def test_suggestions_and_overview(client, sample_course):
    await upload(client, sample_course, title="Night Supervision", technology="Nattugla")

    suggestions = await (await client.get("/api/chat/suggestions")).get_json()
    assert suggestions["suggestions"][0]["text"] == "Tell me about Night Supervision"

    overview = await (await client.get("/api/technology/overview")).get_json()
    assert overview["technologies"][0]["technology"] == "Nattugla"


async def test_health_probes(client, fake_client):
    live = await client.get("/health/live")
    assert (await live.get_json()) == {"status": "alive"}

    fake_client.models = ["gemma3:12b", "mxbai-embed-large:latest"]
    ready = await client.get("/health/ready")
    assert ready.status_code == 200

    fake_client.models = []
    ready = await client.get("/health/ready")
    assert ready.status_code == 503
    assert "Missing models" in (await ready.get_json())["error"]
