"""Tests for course-grounded chat."""
import httpx
import pytest

from coursechat.chat import ERROR_REPLY, NO_KNOWLEDGE_REPLY, build_system_prompt
from coursechat.errors import ChatModelError
from coursechat.rag.ingest import build_metadata
from tests.fakes import http_status_error


@pytest.fixture
async def ingested(services, metadata, sample_course):
    return await services.pipeline.ingest_course(metadata, sample_course)


async def test_no_knowledge_reply_skips_model(services, fake_client):
    reply = await services.chat.chat("How do I reset the alarm?")

    assert reply.confidence == "low"
    assert reply.response == NO_KNOWLEDGE_REPLY
    assert fake_client.chat_calls == []


async def test_answer_uses_retrieved_context(services, fake_client, ingested):
    reply = await services.chat.chat("What do I do when an alarm goes off?", role="nurse")

    assert reply.confidence == "high"
    assert reply.response == fake_client.chat_reply
    assert len(fake_client.chat_calls) == 1

    system, user = fake_client.chat_calls[0]
    assert system["role"] == "system"
    assert "nurse" in system["content"]
    assert user["content"].startswith("Use this information to answer my question: What do I do")
    assert "[Night Supervision ›" in user["content"]

    assert reply.context
    source = reply.context[0]
    assert source["course_title"] == "Night Supervision"
    assert source["technology"] == "Nattugla"
    assert {"nano", "unit", "similarity", "assets"} <= set(source)


async def test_model_failure_returns_fallback(services, fake_client, ingested):
    fake_client.chat_error = httpx.ConnectError("refused")

    reply = await services.chat.chat("alarm")

    assert reply.confidence == "error"
    assert reply.response == ERROR_REPLY
    assert reply.context == []


async def test_retrieval_failure_returns_fallback(services, fake_client, ingested):
    fake_client.fail_when = lambda inputs: True

    reply = await services.chat.chat("alarm")

    assert reply.confidence == "error"
    assert fake_client.chat_calls == []


async def test_empty_model_answer_returns_fallback(services, fake_client, ingested):
    fake_client.chat_reply = ""

    reply = await services.chat.chat("alarm")

    assert reply.confidence == "error"


@pytest.mark.parametrize("status,retryable", [(503, True), (429, True), (400, False)])
async def test_complete_maps_http_errors(services, fake_client, status, retryable):
    fake_client.chat_error = http_status_error(status)

    with pytest.raises(ChatModelError) as exc_info:
        await services.chat.complete([{"role": "user", "content": "hi"}])

    assert exc_info.value.retryable is retryable


def test_system_prompt_mentions_role_and_technology():
    prompt = build_system_prompt(role="nurse", technology="Nattugla")

    assert "nurse" in prompt
    assert "Focus on Nattugla" in prompt
    assert "Do not guess" in prompt
    assert "Focus on" not in build_system_prompt()


async def test_technology_overview_and_suggestions(services, ingested, sample_course):
    other = build_metadata(title="Medicine Dispenser", technology="Medido", tags=["pills"])
    await services.pipeline.ingest_course(other, "# M\n## N\n### U\nFill the dispenser.")

    overview = {group["technology"]: group for group in services.chat.technology_overview()}
    assert set(overview) == {"Nattugla", "Medido"}
    assert overview["Medido"]["course_count"] == 1
    assert overview["Medido"]["courses"][0]["tags"] == ["pills"]

    suggestions = services.chat.suggestions("natt")
    assert [s["text"] for s in suggestions] == ["Tell me about Night Supervision"]
    assert len(services.chat.suggestions()) == 2
