"""Course-grounded chat: retrieval plus a persona prompt for the chat model."""
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import structlog

from coursechat import config
from coursechat.db import CourseDatabase
from coursechat.errors import ChatModelError, CourseChatError
from coursechat.llm_client import OllamaClient
from coursechat.rag.retriever import Retriever, format_context

logger = structlog.get_logger()

NO_KNOWLEDGE_REPLY = (
    "Hi! I don't have much information about that yet. Could you try asking "
    "about something else, or ask an administrator to add more course material "
    "on this topic? No stress, we'll sort it out together!"
)

ERROR_REPLY = (
    "Oops, something went wrong on my side. No stress, please try again! If the "
    "problem continues, try rephrasing your question."
)

MAX_SUGGESTIONS = 8


def build_system_prompt(role: Optional[str] = None, technology: Optional[str] = None) -> str:
    """Persona prompt for the chat model."""
    prompt = (
        f"You are {config.ASSISTANT_NAME}, a friendly, upbeat and helpful expert on "
        "welfare technology for municipal care services. You explain digital "
        "supervision, patient alarms, remote home follow-up and medicine "
        "dispensers in a simple, practical way, and you guide care workers through "
        "consent, privacy and risk assessments calmly and without jargon. Use "
        "plain words, analogies and concrete examples, and make the user feel safe "
        "and in control."
    )

    if role:
        prompt += f"\n\nYou are talking to a {role}. Adapt your answer to their needs and level of expertise."

    if technology:
        prompt += f"\n\nFocus on {technology} in your answer."

    prompt += (
        "\n\nImportant: Answer only from the information you have been given. "
        "Do not guess or invent facts. If the information is not enough, say so "
        "clearly and suggest what the user could ask about instead."
    )
    return prompt


@dataclass
class ChatReply:
    """Answer returned to the chat caller."""

    response: str
    confidence: str
    context: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "context": self.context,
            "confidence": self.confidence,
        }


class CourseChat:
    """Answers questions from stored course material."""

    def __init__(
        self,
        retriever: Retriever,
        llm_client: OllamaClient,
        database: CourseDatabase,
        model: str = None,
        temperature: float = None,
    ):
        self.retriever = retriever
        self.llm_client = llm_client
        self.database = database
        self.model = model or config.CHAT_MODEL
        self.temperature = config.CHAT_TEMPERATURE if temperature is None else temperature

    async def chat(
        self,
        message: str,
        role: Optional[str] = None,
        technology: Optional[str] = None,
    ) -> ChatReply:
        """Answer a message using retrieved course context.

        Retrieval or model failures are logged and answered with a fixed
        fallback reply (confidence ``error``); an empty retrieval is answered
        without calling the model (confidence ``low``).
        """
        role = role or config.DEFAULT_ROLE

        try:
            result = await self.retriever.search(message, technology=technology)
        except CourseChatError as e:
            logger.error("chat_retrieval_failed", error=str(e), retryable=e.retryable)
            return ChatReply(response=ERROR_REPLY, confidence="error")

        if result.is_empty:
            logger.info("chat_no_knowledge", technology=technology)
            return ChatReply(response=NO_KNOWLEDGE_REPLY, confidence="low")

        context = format_context(result)
        messages = [
            {"role": "system", "content": build_system_prompt(role, technology)},
            {
                "role": "user",
                "content": f"Use this information to answer my question: {message}\n\n"
                f"RELEVANT INFORMATION:\n{context}",
            },
        ]

        try:
            response = await self.complete(messages)
        except ChatModelError as e:
            logger.error("chat_completion_failed", error=str(e), retryable=e.retryable)
            return ChatReply(response=ERROR_REPLY, confidence="error")

        sources = [
            {
                "course_title": unit.course_title,
                "technology": unit.technology,
                "nano": nano.title,
                "unit": unit.title,
                "similarity": max(chunk.similarity for chunk in unit.chunks),
                "assets": [{"url": a.url, "kind": a.kind, "alt": a.alt} for a in unit.assets],
            }
            for nano, unit in result.iter_units()
        ]

        logger.info(
            "chat_response_generated",
            response_length=len(response),
            source_count=len(sources),
        )
        return ChatReply(response=response, confidence="high", context=sources)

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """Call the chat model and return the answer text.

        Raises:
            ChatModelError: On provider failure or empty answer
        """
        try:
            data = await self.llm_client.chat(
                messages, model=self.model, temperature=self.temperature
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ChatModelError(
                f"Chat provider returned HTTP {status}",
                retryable=status == 429 or status >= 500,
            ) from e
        except httpx.HTTPError as e:
            raise ChatModelError(f"Chat provider unreachable: {e}", retryable=True) from e

        content = data.get("message", {}).get("content", "")
        if not content:
            raise ChatModelError("Empty response from chat model", retryable=True)
        return content

    def technology_overview(self) -> List[Dict[str, Any]]:
        """Stored courses grouped by technology."""
        groups: "OrderedDict[str, List]" = OrderedDict()
        for course in self.database.list_courses():
            groups.setdefault(course.technology, []).append(course)

        return [
            {
                "technology": technology,
                "course_count": len(courses),
                "courses": [
                    {"id": c.id, "title": c.title, "tags": c.tags} for c in courses
                ],
            }
            for technology, courses in groups.items()
        ]

    def suggestions(self, technology: Optional[str] = None) -> List[Dict[str, Any]]:
        """Prompt suggestions derived from stored course titles."""
        courses = self.database.list_courses()
        if technology:
            needle = technology.lower()
            courses = [c for c in courses if needle in c.technology.lower()]

        return [
            {
                "text": f"Tell me about {course.title}",
                "technology": course.technology,
                "tags": course.tags,
            }
            for course in courses[:MAX_SUGGESTIONS]
        ]
