"""Error types raised by the ingestion and retrieval core.

Every error carries a ``retryable`` flag so callers can decide whether a
repeat attempt makes sense. The core itself never retries.
"""
from typing import Any, Dict, List, Optional


class CourseChatError(Exception):
    """Base class for all course chat errors."""

    retryable = False

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class InputValidationError(CourseChatError):
    """Course metadata or upload rejected before any work started."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, retryable=False)
        self.errors = errors or []


class ProviderError(CourseChatError):
    """A model provider call failed."""


class EmbeddingError(ProviderError):
    """The embedding provider failed or returned unusable vectors."""


class ChatModelError(ProviderError):
    """The chat completion provider failed."""


class StorageError(CourseChatError):
    """The datastore rejected or failed an operation."""


class CourseConflictError(StorageError):
    """A course with the same slug already exists."""

    def __init__(self, slug: str):
        super().__init__(f"Course slug already exists: {slug}", retryable=False)
        self.slug = slug


class CourseNotFoundError(StorageError):
    """No course exists with the requested id."""

    def __init__(self, course_id: str):
        super().__init__(f"Course not found: {course_id}", retryable=False)
        self.course_id = course_id


class RetrievalError(CourseChatError):
    """Search failed because of provider or datastore trouble."""
