"""Typed records exchanged with the course database."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class CourseRecord:
    """A stored course."""

    id: str
    title: str
    slug: str
    technology: str
    tags: List[str]
    content_md: str
    uploaded_by: Optional[str]
    created_at: str

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "technology": self.technology,
            "tags": list(self.tags),
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at,
        }
        if include_content:
            data["content_md"] = self.content_md
        return data


@dataclass
class NewChunk:
    """A chunk ready to be written during ingestion."""

    chunk_index: int
    content: str
    content_markdown: str
    embedding: Optional[List[float]]
    nano_slug: str
    unit_slug: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChunkRecord:
    """A stored chunk (embedding omitted)."""

    id: int
    course_id: str
    chunk_index: int
    content: str
    content_markdown: str
    nano_slug: str
    unit_slug: str
    metadata: Dict[str, Any]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "content_markdown": self.content_markdown,
            "nano_slug": self.nano_slug,
            "unit_slug": self.unit_slug,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }


@dataclass
class ChunkHit:
    """A chunk joined with its course, as returned to the retriever."""

    id: int
    course_id: str
    course_title: str
    course_slug: str
    technology: str
    chunk_index: int
    content: str
    content_markdown: str
    nano_slug: str
    unit_slug: str
    metadata: Dict[str, Any]


@dataclass
class NewAsset:
    """An asset ready to be written during ingestion."""

    nano_slug: str
    unit_slug: str
    url: str
    kind: str
    alt: Optional[str] = None


@dataclass
class AssetRecord:
    """A stored asset."""

    id: int
    course_id: str
    nano_slug: str
    unit_slug: str
    url: str
    kind: str
    alt: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "kind": self.kind,
            "alt": self.alt,
            "nano_slug": self.nano_slug,
            "unit_slug": self.unit_slug,
        }
