"""Ingest pipeline for course documents.

Orchestrates:
- Metadata and upload validation
- Markdown parsing into nanos and units
- Per-unit chunking
- Batched embedding (one call per unit, bounded concurrency)
- Transactional storage of course, chunk and asset rows
- Vector index updates after commit
"""
import asyncio
from dataclasses import asdict, dataclass
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Set

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from coursechat import config
from coursechat.db import CourseDatabase
from coursechat.errors import CourseConflictError, EmbeddingError, InputValidationError
from coursechat.models import CourseRecord, NewAsset, NewChunk
from coursechat.rag.chunker import TextChunk, TextChunker
from coursechat.rag.embeddings import EmbeddingGateway
from coursechat.rag.md_parser import MarkdownParser, ParsedCourse, ParsedUnit, slugify
from coursechat.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


class CourseMetadata(BaseModel):
    """Metadata supplied alongside an uploaded course."""

    title: str = ""
    technology: str = Field(default_factory=lambda: config.DEFAULT_TECHNOLOGY)
    tags: List[str] = Field(default_factory=list)
    slug: Optional[str] = None
    uploaded_by: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value):
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("technology", mode="before")
    @classmethod
    def _default_technology(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return config.DEFAULT_TECHNOLOGY
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple, set)):
            return value
        return [tag.strip() for tag in value if isinstance(tag, str) and tag.strip()]

    @field_validator("slug", mode="before")
    @classmethod
    def _normalise_slug(cls, value):
        if value is None:
            return None
        value = slugify(str(value))
        return value or None


def build_metadata(**fields: Any) -> CourseMetadata:
    """Validate raw metadata fields.

    Raises:
        InputValidationError: With one entry per invalid field
    """
    try:
        return CourseMetadata(**fields)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise InputValidationError("Invalid course metadata", errors=errors) from e


def validate_upload(filename: str, size: int) -> None:
    """Reject uploads with a disallowed extension or size.

    Raises:
        InputValidationError: If the file is not acceptable
    """
    suffix = PurePath(filename or "").suffix.lower()
    if suffix not in config.ALLOWED_UPLOAD_EXTENSIONS:
        raise InputValidationError(
            "Only markdown (.md) and text (.txt) files are allowed",
            errors=[{"field": "file", "message": f"Unsupported file type: {suffix or 'none'}"}],
        )
    if size > config.MAX_UPLOAD_BYTES:
        raise InputValidationError(
            "File too large",
            errors=[{
                "field": "file",
                "message": f"{size} bytes exceeds limit of {config.MAX_UPLOAD_BYTES}",
            }],
        )


def decode_upload(data: bytes) -> str:
    """Decode uploaded bytes as UTF-8 markdown.

    Raises:
        InputValidationError: If the payload is not UTF-8 or is empty
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InputValidationError(
            "File must be UTF-8 encoded",
            errors=[{"field": "file", "message": str(e)}],
        ) from e
    if not text.strip():
        raise InputValidationError(
            "Content is required",
            errors=[{"field": "file", "message": "File is empty"}],
        )
    return text


def _unique_slug(base: str, fallback: str, taken: Set[str]) -> str:
    slug = base or fallback
    candidate = slug
    suffix = 2
    while candidate in taken:
        candidate = f"{slug}-{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def dedupe_slugs(course: ParsedCourse) -> int:
    """Make nano slugs unique per course and unit slugs unique per nano.

    Duplicates get ``-2``, ``-3`` ... suffixes in source order; empty slugs
    fall back to ``nano``/``unit``.

    Returns:
        Number of slugs that were changed
    """
    changed = 0
    nano_slugs: Set[str] = set()
    for nano in course.nanos:
        slug = _unique_slug(nano.slug, "nano", nano_slugs)
        if slug != nano.slug:
            logger.warning("nano_slug_disambiguated", title=nano.title, original=nano.slug, slug=slug)
            nano.slug = slug
            changed += 1

        unit_slugs: Set[str] = set()
        for unit in nano.units:
            slug = _unique_slug(unit.slug, "unit", unit_slugs)
            if slug != unit.slug:
                logger.warning(
                    "unit_slug_disambiguated",
                    nano_slug=nano.slug,
                    title=unit.title,
                    original=unit.slug,
                    slug=slug,
                )
                unit.slug = slug
                changed += 1
    return changed


@dataclass
class IngestSummary:
    """Result of ingesting one course."""

    course_id: str
    chunk_count: int
    nano_count: int
    unit_count: int
    asset_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _UnitPlan:
    nano_slug: str
    nano_title: str
    unit: ParsedUnit
    chunks: List[TextChunk]


class IngestPipeline:
    """Pipeline for ingesting course markdown into the RAG store."""

    def __init__(
        self,
        database: CourseDatabase,
        vector_store: FAISSVectorStore,
        embedder: EmbeddingGateway,
        parser: Optional[MarkdownParser] = None,
        chunker: Optional[TextChunker] = None,
        chunk_threshold: Optional[int] = None,
        concurrency: Optional[int] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            database: Course database
            vector_store: FAISS index updated after each commit
            embedder: Embedding gateway
            parser: Markdown parser (default instance if omitted)
            chunker: Text chunker (default from config if omitted)
            chunk_threshold: Units with plain text at or below this length stay whole
            concurrency: Maximum units embedded in parallel
        """
        self.database = database
        self.vector_store = vector_store
        self.embedder = embedder
        self.parser = parser or MarkdownParser()
        self.chunker = chunker or TextChunker()
        self.chunk_threshold = (
            config.CHUNK_THRESHOLD if chunk_threshold is None else chunk_threshold
        )
        self.concurrency = max(1, concurrency or config.EMBED_CONCURRENCY)

        logger.info(
            "ingest_pipeline_initialized",
            embedding_model=self.embedder.model,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            chunk_threshold=self.chunk_threshold,
            concurrency=self.concurrency,
        )

    def chunk_unit(self, unit: ParsedUnit) -> List[TextChunk]:
        """Split a unit's plain text, keeping short units whole."""
        text = unit.content_plain
        if not text:
            return []
        if len(text) <= self.chunk_threshold:
            return [TextChunk(content=text, char_start=0, char_end=len(text), chunk_index=0)]
        return self.chunker.chunk_text(text)

    async def ingest_course(
        self,
        metadata: CourseMetadata,
        markdown: str,
        timeout: Optional[float] = None,
    ) -> IngestSummary:
        """Ingest one course document, all or nothing.

        Args:
            metadata: Validated course metadata
            markdown: Course markdown text
            timeout: Seconds allowed for the whole ingestion (default from config)

        Returns:
            IngestSummary with the new course id and row counts

        Raises:
            InputValidationError: Missing title or empty content
            CourseConflictError: Slug already in use
            EmbeddingError: Embedding provider failure or timeout
            StorageError: Database failure
        """
        timeout = timeout or config.INGEST_TIMEOUT

        if not markdown or not markdown.strip():
            raise InputValidationError(
                "Content is required",
                errors=[{"field": "content_md", "message": "Course content is empty"}],
            )

        course = self.parser.parse(markdown)
        title = metadata.title or (course.title or "").strip()
        if not title:
            raise InputValidationError(
                "Title is required",
                errors=[{"field": "title", "message": "No title given and none found in document"}],
            )
        slug = metadata.slug or slugify(title)
        if not slug:
            raise InputValidationError(
                "Slug is required",
                errors=[{"field": "slug", "message": f"Cannot derive a slug from title {title!r}"}],
            )

        if self.database.course_slug_exists(slug):
            raise CourseConflictError(slug)

        dedupe_slugs(course)

        plans = [
            _UnitPlan(nano.slug, nano.title, unit, self.chunk_unit(unit))
            for nano in course.nanos
            for unit in nano.units
        ]

        logger.info(
            "ingesting_course",
            slug=slug,
            technology=metadata.technology,
            nano_count=len(course.nanos),
            unit_count=len(plans),
            planned_chunks=sum(len(p.chunks) for p in plans),
        )

        try:
            embeddings = await asyncio.wait_for(self._embed_units(plans), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error("ingest_timeout", slug=slug, timeout=timeout)
            raise EmbeddingError(
                f"Ingestion of {slug} timed out after {timeout}s", retryable=True
            ) from e

        new_chunks, new_assets = self._build_rows(title, course, plans, embeddings)

        with self.database.transaction() as conn:
            record = self.database.insert_course(
                conn,
                title=title,
                slug=slug,
                technology=metadata.technology,
                tags=metadata.tags,
                content_md=markdown,
                uploaded_by=metadata.uploaded_by,
            )
            chunk_ids = self.database.insert_chunks(conn, record.id, new_chunks)
            asset_count = self.database.insert_assets(conn, record.id, new_assets)

        self.vector_store.add_vectors(chunk_ids, [c.embedding for c in new_chunks])

        summary = IngestSummary(
            course_id=record.id,
            chunk_count=len(new_chunks),
            nano_count=len(course.nanos),
            unit_count=len(plans),
            asset_count=asset_count,
        )

        logger.info("course_ingested", slug=slug, **summary.to_dict())
        return summary

    async def _embed_units(self, plans: List[_UnitPlan]) -> List[List[List[float]]]:
        """Embed every unit's chunks, one batch per unit, results in source order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def embed(plan: _UnitPlan) -> List[List[float]]:
            if not plan.chunks:
                return []
            async with semaphore:
                return await self.embedder.embed_many([c.content for c in plan.chunks])

        tasks = [asyncio.ensure_future(embed(plan)) for plan in plans]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _build_rows(
        self,
        title: str,
        course: ParsedCourse,
        plans: List[_UnitPlan],
        embeddings: List[List[List[float]]],
    ):
        """Assign contiguous chunk indexes in nano-then-unit source order."""
        new_chunks: List[NewChunk] = []
        new_assets: List[NewAsset] = []

        for plan, vectors in zip(plans, embeddings):
            unit = plan.unit
            for chunk, vector in zip(plan.chunks, vectors):
                new_chunks.append(
                    NewChunk(
                        chunk_index=len(new_chunks),
                        content=chunk.content,
                        content_markdown=unit.markdown_for_span(chunk.char_start, chunk.char_end),
                        embedding=vector,
                        nano_slug=plan.nano_slug,
                        unit_slug=unit.slug,
                        metadata={
                            "course_title": title,
                            "nano_title": plan.nano_title,
                            "unit_title": unit.title,
                            "frontmatter": course.frontmatter,
                        },
                    )
                )
            for asset in unit.assets:
                new_assets.append(
                    NewAsset(
                        nano_slug=plan.nano_slug,
                        unit_slug=unit.slug,
                        url=asset.url,
                        kind=asset.kind,
                        alt=asset.alt,
                    )
                )

        return new_chunks, new_assets

    def delete_course(self, course_id: str) -> int:
        """Delete a course and drop its vectors from the index.

        Raises:
            CourseNotFoundError: If no course has this id
        """
        chunk_ids = self.database.delete_course(course_id)
        return self.vector_store.remove_ids(chunk_ids)

    def list_courses(self, technology: Optional[str] = None) -> List[CourseRecord]:
        return self.database.list_courses(technology)

    def get_course(self, course_id: str) -> Optional[Dict[str, Any]]:
        """Course with its chunks and assets, or None."""
        course = self.database.get_course(course_id)
        if course is None:
            return None
        data = course.to_dict(include_content=True)
        data["chunks"] = [c.to_dict() for c in self.database.get_course_chunks(course_id)]
        data["assets"] = [a.to_dict() for a in self.database.get_course_assets(course_id)]
        return data

    def rebuild_index(self) -> int:
        """Reload the vector index from stored embeddings."""
        return self.vector_store.load(self.database.iter_embeddings())
