"""Retriever for semantic search over course chunks.

Handles:
- Query embedding generation
- Filtered FAISS similarity search
- Chunk lookup in the course database
- Regrouping results by nano and unit, with unit assets attached
"""
import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog

from coursechat import config
from coursechat.db import CourseDatabase
from coursechat.errors import CourseChatError, RetrievalError
from coursechat.models import AssetRecord, ChunkHit
from coursechat.rag.embeddings import EmbeddingGateway
from coursechat.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


@dataclass
class RetrievedChunk:
    """A single retrieved chunk with its score."""

    chunk_id: int
    chunk_index: int
    content: str
    content_markdown: str
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "content_markdown": self.content_markdown,
            "similarity": self.similarity,
        }


@dataclass
class UnitGroup:
    """Retrieved chunks belonging to one unit."""

    slug: str
    title: str
    course_id: str
    course_title: str
    technology: str
    chunks: List[RetrievedChunk] = field(default_factory=list)
    assets: List[AssetRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "course_id": self.course_id,
            "course_title": self.course_title,
            "technology": self.technology,
            "chunks": [c.to_dict() for c in self.chunks],
            "assets": [
                {"url": a.url, "kind": a.kind, "alt": a.alt} for a in self.assets
            ],
        }


@dataclass
class NanoGroup:
    """Retrieved units belonging to one nano.

    Units are kept apart per course: when two courses share a unit slug,
    the later course's group is keyed ``<unit_slug>@<course_slug>``.
    """

    slug: str
    title: str
    units: "OrderedDict[str, UnitGroup]" = field(default_factory=OrderedDict)
    _by_course: Dict[Tuple[str, str], UnitGroup] = field(
        default_factory=dict, repr=False, compare=False
    )

    def get_unit(self, course_id: str, unit_slug: str) -> Optional[UnitGroup]:
        return self._by_course.get((course_id, unit_slug))

    def add_unit(self, unit: UnitGroup, course_slug: str) -> UnitGroup:
        key = unit.slug
        if key in self.units:
            key = f"{unit.slug}@{course_slug}"
        self.units[key] = unit
        self._by_course[(unit.course_id, unit.slug)] = unit
        return unit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "units": {key: unit.to_dict() for key, unit in self.units.items()},
        }


@dataclass
class SearchResult:
    """Grouped search results for one query."""

    query: str
    total_chunks: int = 0
    results: "OrderedDict[str, NanoGroup]" = field(default_factory=OrderedDict)

    @property
    def is_empty(self) -> bool:
        return self.total_chunks == 0

    def iter_units(self):
        for nano in self.results.values():
            for unit in nano.units.values():
                yield nano, unit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "total_chunks": self.total_chunks,
            "results": {slug: nano.to_dict() for slug, nano in self.results.items()},
        }


def group_hits(
    query: str, hits: List[ChunkHit], similarities: List[float]
) -> SearchResult:
    """Group ranked hits by nano, then by (course, unit), keeping rank order within groups."""
    result = SearchResult(query=query, total_chunks=len(hits))

    for hit, similarity in zip(hits, similarities):
        nano = result.results.get(hit.nano_slug)
        if nano is None:
            nano = NanoGroup(
                slug=hit.nano_slug,
                title=hit.metadata.get("nano_title") or hit.nano_slug,
            )
            result.results[hit.nano_slug] = nano

        unit = nano.get_unit(hit.course_id, hit.unit_slug)
        if unit is None:
            unit = nano.add_unit(
                UnitGroup(
                    slug=hit.unit_slug,
                    title=hit.metadata.get("unit_title") or hit.unit_slug,
                    course_id=hit.course_id,
                    course_title=hit.course_title,
                    technology=hit.technology,
                ),
                course_slug=hit.course_slug,
            )

        unit.chunks.append(
            RetrievedChunk(
                chunk_id=hit.id,
                chunk_index=hit.chunk_index,
                content=hit.content,
                content_markdown=hit.content_markdown,
                similarity=similarity,
            )
        )

    return result


class Retriever:
    """Semantic retriever for course chunks."""

    def __init__(
        self,
        database: CourseDatabase,
        vector_store: FAISSVectorStore,
        embedder: EmbeddingGateway,
        default_limit: int = None,
        timeout: float = None,
    ):
        """Initialize the retriever.

        Args:
            database: Course database
            vector_store: FAISS index of chunk embeddings
            embedder: Embedding gateway for query vectors
            default_limit: Results returned when no limit is given (default from config)
            timeout: Seconds allowed per search (default from config)
        """
        self.database = database
        self.vector_store = vector_store
        self.embedder = embedder
        self.default_limit = default_limit or config.RETRIEVAL_LIMIT
        self.timeout = timeout or config.SEARCH_TIMEOUT

        logger.info(
            "retriever_initialized",
            embedding_model=self.embedder.model,
            default_limit=self.default_limit,
        )

    async def search(
        self,
        query: str,
        technology: Optional[str] = None,
        limit: Optional[int] = None,
        course_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> SearchResult:
        """Retrieve chunks for a query, grouped by nano and unit.

        Database lookups run in worker threads so ``timeout`` bounds them
        as well as the embedding call. The in-memory FAISS search runs
        inline and is not interruptible.

        Args:
            query: User query text
            technology: Only search courses with this technology
            limit: Maximum number of chunks (default 5)
            course_id: Only search this course
            timeout: Seconds allowed for the search

        Returns:
            SearchResult; empty (total_chunks 0) when nothing matches

        Raises:
            RetrievalError: On provider or datastore failure, or timeout
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return SearchResult(query=query or "")

        limit = limit or self.default_limit
        timeout = timeout or self.timeout

        logger.info(
            "retrieval_started",
            query_length=len(query),
            limit=limit,
            technology=technology,
            course_id=course_id,
        )

        try:
            result = await asyncio.wait_for(
                self._search(query, technology, limit, course_id), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            logger.error("retrieval_timeout", timeout=timeout, query_preview=query[:100])
            raise RetrievalError(f"Search timed out after {timeout}s", retryable=True) from e
        except CourseChatError as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise RetrievalError(f"Retrieval failed: {e}", retryable=e.retryable) from e
        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise RetrievalError(f"Retrieval failed: {e}") from e

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=result.total_chunks,
            nano_count=len(result.results),
        )
        return result

    async def _search(
        self,
        query: str,
        technology: Optional[str],
        limit: int,
        course_id: Optional[str],
    ) -> SearchResult:
        if self.vector_store.ntotal == 0:
            logger.warning("empty_index_no_results")
            return SearchResult(query=query)

        allowed_ids = None
        if technology or course_id:
            allowed_ids = await asyncio.to_thread(
                self.database.get_chunk_ids, technology=technology, course_id=course_id
            )
            if not allowed_ids:
                logger.info("no_chunks_match_filters")
                return SearchResult(query=query)

        query_embedding = await self.embedder.embed_one(query)

        chunk_ids, similarities = self.vector_store.search(
            query_embedding, top_k=limit, allowed_ids=allowed_ids
        )
        if not chunk_ids:
            logger.info("no_results_found")
            return SearchResult(query=query)

        hits_by_id = await asyncio.to_thread(self.database.get_chunk_hits, chunk_ids)

        hits: List[ChunkHit] = []
        scores: List[float] = []
        for chunk_id, similarity in zip(chunk_ids, similarities):
            hit = hits_by_id.get(chunk_id)
            if hit is None:
                logger.warning("chunk_missing_for_vector", chunk_id=chunk_id)
                continue
            hits.append(hit)
            scores.append(similarity)

        result = group_hits(query, hits, scores)

        keys = [(hit.course_id, hit.nano_slug, hit.unit_slug) for hit in hits]
        assets_by_unit = await asyncio.to_thread(self.database.get_assets_for_units, keys)
        for (course, nano_slug, unit_slug), unit_assets in assets_by_unit.items():
            unit = result.results[nano_slug].get_unit(course, unit_slug)
            known = {asset.url for asset in unit.assets}
            for asset in unit_assets:
                if asset.url not in known:
                    known.add(asset.url)
                    unit.assets.append(asset)

        return result


def format_context(result: SearchResult, max_chars: int = None) -> str:
    """Flatten a search result into prompt context with source labels."""
    max_chars = max_chars or config.MAX_CONTEXT_CHARS
    if result.is_empty:
        return ""

    parts: List[str] = []
    total_chars = 0

    for nano, unit in result.iter_units():
        label = f"[{unit.course_title} › {nano.title} › {unit.title}]"
        body = "\n".join(chunk.content.strip() for chunk in unit.chunks)
        section = f"{label}\n{body}\n"
        if unit.assets:
            section += "Assets: " + ", ".join(
                f"{a.alt or a.kind} ({a.url})" for a in unit.assets
            ) + "\n"

        if total_chars + len(section) > max_chars:
            remaining = max_chars - total_chars
            if remaining > 200:
                parts.append(section[:remaining] + "...\n")
            break

        parts.append(section)
        total_chars += len(section)

    context = "\n".join(parts)
    logger.debug("context_formatted", num_units=len(parts), total_chars=len(context))
    return context
