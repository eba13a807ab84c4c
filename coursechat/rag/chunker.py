"""Text chunking with overlap for the RAG pipeline.

Character-based recursive splitting: the text is cut on the coarsest
separator that yields pieces within the size bound (paragraph, line,
sentence, word, then single characters), and the pieces are merged back
into windows of at most ``chunk_size`` characters that overlap by up to
``chunk_overlap`` characters.

Every chunk is an exact slice ``text[char_start:char_end]`` and consecutive
chunks leave no gap, so the source can be rebuilt from the chunks by
dropping each chunk's overlap with its predecessor.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog

from coursechat import config

logger = structlog.get_logger()

DEFAULT_SEPARATORS = ("\n\n", "\n", ". ", "! ", "? ", " ", "")

Span = Tuple[int, int]


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


class TextChunker:
    """Recursive character text splitter with overlap support."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Maximum chunk length in characters (default from config)
            chunk_overlap: Trailing context carried into the next chunk (default from config)
            separators: Split boundaries, coarsest first; ``""`` cuts single characters
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.separators = list(separators)
        if "" not in self.separators:
            self.separators.append("")

        if self.chunk_size < 1:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be between 0 and "
                f"chunk size ({self.chunk_size})"
            )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Whitespace-only windows are dropped, so every returned chunk has
        visible content.
        """
        if not text:
            return []

        if len(text) <= self.chunk_size:
            spans = [(0, len(text))]
        else:
            spans = self._split(text, 0, len(text), self.separators)

        chunks = []
        for start, end in spans:
            content = text[start:end]
            if not content.strip():
                continue
            chunks.append(
                TextChunk(
                    content=content,
                    char_start=start,
                    char_end=end,
                    chunk_index=len(chunks),
                )
            )

        if len(chunks) > 1:
            logger.debug(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )

        return chunks

    def _split(
        self, text: str, start: int, end: int, separators: List[str]
    ) -> List[Span]:
        separator = separators[-1]
        remaining: List[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "" or text.find(candidate, start, end) != -1:
                separator = candidate
                remaining = separators[i + 1:]
                break

        spans: List[Span] = []
        pending: List[Span] = []
        for piece in self._cut(text, start, end, separator):
            if piece[1] - piece[0] <= self.chunk_size:
                pending.append(piece)
                continue
            if pending:
                spans.extend(self._merge(pending))
                pending = []
            if remaining:
                spans.extend(self._split(text, piece[0], piece[1], remaining))
            else:
                spans.append(piece)

        if pending:
            spans.extend(self._merge(pending))
        return spans

    def _cut(self, text: str, start: int, end: int, separator: str) -> List[Span]:
        """Cut ``text[start:end]`` after every separator occurrence.

        Whitespace-only pieces are folded into the piece before them so no
        blank window can be produced between two merged runs.
        """
        if separator == "":
            return [(i, i + 1) for i in range(start, end)]

        pieces: List[Span] = []
        cursor = start
        while cursor < end:
            found = text.find(separator, cursor, end)
            piece_end = end if found == -1 else found + len(separator)
            if pieces and not text[cursor:piece_end].strip():
                pieces[-1] = (pieces[-1][0], piece_end)
            else:
                pieces.append((cursor, piece_end))
            cursor = piece_end
        return pieces

    def _merge(self, pieces: List[Span]) -> List[Span]:
        """Merge contiguous pieces into bounded, overlapping windows."""
        windows: List[Span] = []
        current: List[Span] = []

        for piece in pieces:
            if current and piece[1] - current[0][0] > self.chunk_size:
                windows.append((current[0][0], current[-1][1]))
                while current and (
                    current[-1][1] - current[0][0] > self.chunk_overlap
                    or piece[1] - current[0][0] > self.chunk_size
                ):
                    current.pop(0)
            current.append(piece)

        if current:
            windows.append((current[0][0], current[-1][1]))
        return windows

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks."""
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def split_text(text: str, max_size: int, overlap: Optional[int] = None) -> List[str]:
    """Split text into segments of at most ``max_size`` characters.

    The overlap defaults to the configured value, capped below ``max_size``.
    """
    if overlap is None:
        overlap = config.CHUNK_OVERLAP
    overlap = max(0, min(overlap, max_size - 1))
    chunker = TextChunker(chunk_size=max_size, chunk_overlap=overlap)
    return [chunk.content for chunk in chunker.chunk_text(text)]
