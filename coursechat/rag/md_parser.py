"""Markdown parser for course documents.

Handles:
- JSON frontmatter in a leading ``[//]: # ( ... )`` comment
- Course title (``#``), nano (``##``) and unit (``###``) headings
- Asset detection (bare URL lines and inline images)
- Plain text extraction for embedding
"""
import enum
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import structlog

logger = structlog.get_logger()

FRONTMATTER_MARKER = "[//]: # ("
ASSET_URL_PREFIXES = ("http://", "https://", "//")
AUDIO_EXTENSIONS = (".mp3", ".wav", ".ogg")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")

IMPLICIT_NANO_SLUG = "general"
IMPLICIT_NANO_TITLE = "General"

_SLUG_INVALID = re.compile(r"[^a-z0-9\s-]")
_SLUG_SPACES = re.compile(r"\s+")
_SLUG_HYPHENS = re.compile(r"-+")

INLINE_IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(([^)\s]+)\)")
_LINK = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC = re.compile(r"\*([^*]+)\*")
_CODE = re.compile(r"`([^`]+)`")
_BLOCKQUOTE = re.compile(r"^\s*>\s*")
_BULLET = re.compile(r"^\s*[-*+]\s+")
_NUMBERED = re.compile(r"^\s*\d+\.\s+")


def slugify(title: str) -> str:
    """Turn a heading title into a URL-safe slug.

    Lowercases, drops anything outside ``[a-z0-9\\s-]``, turns whitespace
    runs into single hyphens and trims hyphens from both ends.
    """
    slug = _SLUG_INVALID.sub("", title.lower())
    slug = _SLUG_SPACES.sub("-", slug)
    slug = _SLUG_HYPHENS.sub("-", slug)
    return slug.strip("-")


def is_asset_url(line: str) -> bool:
    """A stripped line that is nothing but a URL."""
    trimmed = line.strip()
    if not trimmed.startswith(ASSET_URL_PREFIXES):
        return False
    return not any(ch.isspace() for ch in trimmed)


def detect_asset_kind(url: str) -> str:
    """Classify an asset URL by its file extension."""
    path = urlparse(url).path.lower()
    if path.endswith(AUDIO_EXTENSIONS):
        return "audio"
    if path.endswith(IMAGE_EXTENSIONS):
        return "image"
    return "other"


def plain_line(line: str) -> str:
    """Strip markdown syntax from a single line, keeping visible text."""
    text = _BLOCKQUOTE.sub("", line)
    text = _BULLET.sub("", text)
    text = _NUMBERED.sub("", text)
    text = INLINE_IMAGE_PATTERN.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = _BOLD.sub(r"\1", text)
    text = _ITALIC.sub(r"\1", text)
    text = _CODE.sub(r"\1", text)
    return text


def extract_plain_text(markdown: str) -> str:
    """Plain text used for chunking and embedding."""
    return "\n".join(plain_line(line) for line in markdown.split("\n")).strip()


@dataclass
class ParsedAsset:
    """A non-text resource referenced inside a unit."""

    url: str
    kind: str
    alt: Optional[str] = None


@dataclass
class ParsedUnit:
    """A ``###`` section: the atomic teaching item."""

    slug: str
    title: str
    lines: List[str] = field(default_factory=list)
    assets: List[ParsedAsset] = field(default_factory=list)

    @property
    def content(self) -> str:
        return "\n".join(self.lines)

    @property
    def content_plain(self) -> str:
        return self._plain_projection()[0].strip()

    def _plain_projection(self) -> Tuple[str, List[Tuple[int, int]]]:
        """Joined plain text plus the (start, end) span of every line in it."""
        spans = []
        parts = []
        offset = 0
        for line in self.lines:
            text = plain_line(line)
            spans.append((offset, offset + len(text)))
            parts.append(text)
            offset += len(text) + 1
        return "\n".join(parts), spans

    def markdown_for_span(self, start: int, end: int) -> str:
        """Markdown lines whose plain text overlaps ``content_plain[start:end]``."""
        joined, spans = self._plain_projection()
        lead = len(joined) - len(joined.lstrip())
        start += lead
        end += lead

        selected = []
        for line, (line_start, line_end) in zip(self.lines, spans):
            if line_start == line_end:
                overlaps = start <= line_start < end
            else:
                overlaps = line_start < end and line_end > start
            if overlaps:
                selected.append(line)
        return "\n".join(selected)


@dataclass
class ParsedNano:
    """A ``##`` topic section grouping units."""

    slug: str
    title: str
    units: List[ParsedUnit] = field(default_factory=list)


@dataclass
class ParsedCourse:
    """Result of parsing one course document."""

    title: Optional[str]
    frontmatter: Optional[Dict[str, Any]]
    nanos: List[ParsedNano]

    @property
    def units(self) -> List[ParsedUnit]:
        return [unit for nano in self.nanos for unit in nano.units]

    @property
    def unit_count(self) -> int:
        return len(self.units)

    @property
    def asset_count(self) -> int:
        return sum(len(unit.assets) for unit in self.units)


class ParserState(enum.Enum):
    """Where the scanner is in the heading hierarchy."""

    NO_OPEN_NANO = "no_open_nano"
    IN_NANO = "in_nano"
    IN_UNIT = "in_unit"


class MarkdownParser:
    """Single-pass line scanner for course markdown."""

    def parse_file(self, file_path: Path) -> ParsedCourse:
        """Parse a markdown file from disk.

        Raises:
            FileNotFoundError: If file doesn't exist
            UnicodeDecodeError: If file encoding is invalid
        """
        if not file_path.exists():
            raise FileNotFoundError(f"Markdown file not found: {file_path}")

        try:
            content = file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            logger.error("markdown_encoding_error", path=str(file_path), error=str(e))
            raise

        return self.parse(content)

    def parse(self, content: str) -> ParsedCourse:
        """Parse markdown text into a course tree.

        Never raises on malformed frontmatter or heading order: bad JSON
        leaves ``frontmatter`` as None and a unit heading that appears
        before any nano heading opens an implicit ``general`` nano.
        """
        title = None
        frontmatter = None
        frontmatter_seen = False
        frontmatter_lines: Optional[List[str]] = None

        nanos: List[ParsedNano] = []
        nano: Optional[ParsedNano] = None
        unit: Optional[ParsedUnit] = None
        state = ParserState.NO_OPEN_NANO

        for raw_line in content.split("\n"):
            line = raw_line.strip()

            if frontmatter_lines is not None:
                frontmatter_lines.append(line)
                if ")" in line:
                    parsed = self._parse_frontmatter(frontmatter_lines)
                    if not frontmatter_seen:
                        frontmatter = parsed
                        frontmatter_seen = True
                    frontmatter_lines = None
                continue

            if line.startswith(FRONTMATTER_MARKER):
                frontmatter_lines = [line]
                if ")" in line[len(FRONTMATTER_MARKER):]:
                    parsed = self._parse_frontmatter(frontmatter_lines)
                    if not frontmatter_seen:
                        frontmatter = parsed
                        frontmatter_seen = True
                    frontmatter_lines = None
                continue

            if line.startswith("# "):
                heading = line[2:].strip()
                if title is None:
                    title = heading
                else:
                    logger.debug("extra_title_heading_ignored", heading=heading)
                continue

            if line.startswith("## "):
                nano_title = line[3:].strip()
                nano = ParsedNano(slug=slugify(nano_title), title=nano_title)
                nanos.append(nano)
                unit = None
                state = ParserState.IN_NANO
                continue

            if line.startswith("### "):
                unit_title = line[4:].strip()
                if state is ParserState.NO_OPEN_NANO:
                    logger.warning(
                        "unit_without_nano",
                        unit_title=unit_title,
                        implicit_nano=IMPLICIT_NANO_SLUG,
                    )
                    nano = ParsedNano(slug=IMPLICIT_NANO_SLUG, title=IMPLICIT_NANO_TITLE)
                    nanos.append(nano)
                unit = ParsedUnit(slug=slugify(unit_title), title=unit_title)
                nano.units.append(unit)
                state = ParserState.IN_UNIT
                continue

            if not line or state is not ParserState.IN_UNIT:
                continue

            if is_asset_url(line):
                unit.assets.append(ParsedAsset(url=line, kind=detect_asset_kind(line)))
                continue

            for match in INLINE_IMAGE_PATTERN.finditer(line):
                unit.assets.append(
                    ParsedAsset(url=match.group(2), kind="image", alt=match.group(1) or None)
                )
            unit.lines.append(line)

        if frontmatter_lines is not None:
            logger.warning(
                "frontmatter_unterminated",
                line_count=len(frontmatter_lines),
            )

        course = ParsedCourse(title=title, frontmatter=frontmatter, nanos=nanos)

        logger.info(
            "markdown_parsed",
            title=title,
            has_frontmatter=frontmatter is not None,
            nano_count=len(nanos),
            unit_count=course.unit_count,
            asset_count=course.asset_count,
        )

        return course

    def _parse_frontmatter(self, lines: List[str]) -> Optional[Dict[str, Any]]:
        """Decode the JSON body of a frontmatter comment, or None."""
        text = "\n".join(lines)
        text = text[len(FRONTMATTER_MARKER):]
        closing = text.rfind(")")
        if closing != -1:
            text = text[:closing]

        try:
            value = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                preview=text[:100],
            )
            return None

        if not isinstance(value, dict):
            logger.warning("frontmatter_not_an_object", value_type=type(value).__name__)
            return None
        return value


# Singleton instance for convenience
_parser_instance = None


def get_parser() -> MarkdownParser:
    """Get a singleton markdown parser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = MarkdownParser()
    return _parser_instance


def parse_markdown(content: str) -> ParsedCourse:
    """Parse course markdown text (convenience function)."""
    return get_parser().parse(content)
