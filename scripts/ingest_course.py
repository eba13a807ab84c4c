#!/usr/bin/env python
"""Ingest course markdown files into the RAG store.

Usage:
    python scripts/ingest_course.py course.md --technology "Varda Care"
    python scripts/ingest_course.py a.md b.md --tags "alarm,night"
    python scripts/ingest_course.py course.md --title "Night Supervision" --slug night
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from coursechat import config
from coursechat.errors import CourseChatError, InputValidationError
from coursechat.logging_setup import configure_logging
from coursechat.rag.ingest import build_metadata, decode_upload, validate_upload
from coursechat.services import build_services

logger = structlog.get_logger()


def print_summary(path: Path, summary: dict, elapsed_seconds: float):
    print(f"\n{'=' * 60}")
    print(f"  Ingested {path.name}")
    print(f"{'=' * 60}\n")
    print(f"  Course id:    {summary['course_id']}")
    print(f"  Nanos:        {summary['nano_count']}")
    print(f"  Units:        {summary['unit_count']}")
    print(f"  Chunks:       {summary['chunk_count']}")
    print(f"  Assets:       {summary['asset_count']}")
    print(f"  Time elapsed: {elapsed_seconds:.1f}s\n")


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest course markdown files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("files", nargs="+", type=Path, help="Markdown files to ingest")
    parser.add_argument("--title", help="Course title (default: file name; only with one file)")
    parser.add_argument("--slug", help="Course slug (default: derived from title)")
    parser.add_argument(
        "--technology",
        default=config.DEFAULT_TECHNOLOGY,
        help=f"Technology tag (default: {config.DEFAULT_TECHNOLOGY})",
    )
    parser.add_argument("--tags", default="", help="Comma-separated tags")
    parser.add_argument("--uploaded-by", default=None, help="Uploader identity")
    parser.add_argument("--db", type=Path, default=None, help=f"Database path (default: {config.DB_PATH})")
    args = parser.parse_args()

    if len(args.files) > 1 and (args.title or args.slug):
        parser.error("--title and --slug can only be used with a single file")

    configure_logging()

    print("\n📋 Configuration:")
    print(f"   Database:         {args.db or config.DB_PATH}")
    print(f"   Embedding model:  {config.EMBEDDING_MODEL} (dim {config.EMBEDDING_DIMENSION})")
    print(f"   Chunk size:       {config.CHUNK_SIZE} chars (overlap {config.CHUNK_OVERLAP})")
    print(f"   Chunk threshold:  {config.CHUNK_THRESHOLD} chars")

    services = build_services(args.db)
    failures = 0

    for path in args.files:
        start = datetime.now()
        try:
            if not path.exists():
                raise FileNotFoundError(f"File not found: {path}")
            data = path.read_bytes()
            validate_upload(path.name, len(data))
            metadata = build_metadata(
                title=args.title or path.stem,
                technology=args.technology,
                tags=args.tags,
                slug=args.slug,
                uploaded_by=args.uploaded_by,
            )
            summary = await services.pipeline.ingest_course(metadata, decode_upload(data))
            print_summary(path, summary.to_dict(), (datetime.now() - start).total_seconds())

        except InputValidationError as e:
            failures += 1
            print(f"\n❌ {path}: {e.message}")
            for detail in e.errors:
                print(f"   - {detail['field']}: {detail['message']}")
        except (CourseChatError, FileNotFoundError) as e:
            failures += 1
            print(f"\n❌ {path}: {e}")
            logger.error("ingest_script_failed", path=str(path), error=str(e), error_type=type(e).__name__)

    if failures:
        print(f"⚠️  {failures} file(s) failed to ingest. Check logs for details.\n")
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)
