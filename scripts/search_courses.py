#!/usr/bin/env python
"""Run a semantic search against ingested courses and print the grouped results.

Usage:
    python scripts/search_courses.py "how do I reset the alarm?"
    python scripts/search_courses.py "night supervision" --technology "Varda Care" --limit 8
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from coursechat import config
from coursechat.errors import CourseChatError
from coursechat.logging_setup import configure_logging
from coursechat.services import build_services


async def main():
    parser = argparse.ArgumentParser(description="Search ingested courses")
    parser.add_argument("query", help="Free-text query")
    parser.add_argument("--technology", default=None, help="Only search this technology")
    parser.add_argument("--course-id", default=None, help="Only search this course")
    parser.add_argument("--limit", type=int, default=config.RETRIEVAL_LIMIT, help="Maximum chunks")
    parser.add_argument("--json", action="store_true", help="Print raw JSON")
    parser.add_argument("--db", type=Path, default=None, help=f"Database path (default: {config.DB_PATH})")
    args = parser.parse_args()

    configure_logging("WARNING")
    services = build_services(args.db)

    try:
        result = await services.retriever.search(
            args.query,
            technology=args.technology,
            limit=args.limit,
            course_id=args.course_id,
        )
    except CourseChatError as e:
        print(f"\n❌ Search failed: {e.message} (retryable: {e.retryable})\n")
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return

    if result.is_empty:
        print("\nNo matching course material.\n")
        return

    print(f"\n🔍 {result.total_chunks} chunk(s) for: {result.query}\n")
    for nano, unit in result.iter_units():
        print(f"## {nano.title}  ›  ### {unit.title}  ({unit.course_title})")
        for chunk in unit.chunks:
            preview = chunk.content.replace("\n", " ")
            if len(preview) > 160:
                preview = preview[:160] + "..."
            print(f"   [{chunk.similarity:.3f}] #{chunk.chunk_index} {preview}")
        for asset in unit.assets:
            print(f"   📎 {asset.kind}: {asset.url}")
        print()


if __name__ == "__main__":
    asyncio.run(main())
