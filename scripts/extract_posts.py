#!/usr/bin/env python3
"""Run batch extraction over a JSONL file of posts.

Each input line is a JSON object with at least ``caption_text``; ``post_id``,
``ocr_text``, ``image_urls``, ``post_timestamp`` and ``location_hint`` are optional.
Each output line holds the post id and either the extraction or the error.

Usage:
    python scripts/extract_posts.py posts.jsonl --output results.jsonl
"""

import argparse
import json
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from loguru import logger
from pydantic import ValidationError

from pattern_engine.extraction.models import PostInput
from pattern_engine.pipeline.engine import build_engine
from pattern_engine.utils.config import load_config
from pattern_engine.utils.logging_config import setup_logging


def read_posts(path: Path) -> list[PostInput]:
    posts = []
    with path.open(encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                posts.append(PostInput.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Skipping line {line_number}: {e}")
    return posts


def main() -> int:
    parser = argparse.ArgumentParser(description="Extract events from a JSONL file of posts")
    parser.add_argument("input", type=Path, help="JSONL file of posts")
    parser.add_argument("--output", type=Path, default=None, help="Write results here (default: stdout)")
    parser.add_argument("--config", default="config/config.yaml", help="Path to config YAML")
    parser.add_argument("--workers", type=int, default=None, help="Override pipeline.max_workers")
    args = parser.parse_args()

    config = load_config(args.config)
    setup_logging(config.logging)
    if args.workers:
        config.pipeline.max_workers = args.workers

    posts = read_posts(args.input)
    logger.info(f"Loaded {len(posts)} posts from {args.input}")

    engine = build_engine(config)
    try:
        outcomes = engine.pipeline().run(posts)
    finally:
        engine.close()

    lines = [outcome.model_dump_json() for outcome in outcomes]
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.success(f"Wrote {len(lines)} results to {args.output}")
    else:
        for line in lines:
            print(line)

    failed = sum(1 for outcome in outcomes if not outcome.ok)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
