#!/usr/bin/env python3
"""
Run one of the batch analysis jobs against the configured Ollama server.

    python run_worker.py reviews [--games 2] [--reviews 2]
    python run_worker.py images [--all]

The data directory comes from --data-path or CHAT_API_DATA_PATH.
"""

import argparse
import logging
import sys
from pathlib import Path

from xat_api.settings import config
from xat_api.workers.image_analysis import run_image_analysis
from xat_api.workers.review_sentiment import run_review_sentiment

logging.basicConfig(level=config.log_level)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Batch analysis jobs for Xat API")
    parser.add_argument("--data-path", default=config.data_path, help="Data directory")
    subparsers = parser.add_subparsers(dest="job", required=True)

    reviews = subparsers.add_parser("reviews", help="Sentiment of Steam game reviews")
    reviews.add_argument("--games", type=int, default=2, help="Number of games to analyze")
    reviews.add_argument("--reviews", type=int, default=2, help="Reviews per game")

    images = subparsers.add_parser("images", help="Describe animal images")
    images.add_argument("--all", action="store_true", help="Process every animal directory")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if not args.data_path:
        logger.error("No data path given: use --data-path or CHAT_API_DATA_PATH")
        return 2

    data_path = Path(args.data_path)
    try:
        if args.job == "reviews":
            run_review_sentiment(config, data_path, args.games, args.reviews)
        else:
            run_image_analysis(config, data_path, all_dirs=args.all)
    except FileNotFoundError as e:
        logger.error(f"❌ {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
