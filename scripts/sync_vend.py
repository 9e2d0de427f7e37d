#!/usr/bin/env python3
"""Sync Vend data to BigQuery."""

import argparse
import logging
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load .env for local development (no-op if not present)
from dotenv import load_dotenv
load_dotenv()

from lib.bigquery import DEFAULT_DATASET, BigQueryStore
from lib.sync import ALL_CLASS_NAMES, SyncOrchestrator
from sources.vend import VendSource


def parse_args(argv: list[str] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Vend data to BigQuery")
    parser.add_argument(
        "classes",
        nargs="*",
        metavar="CLASS",
        help=f"Resource classes to sync (default: {' '.join(ALL_CLASS_NAMES)})",
    )
    parser.add_argument(
        "--dataset",
        default=os.environ.get("VEND_DATASET", DEFAULT_DATASET),
        help="BigQuery dataset to write to",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log existence checks and page fetches",
    )
    return parser.parse_args(argv)


def main(argv: list[str] = None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    orchestrator = SyncOrchestrator(VendSource(), BigQueryStore(dataset_id=args.dataset))
    orchestrator.import_classes(args.classes or None)


if __name__ == "__main__":
    main()
