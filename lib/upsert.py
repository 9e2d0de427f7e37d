"""
Batched, idempotent writes keyed by id.
"""

import logging
from typing import Any

from lib.store import Store

logger = logging.getLogger(__name__)


def partition(record: dict[str, Any]) -> tuple[Any, dict[str, Any]]:
    """Split a flat record into its id and the remaining attributes."""
    attributes = {key: value for key, value in record.items() if key != "id"}
    return record["id"], attributes


def combine(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Collapse records sharing an id into one row, keeping first-seen order.

    Later attributes override earlier ones, which is what writing the records
    one at a time would leave behind.
    """
    rows: dict[str, dict[str, Any]] = {}
    for record in records:
        record_id, attributes = partition(record)
        row = rows.setdefault(str(record_id), {"id": record_id})
        row.update(attributes)
    return list(rows.values())


class UpsertEngine:
    """Writes one batch per table through the store's upsert primitive."""

    def __init__(self, store: Store):
        self.store = store

    def upsert(self, table_name: str, records: list[dict[str, Any]]) -> int:
        """
        Insert new ids and overwrite existing ones in a single batch.

        Returns:
            Number of distinct rows written
        """
        if not records:
            logger.info(f"No rows to upsert into {table_name}")
            return 0

        rows = combine(records)
        logger.info(f"Upserting {len(rows)} rows into {table_name}...")
        self.store.upsert(table_name, rows)
        return len(rows)
