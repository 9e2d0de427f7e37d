"""
Additive schema migration inferred from flat records.

plan_columns() decides which columns a batch needs and is pure; SchemaManager
applies the plan to a store. Columns are only ever added.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from lib.fields import is_date_time_field, is_identifier_field
from lib.store import ColumnType, Store

logger = logging.getLogger(__name__)


def column_type(key: str, value: Any) -> ColumnType:
    """
    Infer the column type for a key from its name, then its value.

    Identifiers are opaque strings upstream, and whole numbers go to a
    decimal column so large or later fractional values still fit.
    """
    if is_identifier_field(key):
        return ColumnType.STRING
    if is_date_time_field(key):
        return ColumnType.DATETIME
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, int):
        return ColumnType.DECIMAL
    return ColumnType.TEXT


def infer_columns(records: Iterable[Mapping[str, Any]]) -> dict[str, ColumnType]:
    """One type per column, taken from the first non-null value seen."""
    columns: dict[str, ColumnType] = {}
    decided: set[str] = set()
    for record in records:
        for key, value in record.items():
            if key in decided:
                continue
            columns[key] = column_type(key, value)
            if value is not None:
                decided.add(key)
    return columns


def plan_columns(
    existing: Iterable[str],
    records: Iterable[Mapping[str, Any]],
) -> dict[str, ColumnType]:
    """Columns the records need that the table doesn't have yet."""
    existing = set(existing)
    return {
        name: kind
        for name, kind in infer_columns(records).items()
        if name not in existing
    }


class SchemaManager:
    """Ensures tables and columns exist before records are written."""

    def __init__(self, store: Store):
        self.store = store

    def ensure_table(self, table_name: str, records: list[dict[str, Any]]) -> dict[str, ColumnType]:
        """
        Create table_name if needed and add any columns the records need.

        Returns:
            The columns that were added
        """
        if not self.store.table_exists(table_name):
            logger.info(f"Creating table {table_name}")
            self.store.create_table(table_name)

        added = plan_columns(self.store.columns(table_name), records)
        for name, kind in added.items():
            self.add_column(table_name, name, kind)

        if not added:
            logger.debug(f"Table {table_name} is up to date")
        return added

    def add_column(self, table_name: str, name: str, kind: ColumnType) -> None:
        if self.store.column_exists(table_name, name):
            return

        logger.info(f"Adding column {table_name}.{name} ({kind.value})")
        self.store.add_column(table_name, name, kind)
        if name == "id":
            self.store.add_index(table_name, name, unique=True)
        elif name.endswith("_id"):
            self.store.add_index(table_name, name)
