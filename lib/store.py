"""
Relational store boundary.

The sync core only needs the handful of primitives below. BigQueryStore in
lib/bigquery.py is the production implementation.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any


class ColumnType(str, Enum):
    """Semantic column types, mapped to native types by each store."""

    STRING = "string"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    TEXT = "text"


class Store(ABC):
    """
    Base class for relational stores.

    Subclasses must implement existence checks, additive DDL, a scalar
    max() query and a batched upsert keyed by id.
    """

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        pass

    @abstractmethod
    def create_table(self, table_name: str) -> None:
        """Create table_name with nullable created_at/updated_at columns only."""
        pass

    @abstractmethod
    def columns(self, table_name: str) -> dict[str, ColumnType]:
        """Existing columns of table_name and their types."""
        pass

    def column_exists(self, table_name: str, column: str) -> bool:
        return column in self.columns(table_name)

    @abstractmethod
    def add_column(self, table_name: str, column: str, column_type: ColumnType) -> None:
        pass

    @abstractmethod
    def add_index(self, table_name: str, column: str, unique: bool = False) -> None:
        pass

    @abstractmethod
    def max_value(self, table_name: str, column: str) -> Any:
        pass

    @abstractmethod
    def upsert(self, table_name: str, rows: list[dict[str, Any]]) -> None:
        """
        Insert or update rows on conflicting id, in one batch.

        Columns missing from a row are left untouched when it updates an
        existing row.
        """
        pass

    def last_updated_at(self, table_name: str) -> datetime | None:
        """High-watermark for table_name, or None if there is none yet."""
        if not self.table_exists(table_name):
            return None
        if not self.column_exists(table_name, "updated_at"):
            return None
        return self.max_value(table_name, "updated_at")
