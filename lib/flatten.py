"""
Resource flattening.

Decomposes a tree-shaped resource into flat, per-table records linked by
foreign keys, and accumulates them in an ImportBatch.

    {"id": "1", "name": "A", "lines": [{"id": "10", "sku": "x"}]}

flattened for table "orders" gives

    orders:      {"id": "1", "name": "A", "updated_at": <now>}
    order_lines: {"id": "10", "sku": "x", "order_id": "1", "updated_at": <now>}
"""

import logging
from collections.abc import Callable, Iterator, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from lib.errors import SkippableRecordIssue
from lib.fields import (
    child_table_name,
    foreign_key,
    is_date_time_field,
    plural,
    safe_key,
)

logger = logging.getLogger(__name__)

# Upstream trees are shallow; anything deeper is treated as malformed
MAX_DEPTH = 16


class Kind(Enum):
    SCALAR = "scalar"
    OBJECT = "object"
    ARRAY = "array"


def kind_of(value: Any) -> Kind:
    """Classify a resource attribute value."""
    if isinstance(value, Mapping):
        return Kind.OBJECT
    if isinstance(value, (list, tuple)):
        return Kind.ARRAY
    return Kind.SCALAR


def is_present(value: Any) -> bool:
    """False for None and blank strings."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def parse_date_time(value: Any) -> datetime:
    """
    Parse an upstream timestamp into an aware UTC datetime.

    Accepts "2013-01-30 23:35:33", ISO 8601 with offset or trailing Z,
    and bare dates. Naive values are taken to be UTC.

    Raises:
        ValueError: If the value can't be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"not a date-time: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class ImportBatch:
    """
    Flat records for one sync pass, grouped by table.

    Tables and the records within them keep insertion order.
    """

    def __init__(self):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.skipped: list[SkippableRecordIssue] = []

    def add(self, table_name: str, record: dict[str, Any]) -> None:
        self.tables.setdefault(table_name, []).append(record)

    def skip(self, issue: SkippableRecordIssue) -> None:
        logger.warning(f"Skipping {issue}")
        self.skipped.append(issue)

    def records(self, table_name: str) -> list[dict[str, Any]]:
        return self.tables.get(table_name, [])

    def __iter__(self) -> Iterator[tuple[str, list[dict[str, Any]]]]:
        return iter(self.tables.items())

    def __len__(self) -> int:
        return sum(len(records) for records in self.tables.values())


class Flattener:
    """
    Flattens resources into an ImportBatch.

    Args:
        batch: Accumulator the flat records are appended to
        now: Clock used to stamp records that have no updated_at
        max_depth: Nesting level past which subtrees are skipped
    """

    def __init__(
        self,
        batch: ImportBatch,
        now: Callable[[], datetime] = None,
        max_depth: int = MAX_DEPTH,
    ):
        self.batch = batch
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.max_depth = max_depth

    def flatten(self, table_name: str, attrs: Mapping[str, Any]) -> None:
        """Flatten one resource destined for table_name."""
        self._flatten(table_name, attrs, depth=0, path=frozenset())

    def _flatten(
        self,
        table_name: str,
        attrs: Mapping[str, Any],
        depth: int,
        path: frozenset,
        parent_key: dict[str, Any] = None,
    ) -> None:
        if not self._enter(table_name, attrs, depth, path):
            return
        path = path | {id(attrs)}

        if parent_key:
            attrs = {**attrs, **parent_key}

        record_id = attrs.get("id")
        if record_id is None:
            # composite key resources can't be imported
            self.batch.skip(
                SkippableRecordIssue(table_name, f"no id in {', '.join(attrs)}")
            )
            return

        record: dict[str, Any] = {}
        self._collect(table_name, record_id, attrs, record, "", depth, path)

        if "updated_at" not in record:
            record["updated_at"] = self.now()
        self.batch.add(table_name, record)

    def _enter(self, table_name, attrs, depth, path) -> bool:
        if depth > self.max_depth:
            self.batch.skip(
                SkippableRecordIssue(table_name, f"nested deeper than {self.max_depth}")
            )
            return False
        if id(attrs) in path:
            self.batch.skip(SkippableRecordIssue(table_name, "cyclic reference"))
            return False
        return True

    def _collect(
        self,
        table_name: str,
        record_id: Any,
        attrs: Mapping[str, Any],
        record: dict[str, Any],
        prefix: str,
        depth: int,
        path: frozenset,
    ) -> None:
        for raw_key, value in attrs.items():
            key = safe_key(f"{prefix}{raw_key}")
            kind = kind_of(value)

            if kind is Kind.ARRAY:
                child_table = child_table_name(table_name, key)
                parent_key = {foreign_key(table_name): record_id}
                for element in value:
                    if kind_of(element) is Kind.OBJECT:
                        self._flatten(child_table, element, depth + 1, path, parent_key)
                    else:
                        self.batch.skip(
                            SkippableRecordIssue(
                                table_name, f"ignoring {key} => {element!r}"
                            )
                        )

            elif kind is Kind.OBJECT:
                if value.get("id") is None:
                    # No identity of its own: inline as prefixed columns
                    if self._enter(table_name, value, depth + 1, path):
                        self._collect(
                            table_name,
                            record_id,
                            value,
                            record,
                            f"{key}_",
                            depth + 1,
                            path | {id(value)},
                        )
                else:
                    self._flatten(plural(key), value, depth + 1, path)
                    record[f"{key}_id"] = value["id"]

            elif is_present(value):
                if is_date_time_field(key):
                    self._collect_date_time(table_name, key, value, record)
                else:
                    record[key] = value

    def _collect_date_time(self, table_name, key, value, record) -> None:
        try:
            record[key] = parse_date_time(value)
        except ValueError:
            self.batch.skip(
                SkippableRecordIssue(table_name, f"unparseable date-time {key} => {value!r}")
            )
