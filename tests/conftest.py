"""
Shared fixtures: an in-memory store and a scripted source.

MemoryStore applies upserts one row at a time (check, then insert or
update), which is the generic fallback a store without MERGE would use.
"""

from datetime import datetime, timezone

import pytest

from lib.errors import SchemaMigrationFailure
from lib.flatten import parse_date_time
from lib.source import Listing, Source
from lib.store import ColumnType, Store


class MemoryStore(Store):
    def __init__(self):
        self.tables: dict[str, dict] = {}
        self.ddl: list[tuple] = []
        self.upsert_calls: list[tuple[str, int]] = []
        self.refuse_ddl = False

    def table_exists(self, table_name):
        return table_name in self.tables

    def create_table(self, table_name):
        self._ddl("create_table", table_name)
        self.tables[table_name] = {
            "columns": {
                "created_at": ColumnType.DATETIME,
                "updated_at": ColumnType.DATETIME,
            },
            "indexes": {},
            "rows": {},
        }

    def columns(self, table_name):
        return dict(self.tables[table_name]["columns"])

    def add_column(self, table_name, column, column_type):
        columns = self.tables[table_name]["columns"]
        if column in columns:
            raise SchemaMigrationFailure(f"{table_name}.{column} already exists")
        self._ddl("add_column", table_name, column, column_type)
        columns[column] = column_type

    def add_index(self, table_name, column, unique=False):
        self._ddl("add_index", table_name, column, unique)
        self.tables[table_name]["indexes"][column] = unique

    def max_value(self, table_name, column):
        values = [
            row[column]
            for row in self.tables[table_name]["rows"].values()
            if row.get(column) is not None
        ]
        return max(values) if values else None

    def upsert(self, table_name, rows):
        self.upsert_calls.append((table_name, len(rows)))
        table = self.tables[table_name]
        for row in rows:
            missing = set(row) - set(table["columns"])
            assert not missing, f"{table_name} has no columns {missing}"
            key = str(row["id"])
            if key in table["rows"]:
                table["rows"][key].update(row)
            else:
                table["rows"][key] = dict(row)

    def rows(self, table_name):
        return list(self.tables[table_name]["rows"].values())

    def _ddl(self, *statement):
        if self.refuse_ddl:
            raise SchemaMigrationFailure(f"refused {statement}")
        self.ddl.append(statement)


class FakeListing(Listing):
    def __init__(self, resources, scopes=frozenset(), since_value=None):
        self.resources = resources
        self.scopes = frozenset(scopes)
        self.since_value = since_value
        self.iterated = False

    def since(self, timestamp):
        newer = [
            r
            for r in self.resources
            if "updated_at" not in r or parse_date_time(r["updated_at"]) > timestamp
        ]
        return FakeListing(newer, self.scopes, since_value=timestamp)

    def __iter__(self):
        self.iterated = True
        return iter(self.resources)


class FakeSource(Source):
    """Resources per class name, plus optional per-state resources."""

    def __init__(self, resources=None, states=None, scopes=None):
        self.resources = resources or {}
        self.states = states or {}
        self.scopes = scopes or {}
        self.listings: list[FakeListing] = []

    def listing(self, class_name):
        return self._track(
            FakeListing(self.resources.get(class_name, []), self.scopes.get(class_name, ()))
        )

    def supports_state(self, class_name):
        return class_name in self.states

    def find_by_state(self, class_name, state):
        return self._track(
            FakeListing(
                self.states[class_name].get(state, []), self.scopes.get(class_name, ())
            )
        )

    def _track(self, listing):
        self.listings.append(listing)
        return listing


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def fixed_now():
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
