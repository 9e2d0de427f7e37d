"""End-to-end tests for the sync orchestrator against the in-memory store."""

import io

import pytest
from conftest import FakeListing, FakeSource

from lib.errors import FetchFailure, SchemaMigrationFailure
from lib.store import ColumnType
from lib.sync import ALL_CLASS_NAMES, SyncOrchestrator

SALES = [
    {
        "id": "s1",
        "sale_date": "2024-01-01 09:00:00",
        "updated_at": "2024-01-01 09:05:00",
        "total_price": 10,
        "customer": {"id": "c1", "email": "a@b.co"},
        "register_sale_products": [
            {"id": "p1", "product_id": "x", "quantity": 1},
            {"id": "p2", "product_id": "y", "quantity": 2},
        ],
    },
    {
        "id": "s2",
        "updated_at": "2024-01-02 09:05:00",
        "customer": {"id": "c1", "email": "new@b.co"},
        "register_sale_products": [],
    },
]

VOIDED = [{"id": "s3", "status": "VOIDED", "updated_at": "2024-01-03 09:05:00"}]


@pytest.fixture
def source():
    return FakeSource(
        resources={"RegisterSale": SALES, "Outlet": [{"id": "o1", "name": "Main"}]},
        states={"RegisterSale": {"VOIDED": VOIDED}},
        scopes={"RegisterSale": {"since", "status"}},
    )


@pytest.fixture
def progress():
    return io.StringIO()


def snapshot(store):
    """Table contents without the updated_at stamps."""
    return {
        name: sorted(
            ({k: v for k, v in row.items() if k != "updated_at"} for row in table["rows"].values()),
            key=lambda row: row["id"],
        )
        for name, table in store.tables.items()
    }


class TestImportClass:
    def test_writes_every_touched_table(self, source, store, progress):
        written = SyncOrchestrator(source, store, progress).import_class("RegisterSale")

        assert written == {"customers": 1, "register_sale_products": 2, "register_sales": 3}
        assert {r["id"]: r["customer_id"] for r in store.rows("register_sales") if "customer_id" in r} == {
            "s1": "c1",
            "s2": "c1",
        }
        assert {r["register_sale_id"] for r in store.rows("register_sale_products")} == {"s1"}

    def test_shared_nested_object_is_last_write_wins(self, source, store, progress):
        SyncOrchestrator(source, store, progress).import_class("RegisterSale")
        assert store.rows("customers") == [
            {"id": "c1", "email": "new@b.co", "updated_at": store.rows("customers")[0]["updated_at"]}
        ]

    def test_one_upsert_per_table(self, source, store, progress):
        SyncOrchestrator(source, store, progress).import_class("RegisterSale")
        assert sorted(name for name, _ in store.upsert_calls) == [
            "customers",
            "register_sale_products",
            "register_sales",
        ]

    def test_schema_covers_columns_seen_late_in_batch(self, source, store, progress):
        """status only appears on the voided sale, fetched last."""
        SyncOrchestrator(source, store, progress).import_class("RegisterSale")

        columns = store.columns("register_sales")
        assert columns["status"] is ColumnType.TEXT
        assert columns["sale_date"] is ColumnType.DATETIME
        assert columns["total_price"] is ColumnType.DECIMAL

    def test_reports_progress(self, source, store, progress):
        SyncOrchestrator(source, store, progress).import_class("RegisterSale")
        assert progress.getvalue() == "RegisterSales...\n"

    def test_resource_without_id_is_skipped(self, store, progress):
        source = FakeSource(resources={"Tax": [{"name": "GST"}, {"id": "t1", "rate": 15}]})

        written = SyncOrchestrator(source, store, progress).import_class("Tax")

        assert written == {"taxes": 1}


class TestImportClasses:
    def test_defaults_to_all_known_classes(self, source, store, progress):
        result = SyncOrchestrator(source, store, progress).import_classes()
        assert list(result) == ALL_CLASS_NAMES

    def test_accepts_single_class_name(self, source, store, progress):
        result = SyncOrchestrator(source, store, progress).import_classes("Outlet")
        assert result == {"Outlet": {"outlets": 1}}

    def test_is_idempotent(self, source, store, progress):
        orchestrator = SyncOrchestrator(source, store, progress)

        orchestrator.import_classes(["RegisterSale", "Outlet"])
        first = snapshot(store)
        columns = {name: store.columns(name) for name in store.tables}
        orchestrator.import_classes(["RegisterSale", "Outlet"])

        assert snapshot(store) == first
        assert {name: store.columns(name) for name in store.tables} == columns

    def test_second_run_only_fetches_newer_resources(self, source, store, progress):
        orchestrator = SyncOrchestrator(source, store, progress)
        orchestrator.import_classes("RegisterSale")

        written = orchestrator.import_classes("RegisterSale")

        assert written == {"RegisterSale": {}}

    def test_additive_only_across_runs(self, store, progress):
        first = FakeSource(resources={"Product": [{"id": "1", "count": 3}]})
        second = FakeSource(resources={"Product": [{"id": "1", "count": "many", "name": "A"}]})

        SyncOrchestrator(first, store, progress).import_classes("Product")
        SyncOrchestrator(second, store, progress).import_classes("Product")

        columns = store.columns("products")
        assert columns["count"] is ColumnType.DECIMAL
        assert columns["name"] is ColumnType.TEXT


class TestFailures:
    def test_schema_failure_aborts_class(self, source, store, progress):
        store.refuse_ddl = True

        with pytest.raises(SchemaMigrationFailure):
            SyncOrchestrator(source, store, progress).import_classes(["Outlet", "RegisterSale"])

        assert progress.getvalue() == "Outlets.\n"

    def test_fetch_failure_keeps_committed_classes(self, source, store, progress):
        class BrokenListing(FakeListing):
            def __iter__(self):
                raise FetchFailure("boom")

        source.listing = lambda class_name: (
            BrokenListing([]) if class_name == "RegisterSale" else FakeListing([{"id": "o1"}])
        )

        with pytest.raises(FetchFailure):
            SyncOrchestrator(source, store, progress).import_classes(["Outlet", "RegisterSale"])

        assert [r["id"] for r in store.rows("outlets")] == ["o1"]
        assert "register_sales" not in store.tables
