"""
End-to-end sync of resource classes into the store.

For each class: fetch every resource, flatten them all into one ImportBatch,
then migrate and upsert each table the batch touched. Schema is inferred from
the whole batch, so nothing is written until flattening is done.
"""

import logging
import sys
from typing import TextIO

from lib.fetch import ResourceFetcher
from lib.fields import plural, table_name_for_class
from lib.flatten import Flattener, ImportBatch
from lib.schema import SchemaManager
from lib.source import Source
from lib.store import Store
from lib.upsert import UpsertEngine

logger = logging.getLogger(__name__)

ALL_CLASS_NAMES = [
    "Outlet",
    "Product",
    "Customer",
    "PaymentType",
    "Register",
    "RegisterSale",
    "Tax",
    "User",
]


class SyncOrchestrator:
    """
    Args:
        source: Transport the resources are fetched from
        store: Store the flattened tables are written to
        progress: Stream for progress markers (default: stdout)
    """

    def __init__(self, source: Source, store: Store, progress: TextIO = None):
        self.fetcher = ResourceFetcher(source, store)
        self.schema = SchemaManager(store)
        self.upserts = UpsertEngine(store)
        self.progress = progress if progress is not None else sys.stdout

    def import_classes(self, class_names: list[str] | str = None) -> dict[str, dict[str, int]]:
        """
        Sync each class in turn, all known classes by default.

        A failure aborts the remaining classes; tables already upserted keep
        their rows.

        Returns:
            Rows written per table, keyed by class name
        """
        if class_names is None:
            class_names = ALL_CLASS_NAMES
        elif isinstance(class_names, str):
            class_names = [class_names]

        return {class_name: self.import_class(class_name) for class_name in class_names}

    def import_class(self, class_name: str) -> dict[str, int]:
        """Fetch, flatten, migrate and upsert one resource class."""
        logger.info(f"Starting sync for {class_name}...")
        table_name = table_name_for_class(class_name)
        batch = ImportBatch()
        flattener = Flattener(batch)

        self._report(plural(class_name))
        try:
            for resource in self.fetcher.fetch(class_name):
                self._report(".")
                flattener.flatten(table_name, resource)

            written = {}
            for batch_table, records in batch:
                self.schema.ensure_table(batch_table, records)
                written[batch_table] = self.upserts.upsert(batch_table, records)
        finally:
            self._report("\n")

        if batch.skipped:
            logger.info(f"Skipped {len(batch.skipped)} non-importable items for {class_name}")
        logger.info(f"Sync complete for {class_name}: {written}")
        return written

    def _report(self, marker: str) -> None:
        self.progress.write(marker)
        self.progress.flush()
