"""
Error types raised while syncing resources into the warehouse.

SkippableRecordIssue is never raised out of a sync pass: it is recorded and
logged, and the pass moves on. The other two abort the current class.
"""


class SyncError(Exception):
    """Base class for sync errors."""


class SkippableRecordIssue(SyncError):
    """A resource or attribute that cannot be imported and is skipped."""

    def __init__(self, table_name: str, message: str):
        super().__init__(f"{table_name}: {message}")
        self.table_name = table_name
        self.message = message


class SchemaMigrationFailure(SyncError):
    """The store refused a table or column change."""


class FetchFailure(SyncError):
    """The transport failed while listing resources."""
