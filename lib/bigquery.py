"""
BigQuery implementation of the relational store.

Provides authentication from environment variables, additive schema changes
and a staging-table MERGE for batched upserts.
"""

import base64
import json
import logging
import os
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any

from google.cloud import bigquery
from google.cloud.exceptions import GoogleCloudError, NotFound

from lib.errors import FetchFailure, SchemaMigrationFailure
from lib.store import ColumnType, Store

logger = logging.getLogger(__name__)

DEFAULT_DATASET = "vend"
DEFAULT_LOCATION = "US"

# Staging column listing which columns each row supplies
UPSERT_SET_COLUMN = "upsert_set"

# BigQuery allows at most four clustering columns
MAX_CLUSTERING_FIELDS = 4

FIELD_TYPES = {
    ColumnType.STRING: "STRING",
    ColumnType.DECIMAL: "NUMERIC",
    ColumnType.BOOLEAN: "BOOLEAN",
    ColumnType.DATETIME: "TIMESTAMP",
    ColumnType.TEXT: "STRING",
}

COLUMN_TYPES = {
    "STRING": ColumnType.STRING,
    "NUMERIC": ColumnType.DECIMAL,
    "BIGNUMERIC": ColumnType.DECIMAL,
    "INTEGER": ColumnType.DECIMAL,
    "INT64": ColumnType.DECIMAL,
    "FLOAT": ColumnType.DECIMAL,
    "FLOAT64": ColumnType.DECIMAL,
    "BOOLEAN": ColumnType.BOOLEAN,
    "BOOL": ColumnType.BOOLEAN,
    "TIMESTAMP": ColumnType.DATETIME,
    "DATETIME": ColumnType.DATETIME,
    "DATE": ColumnType.DATETIME,
}

NUMERIC_SCALE = Decimal("1e-9")

# NUMERIC holds 29 integer and 9 fractional digits
NUMERIC_PRECISION = 38

TRUE_STRINGS = frozenset({"true", "t", "1", "yes"})
FALSE_STRINGS = frozenset({"false", "f", "0", "no"})


def get_client() -> bigquery.Client:
    """
    Create a BigQuery client from environment variables.

    Expects:
        GCP_SA_KEY: Base64-encoded service account JSON
        GCP_PROJECT_ID: Target GCP project ID

    Returns:
        Authenticated BigQuery client

    Raises:
        ValueError: If required environment variables are not set
    """
    gcp_sa_key_b64 = os.environ.get("GCP_SA_KEY")
    project_id = os.environ.get("GCP_PROJECT_ID")

    if not gcp_sa_key_b64:
        raise ValueError("GCP_SA_KEY environment variable is not set")
    if not project_id:
        raise ValueError("GCP_PROJECT_ID environment variable is not set")

    sa_key_json = base64.b64decode(gcp_sa_key_b64).decode("utf-8")
    sa_info = json.loads(sa_key_json)

    return bigquery.Client.from_service_account_info(sa_info, project=project_id)


def ensure_dataset_exists(
    client: bigquery.Client,
    dataset_id: str = DEFAULT_DATASET,
    location: str = DEFAULT_LOCATION,
) -> bigquery.Dataset:
    """
    Ensure a dataset exists, creating it if necessary.

    Args:
        client: Authenticated BigQuery client
        dataset_id: Dataset name (default: vend)
        location: Dataset location (default: US)

    Returns:
        The existing or newly created Dataset
    """
    dataset_ref = bigquery.DatasetReference(client.project, dataset_id)

    try:
        dataset = client.get_dataset(dataset_ref)
        logger.debug(f"Dataset {dataset_id} already exists")
        return dataset
    except NotFound:
        dataset = bigquery.Dataset(dataset_ref)
        dataset.location = location
        dataset = client.create_dataset(dataset)
        logger.info(f"Created dataset {dataset_id} in {location}")
        return dataset


def serialize_value(value: Any, column_type: ColumnType) -> Any:
    """
    Convert a flat record value to JSON for a column of column_type.

    Values of another native kind are converted to the column's type, so the
    column's type never has to change. Values that can't be read as the
    column's type become null.
    """
    if value is None:
        return None

    if column_type is ColumnType.DATETIME:
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)

    if column_type is ColumnType.DECIMAL:
        if isinstance(value, bool):
            return str(int(value))
        try:
            number = Decimal(str(value).strip())
            if number.is_finite():
                with localcontext() as context:
                    context.prec = NUMERIC_PRECISION
                    return format(number.quantize(NUMERIC_SCALE).normalize(), "f")
        except InvalidOperation:
            pass
        logger.warning(f"Dropping non-numeric value {value!r}")
        return None

    if column_type is ColumnType.BOOLEAN:
        if not isinstance(value, str):
            return bool(value)
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        logger.warning(f"Dropping non-boolean value {value!r}")
        return None

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def build_merge_sql(
    table_ref: str,
    staging_ref: str,
    columns: list[str],
    primary_key: str = "id",
) -> str:
    """
    MERGE staged rows into table_ref on primary_key.

    Matched rows only take the columns listed in the row's upsert_set, so a
    row that doesn't mention a column leaves it alone.
    """
    update_cols = [c for c in columns if c != primary_key]

    update_clause = ",\n            ".join(
        f"T.`{c}` = IF('{c}' IN UNNEST(S.{UPSERT_SET_COLUMN}), S.`{c}`, T.`{c}`)"
        for c in update_cols
    )
    insert_cols = ", ".join(f"`{c}`" for c in columns)
    insert_vals = ", ".join(f"S.`{c}`" for c in columns)

    matched = ""
    if update_cols:
        matched = f"""
        WHEN MATCHED THEN
            UPDATE SET {update_clause}"""

    return f"""
        MERGE `{table_ref}` T
        USING `{staging_ref}` S
        ON T.`{primary_key}` = S.`{primary_key}`{matched}
        WHEN NOT MATCHED THEN
            INSERT ({insert_cols})
            VALUES ({insert_vals})
        """


class BigQueryStore(Store):
    """
    Store backed by one BigQuery dataset.

    BigQuery has no secondary indexes: a unique index on id is declared as a
    NOT ENFORCED primary key (the MERGE keeps it unique), and lookup indexes
    become clustering columns.

    Args:
        client: Authenticated BigQuery client (default: from environment)
        dataset_id: Dataset holding the synced tables
        location: Location used if the dataset has to be created
    """

    def __init__(
        self,
        client: bigquery.Client = None,
        dataset_id: str = DEFAULT_DATASET,
        location: str = DEFAULT_LOCATION,
    ):
        self.client = client or get_client()
        self.dataset_id = dataset_id
        ensure_dataset_exists(self.client, dataset_id, location)

    def table_ref(self, table_name: str) -> str:
        return f"{self.client.project}.{self.dataset_id}.{table_name}"

    def table_exists(self, table_name: str) -> bool:
        try:
            self.client.get_table(self.table_ref(table_name))
        except NotFound:
            return False
        return True

    def create_table(self, table_name: str) -> None:
        table = bigquery.Table(
            self.table_ref(table_name),
            schema=[
                bigquery.SchemaField("created_at", "TIMESTAMP"),
                bigquery.SchemaField("updated_at", "TIMESTAMP"),
            ],
        )
        try:
            self.client.create_table(table)
        except GoogleCloudError as e:
            raise SchemaMigrationFailure(f"Could not create {table_name}: {e}") from e
        logger.info(f"Created table {self.table_ref(table_name)}")

    def columns(self, table_name: str) -> dict[str, ColumnType]:
        table = self.client.get_table(self.table_ref(table_name))
        return {
            field.name: COLUMN_TYPES.get(field.field_type, ColumnType.TEXT)
            for field in table.schema
        }

    def add_column(self, table_name: str, column: str, column_type: ColumnType) -> None:
        table = self.client.get_table(self.table_ref(table_name))
        schema = list(table.schema)
        schema.append(bigquery.SchemaField(column, FIELD_TYPES[column_type]))
        table.schema = schema

        try:
            self.client.update_table(table, ["schema"])
        except GoogleCloudError as e:
            raise SchemaMigrationFailure(
                f"Could not add {table_name}.{column}: {e}"
            ) from e

    def add_index(self, table_name: str, column: str, unique: bool = False) -> None:
        try:
            if unique:
                self._add_primary_key(table_name, column)
            self._add_clustering_field(table_name, column)
        except GoogleCloudError as e:
            raise SchemaMigrationFailure(
                f"Could not index {table_name}.{column}: {e}"
            ) from e

    def _add_primary_key(self, table_name: str, column: str) -> None:
        sql = (
            f"ALTER TABLE `{self.table_ref(table_name)}` "
            f"ADD PRIMARY KEY (`{column}`) NOT ENFORCED"
        )
        self.client.query(sql).result()
        logger.info(f"Declared {table_name}.{column} as primary key")

    def _add_clustering_field(self, table_name: str, column: str) -> None:
        table = self.client.get_table(self.table_ref(table_name))
        fields = list(table.clustering_fields or [])
        if column in fields:
            return
        if len(fields) >= MAX_CLUSTERING_FIELDS:
            logger.debug(f"Not clustering {table_name} on {column}, already on {fields}")
            return

        table.clustering_fields = fields + [column]
        self.client.update_table(table, ["clustering_fields"])
        logger.info(f"Clustered {table_name} on {table.clustering_fields}")

    def max_value(self, table_name: str, column: str) -> Any:
        sql = f"SELECT MAX(`{column}`) AS value FROM `{self.table_ref(table_name)}`"
        try:
            rows = list(self.client.query(sql).result())
        except GoogleCloudError as e:
            raise FetchFailure(f"Could not read max {column} from {table_name}: {e}") from e
        if not rows:
            return None
        return rows[0]["value"]

    def upsert(self, table_name: str, rows: list[dict[str, Any]]) -> None:
        """
        Upsert rows with a single MERGE through a staging table.

        Every column in rows must already exist on the table.
        """
        if not rows:
            logger.info("No rows to merge")
            return

        table_ref = self.table_ref(table_name)
        staging_table_id = f"{table_name}_staging_{uuid.uuid4().hex[:8]}"
        staging_ref = self.table_ref(staging_table_id)

        table_columns = self.columns(table_name)
        columns = ["id"] + sorted({key for row in rows for key in row} - {"id"})
        schema = [
            bigquery.SchemaField(c, FIELD_TYPES[table_columns[c]]) for c in columns
        ]
        schema.append(bigquery.SchemaField(UPSERT_SET_COLUMN, "STRING", mode="REPEATED"))

        staged = [
            {
                **{
                    key: serialize_value(value, table_columns[key])
                    for key, value in row.items()
                },
                UPSERT_SET_COLUMN: [key for key in row if key != "id"],
            }
            for row in rows
        ]

        # Load data to staging table
        logger.info(f"Loading {len(rows)} rows to staging table {staging_ref}...")
        job_config = bigquery.LoadJobConfig(
            schema=schema,
            write_disposition=bigquery.WriteDisposition.WRITE_TRUNCATE,
        )
        job = self.client.load_table_from_json(staged, staging_ref, job_config=job_config)
        job.result()

        try:
            logger.info(f"Merging into {table_ref}...")
            query_job = self.client.query(build_merge_sql(table_ref, staging_ref, columns))
            query_job.result()
            logger.info(f"Merged {len(rows)} rows into {table_ref}")
        finally:
            # Always clean up staging table, even on failure
            try:
                self.client.delete_table(staging_ref)
                logger.debug(f"Cleaned up staging table {staging_ref}")
            except GoogleCloudError:
                logger.warning(f"Failed to clean up staging table {staging_ref}")
