"""Record store: typed working tables exported as immutable Parquet artifacts.

Each table is dropped and recreated in an in-memory SQLite working
database, the batch is inserted row by row with per-field coercion, and the
table is exported to a temporary Parquet file beside its artifact. Staged
files are renamed over ``<output_dir>/<table>.parquet`` only by
:meth:`RecordStore.publish`, after every table of the run has been staged,
so readers never observe a partial or mixed snapshot.
"""

import json
import math
import os
import sqlite3
import logging
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from observability.metrics import indexing_metrics
from .errors import ArtifactError, RowEncodeError

logger = logging.getLogger(__name__)

ARROW_TYPES = {
    "TEXT": pa.string(),
    "INTEGER": pa.int64(),
    "REAL": pa.float64(),
    "BOOLEAN": pa.bool_(),
}


@dataclass
class WriteResult:
    """Outcome of one table write."""
    table: str
    artifact_path: Path
    inserted: int
    failed: int
    staged_path: Optional[Path] = None

    @property
    def total(self) -> int:
        return self.inserted + self.failed


def quote_identifier(name: str) -> str:
    """Quote a column or table name (``order`` is a reserved word)."""
    return '"' + name.replace('"', '""') + '"'


def coerce_value(value: Any, sql_type: str = "TEXT") -> Any:
    """Coerce one field into a value bindable to a column of ``sql_type``.

    None passes through. Strings are bound as parameters, so embedded quote
    characters need no manual escaping. Numbers and booleans are normalized
    to the column type; containers are stored as JSON text.

    Raises:
        RowEncodeError: If the value cannot be represented in the column
    """
    if value is None:
        return None

    sql_type = sql_type.upper()
    if isinstance(value, float) and not math.isfinite(value):
        raise RowEncodeError(f"Non-finite number {value!r}")

    if sql_type == "TEXT":
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, (dict, list, tuple)):
            try:
                return json.dumps(value, default=str)
            except (TypeError, ValueError) as e:
                raise RowEncodeError(f"Cannot serialize {type(value).__name__}: {e}") from e
        raise RowEncodeError(f"Unsupported type {type(value).__name__} for TEXT column")

    if sql_type in ("INTEGER", "BOOLEAN"):
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise RowEncodeError(f"Unsupported value {value!r} for {sql_type} column")

    if sql_type == "REAL":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise RowEncodeError(f"Unsupported value {value!r} for REAL column")

    raise RowEncodeError(f"Unknown column type {sql_type}")


def _as_row(record: Any) -> Mapping[str, Any]:
    if isinstance(record, Mapping):
        return record
    to_row = getattr(record, "to_row", None)
    if to_row is None:
        raise RowEncodeError(f"Record of type {type(record).__name__} has no row representation")
    return to_row()


class RecordStore:
    """Writes record batches into named, schema-typed tables and exports them.

    Use :meth:`stage` for each table of a run and :meth:`publish` once all
    of them succeeded; :meth:`write` does both for a single table. Staged
    files that were never published are removed on :meth:`close`.
    """

    def __init__(self, output_dir: Path, connection: Optional[sqlite3.Connection] = None):
        self.output_dir = Path(output_dir)
        self.conn = connection or sqlite3.connect(":memory:")
        self._pending: List[WriteResult] = []

    def close(self):
        self.discard()
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def artifact_path(self, table_name: str) -> Path:
        return self.output_dir / f"{table_name}.parquet"

    def _create_table(self, table_name: str, schema: Dict[str, str], columns: List[str]):
        unknown = [col for col in columns if col not in schema]
        if unknown:
            raise ArtifactError(f"Columns {unknown} are not declared in the schema of {table_name}")
        bad_types = {col: schema[col] for col in columns if schema[col].upper() not in ARROW_TYPES}
        if bad_types:
            raise ArtifactError(f"Unsupported column types for {table_name}: {bad_types}")

        column_defs = ", ".join(f"{quote_identifier(col)} {schema[col].upper()}" for col in columns)
        try:
            self.conn.execute(f"DROP TABLE IF EXISTS {quote_identifier(table_name)}")
            self.conn.execute(f"CREATE TABLE {quote_identifier(table_name)} ({column_defs})")
        except sqlite3.Error as e:
            raise ArtifactError(f"Failed to create table {table_name}: {e}") from e
        logger.debug(f"Table {table_name} created.")

    def _insert_rows(self, table_name: str, schema: Dict[str, str], columns: List[str],
                     records: Iterable[Any]) -> WriteResult:
        column_list = ", ".join(quote_identifier(col) for col in columns)
        placeholders = ", ".join("?" for _ in columns)
        insert_sql = f"INSERT INTO {quote_identifier(table_name)} ({column_list}) VALUES ({placeholders})"

        inserted = 0
        failed = 0
        for record in records:
            try:
                row = _as_row(record)
                values = [coerce_value(row.get(col), schema[col]) for col in columns]
                self.conn.execute(insert_sql, values)
                inserted += 1
            except (RowEncodeError, sqlite3.Error) as e:
                failed += 1
                logger.error(f"Error inserting row into {table_name}: {e}")
                logger.debug(f"Problematic record: {record!r}")

        self.conn.commit()
        return WriteResult(table=table_name, artifact_path=self.artifact_path(table_name),
                           inserted=inserted, failed=failed)

    def export(self, table_name: str, schema: Dict[str, str], columns: List[str]) -> Path:
        """Export a working table to a temporary Parquet file beside its artifact.

        The returned file is not visible under the artifact name until it is
        published.

        Raises:
            ArtifactError: If the table cannot be read or the file written
        """
        final_path = self.artifact_path(table_name)
        tmp_path: Optional[str] = None
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            column_list = ", ".join(quote_identifier(col) for col in columns)
            frame = pd.read_sql_query(
                f"SELECT {column_list} FROM {quote_identifier(table_name)} ORDER BY rowid",
                self.conn,
            )
            for col in columns:
                sql_type = schema[col].upper()
                if sql_type in ("INTEGER", "BOOLEAN"):
                    frame[col] = pd.to_numeric(frame[col]).astype("Int64")
                    if sql_type == "BOOLEAN":
                        frame[col] = frame[col].astype("boolean")
                elif sql_type == "REAL":
                    frame[col] = pd.to_numeric(frame[col]).astype("float64")

            arrow_schema = pa.schema([(col, ARROW_TYPES[schema[col].upper()]) for col in columns])
            table = pa.Table.from_pandas(frame, schema=arrow_schema, preserve_index=False)

            fd, tmp_path = tempfile.mkstemp(prefix=f".{table_name}.", suffix=".parquet.tmp",
                                            dir=self.output_dir)
            os.close(fd)
            pq.write_table(table, tmp_path)
        except (OSError, ValueError, TypeError, sqlite3.Error, pd.errors.DatabaseError, pa.ArrowException) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise ArtifactError(f"Failed to write Parquet file {final_path}: {e}") from e
        return Path(tmp_path)

    def stage(self, table_name: str, schema: Dict[str, str], columns: List[str],
              records: Iterable[Any]) -> WriteResult:
        """Replace the working table ``table_name`` with ``records`` and export it unpublished.

        Rows that fail to encode are logged, skipped and counted in
        ``WriteResult.failed``.

        Args:
            table_name: Name of the table and of the exported artifact
            schema: Column name -> SQL type (TEXT, INTEGER, REAL, BOOLEAN)
            columns: Ordered columns to persist
            records: Row mappings or objects exposing ``to_row()``

        Returns:
            WriteResult with success/failure counts and the staged file

        Raises:
            ArtifactError: If the table cannot be created or exported
        """
        start = time.time()
        self._create_table(table_name, schema, columns)
        result = self._insert_rows(table_name, schema, columns, records)
        logger.info(f"Inserted {result.inserted}/{result.total} rows into {table_name}.")
        if result.total == 0:
            logger.warning(f"No data provided for {table_name}; exporting an empty artifact.")

        result.staged_path = self.export(table_name, schema, columns)
        self._pending.append(result)
        indexing_metrics.record_table(table_name, result.inserted, result.failed, time.time() - start)
        return result

    def publish(self) -> List[WriteResult]:
        """Rename every staged file over its artifact.

        Raises:
            ArtifactError: If a rename fails; files not yet renamed are discarded
        """
        published: List[WriteResult] = []
        try:
            while self._pending:
                result = self._pending[0]
                os.replace(result.staged_path, result.artifact_path)
                self._pending.pop(0)
                result.staged_path = None
                published.append(result)
                logger.info(f"Successfully wrote {result.artifact_path}")
        except OSError as e:
            self.discard()
            raise ArtifactError(f"Failed to publish {result.artifact_path}: {e}") from e
        return published

    def discard(self) -> None:
        """Remove staged files that were never published."""
        while self._pending:
            result = self._pending.pop()
            if result.staged_path and result.staged_path.exists():
                result.staged_path.unlink()
                logger.debug(f"Discarded unpublished export of {result.table}")
            result.staged_path = None

    def write(self, table_name: str, schema: Dict[str, str], columns: List[str],
              records: Iterable[Any]) -> WriteResult:
        """Stage and immediately publish a single table.

        Table creation or export failures raise :class:`ArtifactError` and
        leave the previous artifact in place.
        """
        try:
            result = self.stage(table_name, schema, columns, records)
        except ArtifactError:
            self.discard()
            raise
        self.publish()
        return result
