"""
Batch upsert engine.

Writes normalized records with ``INSERT ... ON CONFLICT`` keyed by each
table's natural key. The transaction scope is an explicit per-table choice:

- BATCH: one transaction for the whole call; any failure rolls everything
  back and raises PersistenceError with zero successes.
- PER_RECORD: one transaction with a savepoint per record; a bad record is
  rolled back on its own and reported, the rest commit.
- SUB_BATCH: one transaction per chunk; a failing chunk is rolled back and
  every key in it is reported.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

import psycopg2
from psycopg2.extras import Json, execute_values

from marketsync.errors import PersistenceError
from marketsync.utils.logging_utils import log_error, log_progress, log_warning

# Errors a single malformed record can raise while being adapted or written
RECORD_ERRORS = (psycopg2.Error, TypeError, ValueError)


def _rollback(conn: Any) -> None:
    """Roll back unless the connection is already gone."""
    if not conn.closed:
        conn.rollback()


class TransactionMode(enum.Enum):
    BATCH = "batch"
    PER_RECORD = "per_record"
    SUB_BATCH = "sub_batch"


@dataclass(frozen=True)
class UpsertSpec:
    """
    Target table description.

    Attributes:
        table: Table name
        columns: Inserted columns, read from the record dict by name
        conflict_columns: Natural key (a unique constraint on the table)
        update_columns: Mutable columns overwritten on conflict; empty means DO NOTHING
        touch_columns: Columns set to CURRENT_TIMESTAMP on conflict
        json_columns: Columns adapted as JSONB
        mode: Transaction scope
        sub_batch_size: Chunk size for SUB_BATCH mode and execute_values pages
    """

    table: str
    columns: Tuple[str, ...]
    conflict_columns: Tuple[str, ...]
    update_columns: Tuple[str, ...] = ()
    touch_columns: Tuple[str, ...] = ()
    json_columns: Tuple[str, ...] = ()
    mode: TransactionMode = TransactionMode.BATCH
    sub_batch_size: int = 100

    def has_key(self, record: Dict[str, Any]) -> bool:
        return all(record.get(column) is not None for column in self.conflict_columns)

    def key_of(self, record: Dict[str, Any]) -> Any:
        values = tuple(record.get(column) for column in self.conflict_columns)
        return values[0] if len(values) == 1 else values

    def row_of(self, record: Dict[str, Any]) -> Tuple[Any, ...]:
        return tuple(
            Json(record.get(column)) if column in self.json_columns else record.get(column)
            for column in self.columns
        )

    def insert_sql(self, multi_row: bool = False) -> str:
        """
        Build the upsert statement.

        ``multi_row`` produces the ``VALUES %s`` form expected by execute_values.
        """
        values = "%s" if multi_row else "(" + ", ".join(["%s"] * len(self.columns)) + ")"
        assignments = [f"{column} = EXCLUDED.{column}" for column in self.update_columns]
        assignments += [f"{column} = CURRENT_TIMESTAMP" for column in self.touch_columns]
        conflict = ", ".join(self.conflict_columns)
        if assignments:
            on_conflict = f"ON CONFLICT ({conflict}) DO UPDATE SET " + ", ".join(assignments)
        else:
            on_conflict = f"ON CONFLICT ({conflict}) DO NOTHING"
        return (
            f"INSERT INTO {self.table} ({', '.join(self.columns)}) "
            f"VALUES {values} {on_conflict}"
        )


@dataclass
class RecordFailure:
    key: Any
    error: str


@dataclass
class UpsertResult:
    success_count: int = 0
    failures: List[RecordFailure] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


class BatchUpsertEngine:
    """
    Writes batches for one table under the table's transaction mode.

    Args:
        db: Database providing ``connection()``
        spec: Target table description
    """

    def __init__(self, db: Any, spec: UpsertSpec):
        self.db = db
        self.spec = spec
        self.label = f"Upsert - {spec.table}"

    def upsert(self, records: Sequence[Dict[str, Any]]) -> UpsertResult:
        """
        Write one batch.

        Records missing part of their natural key are reported as failures
        and never written. Records sharing a natural key are collapsed (last
        one wins) so that a multi-row statement never updates the same row
        twice.

        Returns:
            UpsertResult with per-record failures (in BATCH mode, only the
            records rejected for a missing key)

        Raises:
            PersistenceError: BATCH mode failure, or a failure outside any record
        """
        if not records:
            return UpsertResult()

        keyless = [record for record in records if not self.spec.has_key(record)]
        if keyless:
            log_warning(
                self.label,
                f"Rejected {len(keyless)} records without {', '.join(self.spec.conflict_columns)}",
            )
            records = [record for record in records if self.spec.has_key(record)]

        unique_records = self._collapse_duplicates(records)
        if len(unique_records) < len(records):
            log_progress(
                self.label,
                f"Collapsed {len(records) - len(unique_records)} duplicate keys in batch",
            )

        if not unique_records:
            result = UpsertResult()
        elif self.spec.mode is TransactionMode.PER_RECORD:
            result = self._upsert_per_record(unique_records)
        elif self.spec.mode is TransactionMode.SUB_BATCH:
            result = self._upsert_sub_batches(unique_records)
        else:
            result = self._upsert_batch(unique_records)
        result.failures = [
            RecordFailure(key=self.spec.key_of(record), error="missing natural key")
            for record in keyless
        ] + result.failures

        log_progress(
            self.label,
            f"Saved {result.success_count}/{len(unique_records)} records, "
            f"{result.failed_count} failed",
        )
        return result

    def _collapse_duplicates(self, records: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        by_key: Dict[Any, Dict[str, Any]] = {}
        for record in records:
            by_key[self.spec.key_of(record)] = record
        return list(by_key.values())

    def _upsert_batch(self, records: List[Dict[str, Any]]) -> UpsertResult:
        with self.db.connection() as conn:
            try:
                with conn.cursor() as cursor:
                    execute_values(
                        cursor,
                        self.spec.insert_sql(multi_row=True),
                        [self.spec.row_of(record) for record in records],
                        page_size=max(self.spec.sub_batch_size, 1),
                    )
                conn.commit()
            except RECORD_ERRORS as e:
                _rollback(conn)
                message = str(e).strip()
                log_error(self.label, f"Batch of {len(records)} rolled back: {message}")
                raise PersistenceError(
                    f"{self.spec.table}: batch rolled back: {message}",
                    result=UpsertResult(
                        success_count=0, failures=[RecordFailure(key=None, error=message)]
                    ),
                ) from e
        return UpsertResult(success_count=len(records))

    def _upsert_per_record(self, records: List[Dict[str, Any]]) -> UpsertResult:
        result = UpsertResult()
        sql = self.spec.insert_sql()

        with self.db.connection() as conn:
            try:
                with conn.cursor() as cursor:
                    for record in records:
                        key = self.spec.key_of(record)
                        cursor.execute("SAVEPOINT upsert_record")
                        try:
                            cursor.execute(sql, self.spec.row_of(record))
                        except RECORD_ERRORS as e:
                            cursor.execute("ROLLBACK TO SAVEPOINT upsert_record")
                            message = str(e).strip()
                            log_warning(self.label, f"Record {key} rejected: {message}")
                            result.failures.append(RecordFailure(key=key, error=message))
                        else:
                            cursor.execute("RELEASE SAVEPOINT upsert_record")
                            result.success_count += 1
                conn.commit()
            except psycopg2.Error as e:
                _rollback(conn)
                log_error(self.label, e)
                raise PersistenceError(
                    f"{self.spec.table}: transaction failed: {e}",
                    result=UpsertResult(success_count=0, failures=result.failures),
                ) from e
        return result

    def _upsert_sub_batches(self, records: List[Dict[str, Any]]) -> UpsertResult:
        result = UpsertResult()
        sql = self.spec.insert_sql(multi_row=True)
        size = max(self.spec.sub_batch_size, 1)

        with self.db.connection() as conn:
            for start in range(0, len(records), size):
                chunk = records[start : start + size]
                try:
                    with conn.cursor() as cursor:
                        execute_values(
                            cursor,
                            sql,
                            [self.spec.row_of(record) for record in chunk],
                            page_size=len(chunk),
                        )
                    conn.commit()
                    result.success_count += len(chunk)
                except RECORD_ERRORS as e:
                    _rollback(conn)
                    message = str(e).strip()
                    if conn.closed:
                        unwritten = [
                            RecordFailure(key=self.spec.key_of(record), error=message)
                            for record in records[start:]
                        ]
                        log_error(self.label, f"Connection lost at chunk {start // size + 1}: {message}")
                        raise PersistenceError(
                            f"{self.spec.table}: connection lost: {message}",
                            result=UpsertResult(
                                success_count=result.success_count,
                                failures=result.failures + unwritten,
                            ),
                        ) from e
                    log_warning(
                        self.label,
                        f"Chunk {start // size + 1} ({len(chunk)} records) rolled back: {message}",
                    )
                    result.failures.extend(
                        RecordFailure(key=self.spec.key_of(record), error=message)
                        for record in chunk
                    )
        return result
