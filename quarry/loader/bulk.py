# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Batched row loading into any routed table.

Rows are dicts keyed by column name; the first row's keys fix the column list
for the whole call. A blank value bound to a numeric column is loaded as NULL;
nested objects and arrays (from JSON input) are loaded as JSON text.

Each batch is one executemany INSERT, which the MySQL driver sends as a
multi-row ``INSERT ... VALUES (...), (...)``. Non-transactional calls commit
batch by batch and keep going after a failed batch; transactional calls run
everything in one transaction and roll back on the first failure.

Every public call invalidates the search cache for its table when it
finishes, whether it succeeded, partially succeeded or failed.
"""

import json
import logging
import time
from typing import Any, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from quarry.catalog.identifiers import quote_identifier
from quarry.catalog.introspector import ColumnDescriptor, SchemaIntrospector
from quarry.catalog.router import DataSourceRouter, LogicalDataSource
from quarry.core.errors import ColumnNotFound, classify_write_error
from quarry.core.models import ImportReport, ImportStrategy
from quarry.search.cache import SearchCache
from quarry.search.predicate import is_numeric_type

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class _TableLoad:
    """Column layout and coercion rules for one load call."""

    def __init__(self, ds: LogicalDataSource, table: str, columns: list[ColumnDescriptor], header: list[str]):
        known = {c.name for c in columns}
        unknown = [h for h in header if h not in known]
        if unknown:
            raise ColumnNotFound(f"Unknown column(s) for table '{table}': {', '.join(unknown)}")
        self.ds = ds
        self.table = table
        self.header = header
        self.numeric = {c.name for c in columns if is_numeric_type(c.sql_type)}

    @property
    def insert_sql(self) -> str:
        names = ", ".join(quote_identifier(h) for h in self.header)
        params = ", ".join(f":c{i}" for i in range(len(self.header)))
        return f"INSERT INTO {self.ds.qualify(self.table)} ({names}) VALUES ({params})"

    def coerce(self, row: Row) -> dict[str, Any]:
        """Bind parameters for one row, blank numerics as NULL."""
        params = {}
        for i, name in enumerate(self.header):
            value = row.get(name)
            if name in self.numeric and _is_blank(value):
                value = None
            elif isinstance(value, (dict, list)):
                value = json.dumps(value, default=str)
            params[f"c{i}"] = value
        return params


class BulkLoader:
    """Loads rows in batches and keeps the search cache consistent."""

    def __init__(
        self,
        router: DataSourceRouter,
        introspector: SchemaIntrospector,
        cache: SearchCache,
        batch_size: int = 5000,
    ):
        self.router = router
        self.introspector = introspector
        self.cache = cache
        self.batch_size = batch_size

    def _prepare(self, datasource: str, table: str, rows: Sequence[Row]) -> _TableLoad:
        ds = self.router.resolve(datasource)
        columns = self.introspector.list_columns(ds, table)
        header = list(rows[0].keys()) if rows else []
        return _TableLoad(ds, table, columns, header)

    def _invalidate(self, ds: LogicalDataSource, table: str) -> None:
        self.cache.invalidate_table(ds.name, table)

    # ------------------------------------------------------------------
    # Plain inserts
    # ------------------------------------------------------------------

    def insert_batch(self, datasource: str, table: str, rows: Sequence[Row],
                     batch_size: Optional[int] = None) -> ImportReport:
        """Insert in batches; a failed batch is recorded and the rest still run."""
        started = time.monotonic()
        load = self._prepare(datasource, table, rows)
        try:
            report = self._insert_batches(load, rows, batch_size or self.batch_size)
        finally:
            self._invalidate(load.ds, table)
        report.duration_ms = int((time.monotonic() - started) * 1000)
        return report

    def _insert_batches(self, load: _TableLoad, rows: Sequence[Row], batch_size: int) -> ImportReport:
        report = ImportReport(total=len(rows))
        if not rows:
            return report
        sql = load.insert_sql
        for start in range(0, len(rows), batch_size):
            batch = rows[start:start + batch_size]
            try:
                load.ds.executor.batch_update(sql, [load.coerce(r) for r in batch])
                report.success += len(batch)
            except SQLAlchemyError as e:
                error = classify_write_error(e)
                report.failure += len(batch)
                report.errors.append(
                    f"Rows {start + 1}-{start + len(batch)}: {error.kind}: {error}"
                )
                logger.warning(f"Batch insert into {load.ds.name}.{load.table} failed at row {start + 1}: {error}")
        logger.info(
            f"Inserted {report.success}/{report.total} rows into {load.ds.name}.{load.table}"
            + (f" ({report.failure} failed)" if report.failure else "")
        )
        return report

    def insert_batch_transactional(self, datasource: str, table: str, rows: Sequence[Row]) -> ImportReport:
        """Insert everything in one transaction, or nothing.

        Raises:
            QuarryError: the classified cause of the first failure, after rollback
        """
        started = time.monotonic()
        load = self._prepare(datasource, table, rows)
        try:
            with load.ds.executor.transaction() as tx:
                report = self._insert_in(load, tx, rows)
        except SQLAlchemyError as e:
            error = classify_write_error(e)
            logger.warning(f"Transactional insert into {load.ds.name}.{table} rolled back: {error}")
            raise error from e
        finally:
            self._invalidate(load.ds, table)
        report.duration_ms = int((time.monotonic() - started) * 1000)
        return report

    def _insert_in(self, load: _TableLoad, tx, rows: Sequence[Row]) -> ImportReport:
        """Insert all rows through an executor bound to an open transaction."""
        report = ImportReport(total=len(rows))
        if rows:
            sql = load.insert_sql
            for start in range(0, len(rows), self.batch_size):
                batch = rows[start:start + self.batch_size]
                tx.batch_update(sql, [load.coerce(r) for r in batch])
        report.success = len(rows)
        return report

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def overwrite(self, datasource: str, table: str, rows: Sequence[Row],
                  transactional: bool = False) -> ImportReport:
        """Delete every row, then insert. Transactional mode restores the old rows on failure."""
        started = time.monotonic()
        load = self._prepare(datasource, table, rows)
        ds = load.ds
        delete_sql = f"DELETE FROM {ds.qualify(table)}"
        try:
            if transactional:
                try:
                    with ds.executor.transaction() as tx:
                        deleted = tx.update(delete_sql)
                        report = self._insert_in(load, tx, rows)
                except SQLAlchemyError as e:
                    raise classify_write_error(e) from e
            else:
                try:
                    deleted = ds.executor.update(delete_sql)
                except SQLAlchemyError as e:
                    raise classify_write_error(e) from e
                report = self._insert_batches(load, rows, self.batch_size)
        finally:
            self._invalidate(ds, table)
        report.deleted_rows = deleted
        report.strategy = ImportStrategy.OVERWRITE.value
        report.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Overwrote {ds.name}.{table}: {deleted} deleted, {report.success} inserted")
        return report

    def append_deduplicated(
        self,
        datasource: str,
        table: str,
        rows: Sequence[Row],
        key_columns: Optional[Sequence[str]] = None,
        transactional: bool = False,
    ) -> ImportReport:
        """Insert only rows not already present.

        With ``key_columns``, a row is a duplicate when a row with the same key
        values exists. Without, it is a duplicate when an identical row exists
        (NULL matches NULL). Rows repeated within the input are also skipped.
        """
        started = time.monotonic()
        load = self._prepare(datasource, table, rows)
        keys = list(key_columns or [])
        missing = [k for k in keys if k not in load.header]
        if missing:
            raise ColumnNotFound(f"Key column(s) not in input: {', '.join(missing)}")

        try:
            if transactional:
                try:
                    with load.ds.executor.transaction() as tx:
                        fresh, skipped, notes = self._partition(load, tx, rows, keys)
                        report = self._insert_in(load, tx, fresh)
                except SQLAlchemyError as e:
                    raise classify_write_error(e) from e
            else:
                try:
                    fresh, skipped, notes = self._partition(load, load.ds.executor, rows, keys)
                except SQLAlchemyError as e:
                    raise classify_write_error(e) from e
                report = self._insert_batches(load, fresh, self.batch_size)
        finally:
            self._invalidate(load.ds, table)

        report.total = len(rows)
        report.skipped = skipped
        report.errors = notes + report.errors
        report.strategy = ImportStrategy.APPEND.value
        report.message = f"{report.success} inserted, {skipped} skipped as duplicates"
        report.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Append into {load.ds.name}.{table}: {report.message}")
        return report

    def _partition(self, load: _TableLoad, executor, rows: Sequence[Row],
                   keys: list[str]) -> tuple[list[Row], int, list[str]]:
        """Split rows into (rows to insert, skipped count, notes)."""
        table_sql = load.ds.qualify(load.table)
        if keys:
            where = " AND ".join(f"{quote_identifier(k)} = :k{i}" for i, k in enumerate(keys))
            probe_columns = keys
        else:
            where = " AND ".join(
                f"({quote_identifier(h)} = :k{i} OR ({quote_identifier(h)} IS NULL AND :k{i} IS NULL))"
                for i, h in enumerate(load.header)
            )
            probe_columns = load.header
        probe_sql = f"SELECT COUNT(*) FROM {table_sql} WHERE {where}"

        fresh: list[Row] = []
        notes: list[str] = []
        seen: set[tuple] = set()
        skipped = 0
        for index, row in enumerate(rows, start=1):
            bound = load.coerce(row)
            values = tuple(bound[f"c{load.header.index(c)}"] for c in probe_columns)
            if keys and any(_is_blank(v) for v in values):
                skipped += 1
                notes.append(f"Row {index}: missing key value, skipped")
                continue
            if values in seen:
                skipped += 1
                continue
            seen.add(values)
            params = {f"k{i}": v for i, v in enumerate(values)}
            if executor.scalar(probe_sql, params):
                skipped += 1
                continue
            fresh.append(row)
        return fresh, skipped, notes

    def bulk_import(
        self,
        datasource: str,
        table: str,
        rows: Sequence[Row],
        strategy: ImportStrategy | str = ImportStrategy.APPEND,
        transactional: bool = False,
        key_columns: Optional[Sequence[str]] = None,
    ) -> ImportReport:
        """Import rows with the given strategy.

        Append without explicit ``key_columns`` uses the table's primary key
        when every key column is present in the input, else a full-row match.
        """
        strategy = ImportStrategy(str(getattr(strategy, "value", strategy)).lower())
        if strategy is ImportStrategy.OVERWRITE:
            return self.overwrite(datasource, table, rows, transactional=transactional)

        if key_columns is None:
            ds = self.router.resolve(datasource)
            primary_keys = self.introspector.primary_keys(ds, table)
            header = list(rows[0].keys()) if rows else []
            key_columns = primary_keys if primary_keys and all(k in header for k in primary_keys) else []
        return self.append_deduplicated(datasource, table, rows, key_columns, transactional=transactional)
