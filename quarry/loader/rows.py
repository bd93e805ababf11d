# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Single-row inserts, updates and deletes on any routed table."""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from quarry.catalog.identifiers import quote_identifier
from quarry.catalog.introspector import SchemaIntrospector
from quarry.catalog.router import DataSourceRouter, LogicalDataSource
from quarry.core.errors import ColumnNotFound, classify_write_error
from quarry.search.cache import SearchCache
from quarry.search.predicate import is_numeric_type

logger = logging.getLogger(__name__)


class RowEditor:
    """Row-level writes. Each call invalidates the search cache for its table."""

    def __init__(self, router: DataSourceRouter, introspector: SchemaIntrospector, cache: SearchCache):
        self.router = router
        self.introspector = introspector
        self.cache = cache

    def _check_columns(self, ds: LogicalDataSource, table: str, names: list[str]) -> set[str]:
        """Raise ColumnNotFound for unknown names; return the numeric column names."""
        columns = self.introspector.list_columns(ds, table)
        known = {c.name for c in columns}
        unknown = [n for n in names if n not in known]
        if unknown:
            raise ColumnNotFound(f"Unknown column(s) for table '{table}': {', '.join(unknown)}")
        return {c.name for c in columns if is_numeric_type(c.sql_type)}

    @staticmethod
    def _where(conditions: dict[str, Any], params: dict[str, Any]) -> str:
        clauses = []
        for i, (name, value) in enumerate(conditions.items()):
            if value is None:
                clauses.append(f"{quote_identifier(name)} IS NULL")
            else:
                params[f"w{i}"] = value
                clauses.append(f"{quote_identifier(name)} = :w{i}")
        return " AND ".join(clauses)

    def _write(self, ds: LogicalDataSource, table: str, sql: str, params: dict[str, Any]) -> int:
        try:
            return ds.executor.update(sql, params)
        except SQLAlchemyError as e:
            raise classify_write_error(e) from e
        finally:
            self.cache.invalidate_table(ds.name, table)

    def insert_row(self, datasource: str, table: str, values: dict[str, Any]) -> int:
        """Insert one row. Blank values for numeric columns become NULL."""
        if not values:
            raise ValueError("No values to insert")
        ds = self.router.resolve(datasource)
        numeric = self._check_columns(ds, table, list(values))

        params = {}
        for i, (name, value) in enumerate(values.items()):
            if name in numeric and isinstance(value, str) and not value.strip():
                value = None
            params[f"v{i}"] = value
        names = ", ".join(quote_identifier(n) for n in values)
        placeholders = ", ".join(f":v{i}" for i in range(len(values)))
        sql = f"INSERT INTO {ds.qualify(table)} ({names}) VALUES ({placeholders})"
        count = self._write(ds, table, sql, params)
        logger.debug(f"Inserted row into {ds.name}.{table}")
        return count

    def update_rows(self, datasource: str, table: str, values: dict[str, Any],
                    conditions: dict[str, Any]) -> int:
        """Update rows matching every condition (column = value, None = IS NULL)."""
        if not values:
            raise ValueError("No values to update")
        if not conditions:
            raise ValueError("Update requires at least one condition")
        ds = self.router.resolve(datasource)
        self._check_columns(ds, table, list(values) + list(conditions))

        params: dict[str, Any] = {}
        assignments = []
        for i, (name, value) in enumerate(values.items()):
            params[f"v{i}"] = value
            assignments.append(f"{quote_identifier(name)} = :v{i}")
        where = self._where(conditions, params)
        sql = f"UPDATE {ds.qualify(table)} SET {', '.join(assignments)} WHERE {where}"
        count = self._write(ds, table, sql, params)
        logger.info(f"Updated {count} row(s) in {ds.name}.{table}")
        return count

    def delete_rows(self, datasource: str, table: str, conditions: dict[str, Any]) -> int:
        """Delete rows matching every condition. An empty condition set is refused."""
        if not conditions:
            raise ValueError("Delete requires at least one condition")
        ds = self.router.resolve(datasource)
        self._check_columns(ds, table, list(conditions))

        params: dict[str, Any] = {}
        where = self._where(conditions, params)
        count = self._write(ds, table, f"DELETE FROM {ds.qualify(table)} WHERE {where}", params)
        logger.info(f"Deleted {count} row(s) from {ds.name}.{table}")
        return count
