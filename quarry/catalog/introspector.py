# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Schema introspection for any accessible schema.

Reflection goes through the SQLAlchemy inspector so the same code serves
configured datasources (unqualified) and user-created databases (``schema=``).
A fresh inspector is used per call so schema changes are always visible.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import inspect
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import SQLAlchemyError

from quarry.catalog.router import LogicalDataSource
from quarry.core.errors import TableNotFound

logger = logging.getLogger(__name__)


@dataclass
class ColumnDescriptor:
    """Metadata for a single column."""
    name: str
    sql_type: str
    nullable: bool = True
    is_primary_key: bool = False
    is_auto_increment: bool = False
    default_value: Optional[str] = None
    comment: Optional[str] = None

    @property
    def is_required(self) -> bool:
        """NOT NULL without a default and not generated by the database."""
        return not self.nullable and self.default_value is None and not self.is_auto_increment

    def to_dict(self) -> dict[str, Any]:
        result = {
            "name": self.name,
            "type": self.sql_type,
            "nullable": self.nullable,
            "primary_key": self.is_primary_key,
            "auto_increment": self.is_auto_increment,
        }
        if self.default_value is not None:
            result["default"] = self.default_value
        if self.comment:
            result["comment"] = self.comment
        return result


@dataclass
class ForeignKeyDescriptor:
    """Foreign key relationship (first column of composite keys)."""
    from_column: str
    to_table: str
    to_column: str


@dataclass
class IndexDescriptor:
    """One index with its columns in key order. The primary key is named PRIMARY."""
    name: str
    columns: list[str] = field(default_factory=list)
    unique: bool = False
    primary: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": self.columns,
            "unique": self.unique,
            "primary": self.primary,
        }


@dataclass
class TableDescriptor:
    """Full metadata for a table."""
    name: str
    columns: list[ColumnDescriptor] = field(default_factory=list)
    row_count_estimate: Optional[int] = None
    comment: Optional[str] = None

    @property
    def primary_keys(self) -> list[str]:
        return [c.name for c in self.columns if c.is_primary_key]

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
            "primary_keys": self.primary_keys,
            "row_count_estimate": self.row_count_estimate,
        }
        if self.comment:
            result["comment"] = self.comment
        return result


@dataclass
class RowCount:
    """Row count, flagged when it is a catalog estimate instead of COUNT(*)."""
    count: int
    approximate: bool = False


class SchemaIntrospector:
    """Lists tables, columns and keys of a resolved datasource."""

    def _inspector(self, ds: LogicalDataSource) -> Inspector:
        return inspect(ds.engine)

    def list_table_names(self, ds: LogicalDataSource) -> list[str]:
        """Table names ordered by name."""
        return sorted(self._inspector(ds).get_table_names(schema=ds.schema))

    def table_exists(self, ds: LogicalDataSource, table: str) -> bool:
        return table in self.list_table_names(ds)

    def require_table(self, ds: LogicalDataSource, table: str) -> str:
        """Check a user-supplied table name against the catalog.

        Raises:
            TableNotFound: if the table does not exist
        """
        if not self.table_exists(ds, table):
            raise TableNotFound(table, ds.name)
        return table

    def list_tables(self, ds: LogicalDataSource, include_columns: bool = True) -> list[TableDescriptor]:
        """Describe every table in the datasource, ordered by name."""
        inspector = self._inspector(ds)
        estimates = self.row_estimates(ds)
        tables = []
        for name in sorted(inspector.get_table_names(schema=ds.schema)):
            tables.append(TableDescriptor(
                name=name,
                columns=self._columns(inspector, ds, name) if include_columns else [],
                row_count_estimate=estimates.get(name),
                comment=self._table_comment(inspector, ds, name),
            ))
        return tables

    def get_table(self, ds: LogicalDataSource, table: str) -> TableDescriptor:
        """Describe one table.

        Raises:
            TableNotFound: if the table does not exist
        """
        self.require_table(ds, table)
        inspector = self._inspector(ds)
        return TableDescriptor(
            name=table,
            columns=self._columns(inspector, ds, table),
            row_count_estimate=self.row_estimates(ds).get(table),
            comment=self._table_comment(inspector, ds, table),
        )

    def list_columns(self, ds: LogicalDataSource, table: str) -> list[ColumnDescriptor]:
        """Columns in ordinal order.

        Raises:
            TableNotFound: if the table does not exist
        """
        self.require_table(ds, table)
        return self._columns(self._inspector(ds), ds, table)

    def primary_keys(self, ds: LogicalDataSource, table: str) -> list[str]:
        """Primary key columns in key order."""
        self.require_table(ds, table)
        pk_constraint = self._inspector(ds).get_pk_constraint(table, schema=ds.schema)
        return list(pk_constraint.get("constrained_columns", [])) if pk_constraint else []

    def foreign_keys(self, ds: LogicalDataSource, table: str) -> list[ForeignKeyDescriptor]:
        self.require_table(ds, table)
        foreign_keys = []
        for fk in self._inspector(ds).get_foreign_keys(table, schema=ds.schema):
            # Handle composite FKs by taking first column
            if fk["constrained_columns"] and fk["referred_columns"]:
                foreign_keys.append(ForeignKeyDescriptor(
                    from_column=fk["constrained_columns"][0],
                    to_table=fk["referred_table"],
                    to_column=fk["referred_columns"][0],
                ))
        return foreign_keys

    def indexes(self, ds: LogicalDataSource, table: str) -> list[IndexDescriptor]:
        """Primary key first, then secondary indexes ordered by name.

        Raises:
            TableNotFound: if the table does not exist
        """
        self.require_table(ds, table)
        inspector = self._inspector(ds)
        result = []
        pk_constraint = inspector.get_pk_constraint(table, schema=ds.schema)
        if pk_constraint and pk_constraint.get("constrained_columns"):
            result.append(IndexDescriptor(
                name="PRIMARY",
                columns=list(pk_constraint["constrained_columns"]),
                unique=True,
                primary=True,
            ))
        for index in sorted(inspector.get_indexes(table, schema=ds.schema), key=lambda i: i["name"] or ""):
            # Expression parts have no column name
            result.append(IndexDescriptor(
                name=index["name"],
                columns=[c for c in index["column_names"] if c],
                unique=bool(index.get("unique")),
            ))
        return result

    def _columns(self, inspector: Inspector, ds: LogicalDataSource, table: str) -> list[ColumnDescriptor]:
        pk_constraint = inspector.get_pk_constraint(table, schema=ds.schema)
        primary_keys = set(pk_constraint.get("constrained_columns", [])) if pk_constraint else set()

        columns = []
        for col in inspector.get_columns(table, schema=ds.schema):
            default = col.get("default")
            columns.append(ColumnDescriptor(
                name=col["name"],
                sql_type=str(col["type"]),
                nullable=bool(col.get("nullable", True)),
                is_primary_key=col["name"] in primary_keys,
                is_auto_increment=col.get("autoincrement") is True,
                default_value=str(default) if default is not None else None,
                comment=col.get("comment"),
            ))
        return columns

    @staticmethod
    def _table_comment(inspector: Inspector, ds: LogicalDataSource, table: str) -> Optional[str]:
        if not ds.dialect.supports_comments:
            return None
        try:
            comment_info = inspector.get_table_comment(table, schema=ds.schema)
        except (NotImplementedError, SQLAlchemyError):
            return None
        if comment_info and comment_info.get("text"):
            return comment_info["text"]
        return None

    def row_estimates(self, ds: LogicalDataSource) -> dict[str, int]:
        """Catalog row estimates by table name (empty where the dialect has none)."""
        if not ds.dialect.supports_row_estimates or not ds.catalog_schema:
            return {}
        try:
            rows = ds.executor.query(
                "SELECT TABLE_NAME, TABLE_ROWS FROM information_schema.TABLES "
                "WHERE TABLE_SCHEMA = :schema",
                {"schema": ds.catalog_schema},
            )
        except SQLAlchemyError as e:
            logger.warning(f"Row estimates unavailable for '{ds.name}': {e}")
            return {}
        return {
            row["TABLE_NAME"]: int(row["TABLE_ROWS"])
            for row in rows
            if row["TABLE_ROWS"] is not None
        }

    def exact_row_count(self, ds: LogicalDataSource, table: str) -> RowCount:
        """COUNT(*), falling back to the catalog estimate only if the count fails."""
        self.require_table(ds, table)
        try:
            count = ds.executor.scalar(f"SELECT COUNT(*) FROM {ds.qualify(table)}")
            return RowCount(count=int(count or 0))
        except SQLAlchemyError as e:
            logger.warning(f"COUNT(*) failed for {ds.name}.{table}, using estimate: {e}")
            estimate = self.row_estimates(ds).get(table)
            return RowCount(count=estimate or 0, approximate=True)

    def find_tables_by_column(self, ds: LogicalDataSource, pattern: str) -> list[dict[str, str]]:
        """Columns whose name contains ``pattern`` (case-insensitive), by table."""
        needle = pattern.strip().lower()
        matches = []
        for table in self.list_tables(ds):
            for col in table.columns:
                if needle in col.name.lower():
                    matches.append({"table": table.name, "column": col.name, "type": col.sql_type})
        return matches
