# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""CREATE TABLE and MODIFY COLUMN generation with primary and foreign key validation.

Every check (names, types, lengths, referenced tables and columns, type
compatibility of foreign keys, referential actions) runs before any statement
is sent, so a rejected definition never leaves a partial table behind.

Foreign key type matching compares normalized types:

- integer display width is ignored: ``INT(11)`` == ``INT``
- length/precision counts for CHAR, VARCHAR, BINARY, VARBINARY, DECIMAL, NUMERIC
- everything else compares by base type only
"""

import logging
import re
from typing import Any, Optional

from quarry.catalog.dialects import Dialect
from quarry.catalog.identifiers import (
    DATABASE_NAME_PATTERN,
    quote_identifier,
    validate_database_name,
    validate_name,
)
from quarry.catalog.introspector import SchemaIntrospector
from quarry.catalog.router import DataSourceRouter, LogicalDataSource, SqlExecutor
from quarry.core.errors import (
    ColumnNotFound,
    ForeignKeyTargetMissing,
    ForeignKeyTypeMismatch,
    InvalidColumnSpec,
    InvalidIdentifier,
    TableAlreadyExists,
    UnsupportedOperation,
)
from quarry.core.models import ColumnSpec, ReferentialAction
from quarry.search.cache import SearchCache

logger = logging.getLogger(__name__)

# name -> (category, accepts length, accepts decimals, requires length)
SUPPORTED_TYPES: dict[str, tuple[str, bool, bool, bool]] = {
    "TINYINT": ("integer", True, False, False),
    "SMALLINT": ("integer", True, False, False),
    "MEDIUMINT": ("integer", True, False, False),
    "INT": ("integer", True, False, False),
    "BIGINT": ("integer", True, False, False),
    "DECIMAL": ("decimal", True, True, True),
    "NUMERIC": ("decimal", True, True, True),
    "FLOAT": ("decimal", True, True, False),
    "DOUBLE": ("decimal", True, True, False),
    "BIT": ("integer", True, False, False),
    "BOOLEAN": ("integer", False, False, False),
    "CHAR": ("string", True, False, False),
    "VARCHAR": ("string", True, False, True),
    "TINYTEXT": ("string", False, False, False),
    "TEXT": ("string", False, False, False),
    "MEDIUMTEXT": ("string", False, False, False),
    "LONGTEXT": ("string", False, False, False),
    "JSON": ("string", False, False, False),
    "BINARY": ("binary", True, False, False),
    "VARBINARY": ("binary", True, False, True),
    "BLOB": ("binary", False, False, False),
    "MEDIUMBLOB": ("binary", False, False, False),
    "LONGBLOB": ("binary", False, False, False),
    "DATE": ("temporal", False, False, False),
    "DATETIME": ("temporal", False, False, False),
    "TIMESTAMP": ("temporal", False, False, False),
    "TIME": ("temporal", False, False, False),
    "YEAR": ("temporal", False, False, False),
}

TYPE_ALIASES = {
    "INTEGER": "INT",
    "DEC": "DECIMAL",
    "FIXED": "DECIMAL",
    "BOOL": "TINYINT",
    "BOOLEAN": "TINYINT",
    "REAL": "DOUBLE",
}

# Types whose length/precision takes part in foreign key type matching
LENGTH_SIGNIFICANT = {"CHAR", "VARCHAR", "BINARY", "VARBINARY", "DECIMAL", "NUMERIC"}

TEMPORAL_KEYWORDS = {"CURRENT_TIMESTAMP", "CURRENT_TIMESTAMP()", "NOW()", "CURRENT_DATE", "CURRENT_TIME"}

_TYPE_ARGS = re.compile(r"\(([^)]*)\)")
_BASE = re.compile(r"[A-Za-z]+")
_NUMBER = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


def normalize_type(sql_type: str) -> str:
    """Normalize a declared or reflected type for foreign key comparison."""
    text = " ".join((sql_type or "").upper().split())
    match = _BASE.search(text)
    base = match.group(0) if match else ""
    base = TYPE_ALIASES.get(base, base)
    if base in LENGTH_SIGNIFICANT:
        args = _TYPE_ARGS.search(text)
        if args:
            parts = ",".join(p.strip() for p in args.group(1).split(","))
            return f"{base}({parts})"
    return base


def render_type(spec: ColumnSpec) -> str:
    """Declared type with its length and decimals: ``DECIMAL(10,2)``."""
    base = spec.declared_type.strip().upper()
    _, accepts_length, accepts_decimals, _ = SUPPORTED_TYPES[base]
    if accepts_length and spec.length is not None:
        if accepts_decimals and spec.decimals is not None:
            return f"{base}({spec.length},{spec.decimals})"
        return f"{base}({spec.length})"
    return base


def validate_column_spec(spec: ColumnSpec) -> None:
    """Check name, type and length of one column definition.

    Raises:
        InvalidIdentifier: for a bad column name
        InvalidColumnSpec: for an unknown type, a missing required length, or a bad default
    """
    validate_name(spec.name, "column name")
    base = (spec.declared_type or "").strip().upper()
    if base not in SUPPORTED_TYPES:
        raise InvalidColumnSpec(f"Unsupported type '{spec.declared_type}' for column '{spec.name}'")
    category, accepts_length, accepts_decimals, requires_length = SUPPORTED_TYPES[base]
    if requires_length and spec.length is None:
        raise InvalidColumnSpec(f"Column '{spec.name}': type {base} requires a length")
    if spec.length is not None and (not accepts_length or spec.length < 1):
        raise InvalidColumnSpec(f"Column '{spec.name}': invalid length {spec.length} for {base}")
    if spec.decimals is not None and (not accepts_decimals or spec.decimals < 0):
        raise InvalidColumnSpec(f"Column '{spec.name}': invalid decimals {spec.decimals} for {base}")
    if spec.auto_increment and category != "integer":
        raise InvalidColumnSpec(f"Column '{spec.name}': AUTO_INCREMENT requires an integer type")
    default = _default_value(spec)
    if default is not None and category in ("integer", "decimal") and not _NUMBER.fullmatch(default):
        raise InvalidColumnSpec(f"Column '{spec.name}': default '{default}' is not numeric")


def _default_value(spec: ColumnSpec) -> Optional[str]:
    """Default to render, or None when it is unset, blank or NULL."""
    if spec.default_value is None:
        return None
    value = str(spec.default_value).strip()
    if not value or value.upper() == "NULL":
        return None
    return value


def render_column(spec: ColumnSpec, dialect: Dialect) -> str:
    """Column clause: ``name TYPE[(len[,dec])] [NOT NULL] [AUTO_INCREMENT] [DEFAULT v] [COMMENT c]``."""
    category = SUPPORTED_TYPES[spec.declared_type.strip().upper()][0]
    type_sql = render_type(spec)
    if spec.auto_increment and dialect.auto_increment_keyword is None:
        # SQLite numbers INTEGER PRIMARY KEY columns itself
        type_sql = "INTEGER"

    parts = [quote_identifier(spec.name), type_sql]
    if spec.not_null:
        parts.append("NOT NULL")
    if spec.auto_increment and dialect.auto_increment_keyword:
        parts.append(dialect.auto_increment_keyword)

    default = _default_value(spec)
    if default is not None:
        if category in ("integer", "decimal"):
            parts.append(f"DEFAULT {default}")
        elif category == "temporal" and default.upper() in TEMPORAL_KEYWORDS:
            parts.append(f"DEFAULT {default.upper()}")
        else:
            parts.append(f"DEFAULT {dialect.quote_literal(default)}")

    return " ".join(parts) + dialect.column_comment(spec.comment)


class DdlGenerator:
    """Creates and drops tables and databases on a routed datasource."""

    def __init__(self, router: DataSourceRouter, introspector: SchemaIntrospector, cache: SearchCache):
        self.router = router
        self.introspector = introspector
        self.cache = cache

    @staticmethod
    def supported_types() -> list[dict[str, Any]]:
        """Types accepted in column definitions."""
        return [
            {
                "name": name,
                "category": category,
                "accepts_length": accepts_length,
                "accepts_decimals": accepts_decimals,
                "requires_length": requires_length,
            }
            for name, (category, accepts_length, accepts_decimals, requires_length)
            in SUPPORTED_TYPES.items()
        ]

    def build_create_table(
        self,
        ds: LogicalDataSource,
        table: str,
        columns: list[ColumnSpec],
        comment: Optional[str] = None,
        charset: Optional[str] = None,
        collation: Optional[str] = None,
    ) -> str:
        """Validate every column and foreign key, then render CREATE TABLE.

        Raises:
            InvalidIdentifier, InvalidColumnSpec: for malformed definitions
            ForeignKeyTargetMissing: if a referenced table or column does not exist
            ForeignKeyTypeMismatch: if a foreign key's type differs from its target
        """
        validate_name(table, "table name")
        for option in (charset, collation):
            if option is not None and not DATABASE_NAME_PATTERN.match(option):
                raise InvalidColumnSpec(f"Invalid charset or collation '{option}'")
        if not columns:
            raise InvalidColumnSpec(f"Table '{table}' needs at least one column")

        seen: set[str] = set()
        for spec in columns:
            validate_column_spec(spec)
            if spec.name.lower() in seen:
                raise InvalidColumnSpec(f"Duplicate column name '{spec.name}'")
            seen.add(spec.name.lower())

        constraints = self._foreign_key_clauses(ds, table, columns)

        lines = [render_column(spec, ds.dialect) for spec in columns]
        primary_keys = [quote_identifier(spec.name) for spec in columns if spec.primary_key]
        if primary_keys:
            lines.append(f"PRIMARY KEY ({', '.join(primary_keys)})")
        lines.extend(constraints)

        body = ",\n  ".join(lines)
        return f"CREATE TABLE {ds.qualify(table)} (\n  {body}\n){ds.dialect.table_options(comment, charset, collation)}"

    def _foreign_key_clauses(self, ds: LogicalDataSource, table: str,
                             columns: list[ColumnSpec]) -> list[str]:
        clauses = []
        by_name = {spec.name: spec for spec in columns}
        for spec in columns:
            fk = spec.foreign_key
            if fk is None:
                continue
            validate_name(fk.ref_table, "referenced table name")
            validate_name(fk.ref_column, "referenced column name")
            try:
                on_update = ReferentialAction.parse(fk.on_update)
                on_delete = ReferentialAction.parse(fk.on_delete)
            except ValueError as e:
                raise InvalidColumnSpec(f"Column '{spec.name}': {e}") from e

            required_type = self._referenced_type(ds, table, by_name, fk.ref_table, fk.ref_column)
            column_type = normalize_type(render_type(spec))
            if column_type != normalize_type(required_type):
                raise ForeignKeyTypeMismatch(
                    column=spec.name,
                    column_type=column_type,
                    ref=f"{fk.ref_table}.{fk.ref_column}",
                    required_type=normalize_type(required_type),
                )

            if ds.dialect.supports_databases:
                ref_sql = ds.qualify(fk.ref_table)
            else:
                ref_sql = quote_identifier(fk.ref_table)
            clause = (
                f"CONSTRAINT {quote_identifier(f'fk_{table}_{spec.name}')} "
                f"FOREIGN KEY ({quote_identifier(spec.name)}) "
                f"REFERENCES {ref_sql} ({quote_identifier(fk.ref_column)})"
            )
            if on_delete is not None:
                clause += f" ON DELETE {on_delete.value}"
            if on_update is not None:
                clause += f" ON UPDATE {on_update.value}"
            clauses.append(clause)
        return clauses

    def _referenced_type(self, ds: LogicalDataSource, table: str, own_columns: dict[str, ColumnSpec],
                         ref_table: str, ref_column: str) -> str:
        """Declared type of the referenced column (self-references resolve locally)."""
        if ref_table == table:
            target = own_columns.get(ref_column)
            if target is None:
                raise ForeignKeyTargetMissing(f"Referenced column '{ref_table}.{ref_column}' does not exist")
            return render_type(target)

        if not self.introspector.table_exists(ds, ref_table):
            raise ForeignKeyTargetMissing(f"Referenced table '{ref_table}' does not exist in '{ds.name}'")
        for col in self.introspector.list_columns(ds, ref_table):
            if col.name == ref_column:
                return col.sql_type
        raise ForeignKeyTargetMissing(f"Referenced column '{ref_table}.{ref_column}' does not exist")

    def create_table(
        self,
        datasource: str,
        database: Optional[str],
        table: str,
        columns: list[ColumnSpec],
        comment: Optional[str] = None,
        charset: Optional[str] = None,
        collation: Optional[str] = None,
    ) -> str:
        """Create a table after full validation.

        Returns:
            The executed CREATE TABLE statement
        """
        ds = self.router.resolve_target(datasource, database)
        validate_name(table, "table name")
        if self.introspector.table_exists(ds, table):
            raise TableAlreadyExists(f"Table '{table}' already exists in '{ds.name}'")

        sql = self.build_create_table(ds, table, columns, comment, charset, collation)
        ds.executor.execute_ddl(sql)
        self.cache.invalidate_table(ds.name, table)
        logger.info(f"Created table {ds.name}.{table} ({len(columns)} columns)")
        return sql

    def build_modify_column(self, ds: LogicalDataSource, table: str, spec: ColumnSpec) -> str:
        """Validate a new column definition and render ALTER TABLE ... MODIFY COLUMN.

        Raises:
            InvalidIdentifier, InvalidColumnSpec: for malformed definitions
            UnsupportedOperation: if the dialect cannot change a column's type
        """
        validate_name(table, "table name")
        validate_column_spec(spec)
        if not ds.dialect.supports_modify_column:
            raise UnsupportedOperation(f"The '{ds.dialect.name}' dialect cannot modify columns")
        return f"ALTER TABLE {ds.qualify(table)} MODIFY COLUMN {render_column(spec, ds.dialect)}"

    def modify_column(
        self,
        datasource: str,
        database: Optional[str],
        table: str,
        column: str,
        declared_type: str,
        length: Optional[int] = None,
        decimals: Optional[int] = None,
    ) -> str:
        """Change the type of an existing column.

        The column is matched case-insensitively. Its NOT NULL, AUTO_INCREMENT
        (for integer targets) and comment carry over; a default does not, since
        it may not fit the new type.

        Returns:
            The executed ALTER TABLE statement

        Raises:
            TableNotFound: if the table does not exist
            ColumnNotFound: if the table has no such column
        """
        ds = self.router.resolve_target(datasource, database)
        validate_name(table, "table name")
        existing = {c.name.lower(): c for c in self.introspector.list_columns(ds, table)}.get(
            (column or "").lower()
        )
        if existing is None:
            raise ColumnNotFound(f"Column '{column}' does not exist in '{table}'")

        category = SUPPORTED_TYPES.get((declared_type or "").strip().upper(), ("",))[0]
        spec = ColumnSpec(
            name=existing.name,
            declared_type=declared_type,
            length=length,
            decimals=decimals,
            not_null=not existing.nullable,
            auto_increment=existing.is_auto_increment and category == "integer",
            comment=existing.comment,
        )
        sql = self.build_modify_column(ds, table, spec)
        ds.executor.execute_ddl(sql)
        self.cache.invalidate_table(ds.name, table)
        logger.info(f"Modified column {ds.name}.{table}.{existing.name} to {render_type(spec)}")
        return sql

    def drop_table(self, datasource: str, table: str, database: Optional[str] = None) -> None:
        ds = self.router.resolve_target(datasource, database)
        self.introspector.require_table(ds, table)
        ds.executor.execute_ddl(f"DROP TABLE {ds.qualify(table)}")
        self.cache.invalidate_table(ds.name, table)
        logger.info(f"Dropped table {ds.name}.{table}")

    def _server_executor(self) -> SqlExecutor:
        """Executor on the default server, which hosts user databases."""
        ds = self.router.resolve(self.router.default_name)
        if not ds.dialect.supports_databases:
            raise UnsupportedOperation(f"The '{ds.dialect.name}' dialect has no CREATE DATABASE")
        return ds.executor

    def create_database(self, name: str, charset: str = "utf8", collation: str = "utf8_general_ci") -> None:
        """Create a user database on the default server."""
        validate_database_name(name)
        if self.router.config.is_system_schema(name) or name in self.router.config.datasources:
            raise InvalidIdentifier(f"'{name}' is reserved")
        for option in (charset, collation):
            if not DATABASE_NAME_PATTERN.match(option):
                raise InvalidColumnSpec(f"Invalid charset or collation '{option}'")
        executor = self._server_executor()
        executor.execute_ddl(
            f"CREATE DATABASE {quote_identifier(name)} CHARACTER SET {charset} COLLATE {collation}"
        )
        logger.info(f"Created database {name}")

    def drop_database(self, name: str) -> None:
        """Drop a user database. System schemas and configured datasources are refused."""
        validate_database_name(name)
        if self.router.config.is_system_schema(name) or name in self.router.config.datasources:
            raise InvalidIdentifier(f"Cannot drop system database '{name}'")
        executor = self._server_executor()
        ds = self.router.resolve(name)
        tables = self.introspector.list_table_names(ds)
        executor.execute_ddl(f"DROP DATABASE {quote_identifier(name)}")
        for table in tables:
            self.cache.invalidate_table(name, table)
        logger.info(f"Dropped database {name}")
