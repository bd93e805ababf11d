# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Datasource routing: logical names to pooled connections.

Two kinds of datasource exist:

- Configured: listed under ``datasources`` in the config, each with its own
  engine (pool). Statements against it are unqualified.
- UserCreated: any other schema that exists on the default datasource's
  server. It shares the default pool and every statement is qualified as
  `` `schema`.`table` ``.

Downstream code never branches on the kind; it calls ``LogicalDataSource.qualify``.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from quarry.catalog.dialects import Dialect, dialect_for
from quarry.catalog.identifiers import quote_identifier, validate_database_name
from quarry.core.config import Config
from quarry.core.errors import ConnectionFailure, InvalidIdentifier, UnknownDataSource

logger = logging.getLogger(__name__)


class DataSourceKind(Enum):
    """How a logical datasource is reached."""
    CONFIGURED = "configured"
    USER_CREATED = "user_created"


class SqlExecutor:
    """Per-datasource SQL execution interface over a SQLAlchemy engine.

    Every call runs in its own transaction unless the executor was obtained
    from ``transaction()``, in which case all calls share that transaction.
    Parameters are always bound, never interpolated.
    """

    def __init__(self, engine: Engine, connection: Optional[Connection] = None):
        self.engine = engine
        self._connection = connection

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        if self._connection is not None:
            yield self._connection
        else:
            with self.engine.begin() as conn:
                yield conn

    def query(self, sql: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        """Run a SELECT and return rows as dicts."""
        with self._connect() as conn:
            result = conn.execute(text(sql), params or {})
            return [dict(row._mapping) for row in result]

    def scalar(self, sql: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Run a SELECT and return the first column of the first row."""
        with self._connect() as conn:
            return conn.execute(text(sql), params or {}).scalar()

    def update(self, sql: str, params: Optional[dict[str, Any]] = None) -> int:
        """Run an INSERT/UPDATE/DELETE and return the affected row count."""
        with self._connect() as conn:
            return conn.execute(text(sql), params or {}).rowcount

    def batch_update(self, sql: str, param_list: list[dict[str, Any]]) -> int:
        """Run one statement for many parameter sets (executemany)."""
        if not param_list:
            return 0
        with self._connect() as conn:
            result = conn.execute(text(sql), param_list)
            # Some drivers report -1 for executemany
            return result.rowcount if result.rowcount >= 0 else len(param_list)

    def execute_ddl(self, sql: str) -> None:
        """Run a DDL statement."""
        with self._connect() as conn:
            conn.execute(text(sql))

    @contextmanager
    def transaction(self) -> Iterator["SqlExecutor"]:
        """Yield an executor whose calls share one transaction.

        The transaction commits when the block exits normally and rolls back
        if it raises.
        """
        if self._connection is not None:
            yield self
            return
        with self.engine.begin() as conn:
            yield SqlExecutor(self.engine, connection=conn)


@dataclass(frozen=True)
class LogicalDataSource:
    """A resolved datasource: connection handle plus qualification rule."""
    name: str
    executor: SqlExecutor
    kind: DataSourceKind
    dialect: Dialect
    schema: Optional[str] = None  # UserCreated only

    @property
    def engine(self) -> Engine:
        return self.executor.engine

    @property
    def catalog_schema(self) -> Optional[str]:
        """Schema name to use for information_schema lookups."""
        return self.schema or self.engine.url.database

    def qualify(self, table: str) -> str:
        """Render a table reference for a statement against this datasource."""
        if self.kind is DataSourceKind.USER_CREATED:
            return f"{quote_identifier(self.schema)}.{quote_identifier(table)}"
        return quote_identifier(table)

    def with_executor(self, executor: SqlExecutor) -> "LogicalDataSource":
        """Same datasource bound to another executor (e.g. inside a transaction)."""
        return LogicalDataSource(
            name=self.name,
            executor=executor,
            kind=self.kind,
            dialect=self.dialect,
            schema=self.schema,
        )


class DataSourceRouter:
    """Resolves logical datasource names to connections.

    Owns one engine per configured datasource. The engine of
    ``config.default_datasource`` also serves every user-created database.
    """

    def __init__(self, config: Config):
        self.config = config
        self._engines: dict[str, Engine] = {}
        self._lock = threading.Lock()

        for name, ds_config in config.datasources.items():
            try:
                self._engines[name] = self._connect(
                    name, ds_config.get_connection_uri(), ds_config.engine_options()
                )
            except ConnectionFailure as e:
                logger.error(f"Datasource '{name}' unavailable: {e}")

    @staticmethod
    def _connect(name: str, uri: str, options: Optional[dict[str, Any]] = None) -> Engine:
        """Create an engine and test it with SELECT 1."""
        try:
            engine = create_engine(uri, **(options or {}))
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise ConnectionFailure(f"Cannot connect to datasource '{name}': {e}") from e
        logger.info(f"Connected to datasource '{name}' ({engine.dialect.name})")
        return engine

    @property
    def default_name(self) -> str:
        return self.config.default_datasource

    def default_engine(self) -> Engine:
        """Engine of the default datasource."""
        engine = self._engines.get(self.default_name)
        if engine is None:
            raise ConnectionFailure(f"Default datasource '{self.default_name}' is not connected")
        return engine

    def resolve(self, name: str) -> LogicalDataSource:
        """Resolve a logical name.

        Raises:
            UnknownDataSource: for system schemas and names that exist nowhere
            ConnectionFailure: when the backing pool is not connected
        """
        if not name:
            raise UnknownDataSource("Datasource name is required")

        with self._lock:
            engine = self._engines.get(name)
        if engine is not None:
            return self._logical(name, engine, DataSourceKind.CONFIGURED)
        if name in self.config.datasources:
            raise ConnectionFailure(f"Datasource '{name}' is configured but not connected")

        if self.config.is_system_schema(name):
            raise UnknownDataSource(f"'{name}' is a system schema")
        try:
            validate_database_name(name)
        except InvalidIdentifier as e:
            raise UnknownDataSource(f"Unknown datasource '{name}'") from e

        engine = self.default_engine()
        if name not in self._schema_names(engine):
            raise UnknownDataSource(f"Unknown datasource '{name}'")
        return self._logical(name, engine, DataSourceKind.USER_CREATED, schema=name)

    @staticmethod
    def _logical(name: str, engine: Engine, kind: DataSourceKind,
                 schema: Optional[str] = None) -> LogicalDataSource:
        return LogicalDataSource(
            name=name,
            executor=SqlExecutor(engine),
            kind=kind,
            dialect=dialect_for(engine.dialect.name),
            schema=schema,
        )

    @staticmethod
    def _schema_names(engine: Engine) -> list[str]:
        try:
            return inspect(engine).get_schema_names()
        except SQLAlchemyError as e:
            raise ConnectionFailure(f"Cannot list schemas: {e}") from e

    def resolve_target(self, datasource: str, database: Optional[str] = None) -> LogicalDataSource:
        """Resolve the datasource a DDL statement should run against.

        ``database`` names the target schema when it differs from the
        datasource; it is resolved with the same rules as ``resolve``.
        """
        if database and database != datasource:
            return self.resolve(database)
        return self.resolve(datasource)

    def user_databases(self) -> list[str]:
        """Schemas on the default server that resolve as user-created."""
        names = self._schema_names(self.default_engine())
        return sorted(
            n for n in names
            if n not in self._engines and not self.config.is_system_schema(n)
        )

    def add_datasource(self, name: str, uri: str, **options: Any) -> None:
        """Register and connect a configured datasource at runtime."""
        validate_database_name(name)
        engine = self._connect(name, uri, options)
        with self._lock:
            old = self._engines.pop(name, None)
            self._engines[name] = engine
        if old is not None:
            old.dispose()

    def remove_datasource(self, name: str) -> None:
        """Dispose and forget a configured datasource. The default cannot be removed."""
        if name == self.default_name:
            raise ValueError(f"Cannot remove the default datasource '{name}'")
        with self._lock:
            engine = self._engines.pop(name, None)
        if engine is None:
            raise UnknownDataSource(f"Unknown datasource '{name}'")
        engine.dispose()
        logger.info(f"Removed datasource '{name}'")

    def test_connection(self, name: str) -> bool:
        """Whether the datasource answers SELECT 1."""
        try:
            ds = self.resolve(name)
            return ds.executor.scalar("SELECT 1") == 1
        except (SQLAlchemyError, ConnectionFailure) as e:
            logger.warning(f"Connection test failed for '{name}': {e}")
            return False

    def list_datasources(self) -> list[dict[str, Any]]:
        """Overview of connected configured datasources."""
        with self._lock:
            engines = dict(self._engines)
        return [
            {
                "name": name,
                "kind": DataSourceKind.CONFIGURED.value,
                "dialect": engine.dialect.name,
                "default": name == self.default_name,
                "description": (
                    self.config.datasources[name].description
                    if name in self.config.datasources else ""
                ),
            }
            for name, engine in sorted(engines.items())
        ]

    def get_stats(self) -> dict[str, Any]:
        """Pool status per configured datasource."""
        with self._lock:
            engines = dict(self._engines)
        return {
            "default": self.default_name,
            "datasources": len(engines),
            "pools": {name: engine.pool.status() for name, engine in engines.items()},
        }

    def close(self) -> None:
        """Dispose every engine."""
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.dispose()
