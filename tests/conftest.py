# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Pytest configuration and fixtures.

Every test runs against SQLite files under ``tmp_path``:

- ``login.db``: the default datasource
- ``chem.db``: a second configured datasource with the search fixtures
- ``lab.db``: ATTACH-ed to every connection of the default datasource as
  ``lab``, standing in for a user-created database on the default server
"""

from pathlib import Path
from typing import Callable, Generator

import pytest
from sqlalchemy import create_engine, event, text

from quarry.catalog.introspector import SchemaIntrospector
from quarry.catalog.router import DataSourceRouter
from quarry.core.config import Config, DataSourceConfig
from quarry.search.cache import SearchCache
from quarry.search.engine import SearchEngine


CHEM_SCHEMA = [
    "CREATE TABLE compounds (id INTEGER PRIMARY KEY, name VARCHAR(64) NOT NULL, formula VARCHAR(32))",
    "CREATE TABLE assays (id INTEGER PRIMARY KEY, compound_id INTEGER, result VARCHAR(32))",
    "CREATE TABLE measurements (id INTEGER PRIMARY KEY, reading INTEGER)",
    "CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)",
    "INSERT INTO compounds VALUES (1, 'Aspirin', 'C9H8O4')",
    "INSERT INTO compounds VALUES (2, 'Caffeine', 'C8H10N4O2')",
    "INSERT INTO compounds VALUES (123, 'Ibuprofen', 'C13H18O2')",
    "INSERT INTO compounds VALUES (4, 'Compound 123-B', NULL)",
    "INSERT INTO assays VALUES (1, 1, 'active')",
    "INSERT INTO assays VALUES (2, 123, 'inactive')",
    "INSERT INTO assays VALUES (3, 2, 'active')",
    "INSERT INTO measurements VALUES (1, 5)",
    "INSERT INTO measurements VALUES (2, 7)",
    "INSERT INTO notes VALUES (1, 'ASPIRIN reduces fever')",
    "INSERT INTO notes VALUES (2, 'Store below 25C')",
]

LOGIN_SCHEMA = [
    "CREATE TABLE accounts (id INTEGER PRIMARY KEY, username VARCHAR(32) NOT NULL)",
    "INSERT INTO accounts VALUES (1, 'admin')",
]

LAB_SCHEMA = [
    "CREATE TABLE samples (id INTEGER PRIMARY KEY, label VARCHAR(32))",
    "INSERT INTO samples VALUES (1, 'aspirin batch')",
    "INSERT INTO samples VALUES (2, 'control')",
]


def _seed(path: Path, statements: list[str]) -> Path:
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    engine.dispose()
    return path


@pytest.fixture
def db_paths(tmp_path) -> dict[str, Path]:
    """Seeded SQLite files keyed by logical name."""
    return {
        "login": _seed(tmp_path / "login.db", LOGIN_SCHEMA),
        "chem": _seed(tmp_path / "chem.db", CHEM_SCHEMA),
        "lab": _seed(tmp_path / "lab.db", LAB_SCHEMA),
    }


@pytest.fixture
def config(db_paths) -> Config:
    """Config with 'login' (default) and 'chem' configured."""
    return Config(
        datasources={
            "login": DataSourceConfig(uri=f"sqlite:///{db_paths['login']}", description="Default server"),
            "chem": DataSourceConfig(uri=f"sqlite:///{db_paths['chem']}", description="Chemistry"),
        },
        default_datasource="login",
    )


@pytest.fixture
def attach_lab(db_paths) -> Callable[[DataSourceRouter], None]:
    """Attach lab.db to every connection of a router's default engine."""
    lab_path = str(db_paths["lab"])

    def attach(router: DataSourceRouter) -> None:
        engine = router.default_engine()

        @event.listens_for(engine, "connect")
        def attach_lab_database(dbapi_connection, connection_record):
            dbapi_connection.execute(f"ATTACH DATABASE '{lab_path}' AS lab")

        # Drop pooled connections opened before the listener existed
        engine.dispose()

    return attach


@pytest.fixture
def router(config, attach_lab) -> Generator[DataSourceRouter, None, None]:
    router = DataSourceRouter(config)
    attach_lab(router)
    yield router
    router.close()


@pytest.fixture
def introspector() -> SchemaIntrospector:
    return SchemaIntrospector()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> SearchCache:
    return SearchCache(ttl_minutes=30, idle_timeout_minutes=10, capacity=1000, clock=clock)


@pytest.fixture
def engine(router, introspector, cache, config) -> SearchEngine:
    return SearchEngine(router, introspector, cache, config.search)


def brute_force_matches(router: DataSourceRouter, datasource: str, value: str) -> set[str]:
    """Tables with a row containing ``value`` (auto mode semantics, checked in Python)."""
    ds = router.resolve(datasource)
    introspector = SchemaIntrospector()
    numeric = value.lstrip("+-").isdigit()
    needle = value.lower()
    found = set()
    for table in introspector.list_tables(ds):
        text_columns = {
            c.name for c in table.columns
            if c.sql_type.upper().split("(")[0] not in ("INTEGER", "INT", "BIGINT")
        }
        for row in ds.executor.query(f"SELECT * FROM {ds.qualify(table.name)}"):
            for name, cell in row.items():
                if cell is None:
                    continue
                if name not in text_columns and not numeric:
                    continue
                if needle in str(cell).lower():
                    found.add(table.name)
    return found


@pytest.fixture
def brute_force():
    return brute_force_matches
