# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Datasource and schema catalog REST endpoints."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request

from quarry.catalog.introspector import SchemaIntrospector
from quarry.catalog.router import DataSourceRouter
from quarry.server.models import AddDataSourceRequest, DataSourceTestResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_router(request: Request) -> DataSourceRouter:
    """Dependency to get the datasource router from app state."""
    return request.app.state.router


def get_introspector(request: Request) -> SchemaIntrospector:
    """Dependency to get the schema introspector from app state."""
    return request.app.state.introspector


@router.get("")
def list_datasources(
    ds_router: DataSourceRouter = Depends(get_router),
) -> dict[str, Any]:
    """List configured datasources and the user databases on the default server."""
    return {
        "datasources": ds_router.list_datasources(),
        "user_databases": ds_router.user_databases(),
    }


@router.post("")
def add_datasource(
    body: AddDataSourceRequest,
    ds_router: DataSourceRouter = Depends(get_router),
) -> dict[str, Any]:
    """Connect a datasource at runtime (tested with SELECT 1)."""
    ds_router.add_datasource(body.name, body.uri)
    logger.info(f"Added datasource '{body.name}'")
    return {"status": "added", "name": body.name}


@router.delete("/{name}")
def remove_datasource(
    name: str,
    ds_router: DataSourceRouter = Depends(get_router),
) -> dict[str, Any]:
    """Disconnect a runtime or configured datasource (never the default)."""
    ds_router.remove_datasource(name)
    return {"status": "removed", "name": name}


@router.get("/{name}/test", response_model=DataSourceTestResponse)
def test_datasource(
    name: str,
    ds_router: DataSourceRouter = Depends(get_router),
) -> DataSourceTestResponse:
    """Check that a datasource answers."""
    return DataSourceTestResponse(name=name, connected=ds_router.test_connection(name))


@router.get("/{datasource}/tables")
def list_tables(
    datasource: str,
    include_columns: bool = Query(default=False),
    ds_router: DataSourceRouter = Depends(get_router),
    introspector: SchemaIntrospector = Depends(get_introspector),
) -> dict[str, Any]:
    """Tables of a datasource, ordered by name, with row estimates and comments."""
    ds = ds_router.resolve(datasource)
    tables = introspector.list_tables(ds, include_columns=include_columns)
    return {
        "datasource": ds.name,
        "kind": ds.kind.value,
        "tables": [t.to_dict() for t in tables],
    }


@router.get("/{datasource}/tables/{table}")
def get_table(
    datasource: str,
    table: str,
    ds_router: DataSourceRouter = Depends(get_router),
    introspector: SchemaIntrospector = Depends(get_introspector),
) -> dict[str, Any]:
    """Columns, keys and comment of one table."""
    ds = ds_router.resolve(datasource)
    result = introspector.get_table(ds, table).to_dict()
    result["foreign_keys"] = [
        {"from_column": fk.from_column, "to_table": fk.to_table, "to_column": fk.to_column}
        for fk in introspector.foreign_keys(ds, table)
    ]
    return result


@router.get("/{datasource}/tables/{table}/count")
def count_rows(
    datasource: str,
    table: str,
    ds_router: DataSourceRouter = Depends(get_router),
    introspector: SchemaIntrospector = Depends(get_introspector),
) -> dict[str, Any]:
    """Exact row count (flagged approximate only if COUNT(*) failed)."""
    ds = ds_router.resolve(datasource)
    row_count = introspector.exact_row_count(ds, table)
    return {"table": table, "count": row_count.count, "approximate": row_count.approximate}


@router.get("/{datasource}/columns")
def find_columns(
    datasource: str,
    pattern: Optional[str] = Query(default=""),
    ds_router: DataSourceRouter = Depends(get_router),
    introspector: SchemaIntrospector = Depends(get_introspector),
) -> dict[str, Any]:
    """Tables having a column whose name contains ``pattern``."""
    ds = ds_router.resolve(datasource)
    return {"matches": introspector.find_tables_by_column(ds, pattern or "")}


@router.get("/{datasource}/tables/{table}/indexes")
def list_indexes(
    datasource: str,
    table: str,
    ds_router: DataSourceRouter = Depends(get_router),
    introspector: SchemaIntrospector = Depends(get_introspector),
) -> dict[str, Any]:
    """Indexes of a table, primary key first."""
    ds = ds_router.resolve(datasource)
    return {"table": table, "indexes": [i.to_dict() for i in introspector.indexes(ds, table)]}
