# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Table and database DDL REST endpoints."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request

from quarry.ddl.generator import DdlGenerator
from quarry.server.models import (
    CreateDatabaseRequest,
    CreateTableRequest,
    CreateTableResponse,
    ModifyColumnRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_ddl(request: Request) -> DdlGenerator:
    """Dependency to get the DDL generator from app state."""
    return request.app.state.ddl


@router.get("/types")
async def supported_types(ddl: DdlGenerator = Depends(get_ddl)) -> dict[str, Any]:
    """Column types accepted by CREATE TABLE."""
    return {"types": ddl.supported_types()}


@router.post("/{datasource}/tables", response_model=CreateTableResponse)
def create_table(
    datasource: str,
    body: CreateTableRequest,
    ddl: DdlGenerator = Depends(get_ddl),
) -> CreateTableResponse:
    """Validate and create a table.

    Every name, type, length and foreign key is checked before anything is
    sent to the database; a rejected request leaves no table behind.
    """
    sql = ddl.create_table(
        datasource,
        body.database,
        body.table,
        [column.to_spec() for column in body.columns],
        body.comment,
    )
    return CreateTableResponse(table=body.table, sql=sql)


@router.delete("/{datasource}/tables/{table}")
def drop_table(
    datasource: str,
    table: str,
    database: Optional[str] = Query(default=None),
    ddl: DdlGenerator = Depends(get_ddl),
) -> dict[str, Any]:
    ddl.drop_table(datasource, table, database)
    return {"status": "dropped", "table": table}


@router.put("/{datasource}/tables/{table}/columns/{column}")
def modify_column(
    datasource: str,
    table: str,
    column: str,
    body: ModifyColumnRequest,
    ddl: DdlGenerator = Depends(get_ddl),
) -> dict[str, Any]:
    """Change a column's type; nullability carries over."""
    sql = ddl.modify_column(datasource, body.database, table, column, body.type, body.length, body.decimals)
    return {"status": "modified", "table": table, "column": column, "sql": sql}


@router.post("/databases")
def create_database(
    body: CreateDatabaseRequest,
    ddl: DdlGenerator = Depends(get_ddl),
) -> dict[str, Any]:
    """Create a user database on the default server."""
    ddl.create_database(body.name, body.charset, body.collation)
    return {"status": "created", "name": body.name}


@router.delete("/databases/{name}")
def drop_database(
    name: str,
    ddl: DdlGenerator = Depends(get_ddl),
) -> dict[str, Any]:
    """Drop a user database. System schemas and configured datasources are refused."""
    ddl.drop_database(name)
    return {"status": "dropped", "name": name}
