# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Table and search result download endpoints."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from quarry.search.export import TableExporter

logger = logging.getLogger(__name__)

router = APIRouter()


def get_exporter(request: Request) -> TableExporter:
    """Dependency to get the table exporter from app state."""
    return request.app.state.exporter


@router.get("/{datasource}/{table}/info")
def export_info(
    datasource: str,
    table: str,
    value: Optional[str] = Query(default=None, description="Search value; the whole table when omitted"),
    mode: Optional[str] = Query(default=None),
    exporter: TableExporter = Depends(get_exporter),
) -> dict[str, Any]:
    """Columns and row count an export would cover."""
    return exporter.export_info(datasource, table, value, mode)


@router.get("/{datasource}/{table}")
def export_table(
    datasource: str,
    table: str,
    format: str = Query(default="csv", description="csv or xlsx"),
    value: Optional[str] = Query(default=None, description="Search value; the whole table when omitted"),
    mode: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, description="Maximum rows (server default when omitted)"),
    exporter: TableExporter = Depends(get_exporter),
) -> Response:
    """Download a table, or the rows matching a search value, as CSV or Excel."""
    result = exporter.export(datasource, table, format, value, mode, limit)
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Row-Count": str(result.row_count),
        },
    )
