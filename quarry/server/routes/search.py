# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Value search, paging and full-scan REST endpoints.

``/scan/{datasource}/stream`` delivers a progressive scan as Server-Sent
Events. The scan runs on the app's scan executor and publishes into an
``EventChannel``; the response generator drains it and closes the channel when
the client goes away, which stops the scan at its next table boundary.
"""

import asyncio
import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from quarry.search.channel import EventChannel
from quarry.search.engine import SearchEngine
from quarry.search.orchestrator import SearchOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

# How long one receive waits before checking for a client disconnect
_POLL_SECONDS = 0.5


def get_engine(request: Request) -> SearchEngine:
    """Dependency to get the search engine from app state."""
    return request.app.state.search_engine


def get_orchestrator(request: Request) -> SearchOrchestrator:
    """Dependency to get the scan orchestrator from app state."""
    return request.app.state.orchestrator


def get_scan_executor(request: Request) -> ThreadPoolExecutor:
    return request.app.state.scan_executor


@router.get("/search/{datasource}/{table}")
def search_table(
    datasource: str,
    table: str,
    value: str = Query(description="Value to look for"),
    mode: Optional[str] = Query(default=None, description="text_only, numeric_only, auto or all"),
    engine: SearchEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Whether a value occurs in a table and how many rows match."""
    return engine.search(datasource, table, value, mode).to_dict()


@router.get("/search/{datasource}/{table}/rows")
def search_rows(
    datasource: str,
    table: str,
    value: Optional[str] = Query(default=None, description="Value to filter by; all rows when omitted"),
    page: int = Query(default=1),
    size: Optional[int] = Query(default=None),
    mode: Optional[str] = Query(default=None),
    engine: SearchEngine = Depends(get_engine),
) -> dict[str, Any]:
    """One page of matching rows plus paging totals."""
    return engine.paginate(datasource, table, value, page=page, size=size, mode=mode).to_dict()


@router.get("/search/{datasource}")
def find_tables_by_column(
    datasource: str,
    column: str = Query(description="Substring of a column name"),
    engine: SearchEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Tables having a column whose name contains ``column``."""
    return {"matches": engine.find_tables_by_column(datasource, column)}


@router.get("/scan/{datasource}")
async def scan_datasource(
    datasource: str,
    value: str = Query(description="Value to look for"),
    mode: Optional[str] = Query(default=None),
    deadline: Optional[float] = Query(default=None, description="Deadline in seconds"),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    executor: ThreadPoolExecutor = Depends(get_scan_executor),
) -> dict[str, Any]:
    """Scan every table of a datasource and return all matches at once."""
    loop = asyncio.get_running_loop()
    # noinspection PyTypeChecker
    result = await loop.run_in_executor(
        executor,
        lambda: orchestrator.scan_all_tables(datasource, value, mode, deadline),
    )
    return result.to_dict()


@router.get("/scan/{datasource}/stream")
async def scan_datasource_stream(
    request: Request,
    datasource: str,
    value: str = Query(description="Value to look for"),
    mode: Optional[str] = Query(default=None),
    deadline: Optional[float] = Query(default=None, description="Deadline in seconds"),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    executor: ThreadPoolExecutor = Depends(get_scan_executor),
) -> StreamingResponse:
    """Scan every table and stream start/total/progress/found/.../complete events."""
    channel = EventChannel(maxsize=request.app.state.server_config.stream_queue_size)
    loop = asyncio.get_running_loop()
    loop.run_in_executor(
        executor,
        lambda: orchestrator.stream(datasource, value, channel, mode, deadline),
    )

    async def events():
        try:
            while True:
                if await request.is_disconnected():
                    logger.info(f"Client left scan of '{datasource}', cancelling")
                    break
                try:
                    event = await loop.run_in_executor(None, channel.receive, _POLL_SECONDS)
                except queue.Empty:
                    continue
                if event is None:
                    break
                yield event.to_sse()
        finally:
            channel.close()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
