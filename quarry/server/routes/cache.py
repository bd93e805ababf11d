# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Search cache REST endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Request

from quarry.search.cache import SearchCache

router = APIRouter()


def get_cache(request: Request) -> SearchCache:
    return request.app.state.cache


@router.get("/stats")
async def cache_stats(cache: SearchCache = Depends(get_cache)) -> dict[str, Any]:
    return cache.stats()


@router.post("/invalidate/{datasource}/{table}")
async def invalidate_table(
    datasource: str,
    table: str,
    cache: SearchCache = Depends(get_cache),
) -> dict[str, Any]:
    """Drop cached searches of one table."""
    return {"removed": cache.invalidate_table(datasource, table)}


@router.post("/clear")
async def clear_cache(cache: SearchCache = Depends(get_cache)) -> dict[str, Any]:
    return {"removed": cache.invalidate_all()}


@router.post("/sweep")
async def sweep_cache(cache: SearchCache = Depends(get_cache)) -> dict[str, Any]:
    """Remove expired and idle entries now."""
    return {"removed": cache.sweep()}
