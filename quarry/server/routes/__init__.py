# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""API route modules."""

from quarry.server.routes.cache import router as cache_router
from quarry.server.routes.catalog import router as catalog_router
from quarry.server.routes.data import router as data_router
from quarry.server.routes.ddl import router as ddl_router
from quarry.server.routes.search import router as search_router

__all__ = ["catalog_router", "search_router", "ddl_router", "data_router", "cache_router"]
