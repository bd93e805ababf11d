# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Quarry - schema-driven search, DDL and bulk loading over relational databases.

Quarry resolves logical datasource names to pooled connections, discovers
their tables and columns at runtime, and builds every statement from that
catalog: value searches across one table or a whole schema, validated
CREATE TABLE statements, and batched imports.

Submodules:
- core: Configuration, shared models and the error taxonomy
- catalog: Datasource routing, SQL dialects and schema introspection
- search: Predicate synthesis, search cache, paging and full-schema scans
- ddl: CREATE TABLE / DATABASE generation with key validation
- loader: Bulk import, row edits, import validation and auto-created tables
- server: FastAPI application

Main classes:
- Config: Configuration loading from YAML
- DataSourceRouter: Logical name to connection resolution
- SearchEngine / SearchOrchestrator: Single-table and full-schema search
- DdlGenerator: Table creation
- BulkLoader: Batched imports
"""

from quarry.catalog.introspector import SchemaIntrospector
from quarry.catalog.router import DataSourceRouter, LogicalDataSource
from quarry.core.config import Config
from quarry.core.errors import QuarryError
from quarry.core.models import ColumnSpec, ForeignKeySpec, ImportReport, ImportStrategy
from quarry.ddl.generator import DdlGenerator
from quarry.loader.bulk import BulkLoader
from quarry.search.cache import SearchCache
from quarry.search.engine import SearchEngine
from quarry.search.orchestrator import SearchOrchestrator
from quarry.search.predicate import SearchMode

__version__ = "0.1.0"

__all__ = [
    "BulkLoader",
    "ColumnSpec",
    "Config",
    "DataSourceRouter",
    "DdlGenerator",
    "ForeignKeySpec",
    "ImportReport",
    "ImportStrategy",
    "LogicalDataSource",
    "QuarryError",
    "SchemaIntrospector",
    "SearchCache",
    "SearchEngine",
    "SearchMode",
    "SearchOrchestrator",
]
