# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Single-table value search and paginated browsing."""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from quarry.catalog.identifiers import quote_identifier
from quarry.catalog.introspector import ColumnDescriptor, SchemaIntrospector
from quarry.catalog.router import DataSourceRouter, LogicalDataSource
from quarry.core.config import SearchConfig
from quarry.search.cache import SearchCache
from quarry.search.predicate import Predicate, PredicateBuilder, SearchMode

logger = logging.getLogger(__name__)


@dataclass
class CountedPredicate:
    """WHERE clause, parameters and exact match count for one (table, value, mode)."""
    where_clause: str
    params: tuple[Any, ...]
    match_count: int

    def bindings(self) -> dict[str, Any]:
        return {f"p{i}": value for i, value in enumerate(self.params)}


@dataclass
class SearchResult:
    matched: bool
    count: int
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"matched": self.matched, "count": self.count, "cached": self.cached}


@dataclass
class Page:
    """One page of rows plus paging totals."""
    rows: list[dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    total_pages: int = 0
    page: int = 1
    size: int = 50
    cached: bool = False
    approximate: bool = False  # total_count is a catalog estimate

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.size

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": self.rows,
            "total_count": self.total_count,
            "total_pages": self.total_pages,
            "page": self.page,
            "size": self.size,
            "cached": self.cached,
            "approximate": self.approximate,
        }


class SearchEngine:
    """Value search over one table, backed by the search cache."""

    def __init__(
        self,
        router: DataSourceRouter,
        introspector: SchemaIntrospector,
        cache: SearchCache,
        config: Optional[SearchConfig] = None,
    ):
        self.router = router
        self.introspector = introspector
        self.cache = cache
        self.config = config or SearchConfig()

    def default_mode(self) -> SearchMode:
        return SearchMode.parse(self.config.default_mode)

    def normalize_paging(self, page: Optional[int], size: Optional[int]) -> tuple[int, int]:
        """Clamp page to >= 1 and size to 1..max_page_size (default when < 1)."""
        page = page if page and page > 0 else 1
        if size is None or size < 1:
            size = self.config.default_page_size
        size = min(size, self.config.max_page_size)
        return page, size

    def exists(self, ds: LogicalDataSource, table: str, predicate: Predicate) -> bool:
        """SELECT EXISTS probe: stops at the first matching row."""
        sql = f"SELECT EXISTS(SELECT 1 FROM {ds.qualify(table)} WHERE {predicate.clause})"
        return bool(ds.executor.scalar(sql, predicate.bindings()))

    def count_matches(
        self,
        ds: LogicalDataSource,
        table: str,
        columns: list[ColumnDescriptor],
        raw_value: str,
        mode: SearchMode,
        predicate: Optional[Predicate] = None,
    ) -> tuple[CountedPredicate, bool]:
        """Exact match count through the cache.

        Returns:
            (counted predicate, whether it came from the cache)
        """
        key = self.cache.key(ds.name, table, raw_value, mode)
        entry = self.cache.get(key)
        if entry is not None:
            return CountedPredicate(entry.where_clause, entry.params, entry.match_count), True

        generation = self.cache.generation(ds.name, table)
        if predicate is None:
            predicate = PredicateBuilder(ds.dialect).build(columns, raw_value, mode)
        count = ds.executor.scalar(
            f"SELECT COUNT(*) FROM {ds.qualify(table)} WHERE {predicate.clause}",
            predicate.bindings(),
        )
        counted = CountedPredicate(predicate.clause, predicate.params, int(count or 0))
        self.cache.put(key, counted.where_clause, counted.params, counted.match_count, generation)
        return counted, False

    def probe_table(
        self,
        ds: LogicalDataSource,
        table: str,
        columns: list[ColumnDescriptor],
        raw_value: str,
        mode: SearchMode,
    ) -> Optional[int]:
        """Match count for a table, or None if no row matches.

        A cached count answers without touching the table; otherwise an EXISTS
        probe runs first and the count is only computed for matching tables.

        Raises:
            NoApplicableColumn: if the mode leaves no column in this table
        """
        entry = self.cache.get(self.cache.key(ds.name, table, raw_value, mode))
        if entry is not None:
            return entry.match_count or None

        predicate = PredicateBuilder(ds.dialect).build(columns, raw_value, mode)
        if not self.exists(ds, table, predicate):
            return None
        counted, _ = self.count_matches(ds, table, columns, raw_value, mode, predicate)
        return counted.match_count or None

    def search(self, datasource: str, table: str, raw_value: str,
               mode: Optional[SearchMode | str] = None) -> SearchResult:
        """Whether ``raw_value`` occurs in ``table`` and how many rows match."""
        ds = self.router.resolve(datasource)
        columns = self.introspector.list_columns(ds, table)
        mode = SearchMode.parse(mode, self.default_mode())
        value = (raw_value or "").strip()

        entry = self.cache.get(self.cache.key(ds.name, table, value, mode))
        if entry is not None:
            return SearchResult(matched=entry.match_count > 0, count=entry.match_count, cached=True)

        predicate = PredicateBuilder(ds.dialect).build(columns, value, mode)
        if not self.exists(ds, table, predicate):
            return SearchResult(matched=False, count=0)
        counted, cached = self.count_matches(ds, table, columns, value, mode, predicate)
        return SearchResult(matched=counted.match_count > 0, count=counted.match_count, cached=cached)

    def paginate(
        self,
        datasource: str,
        table: str,
        raw_value: Optional[str] = None,
        page: Optional[int] = 1,
        size: Optional[int] = None,
        mode: Optional[SearchMode | str] = None,
    ) -> Page:
        """One page of rows matching ``raw_value`` (all rows when it is blank).

        Rows are ordered by primary key, or by every column when the table has
        none, so consecutive pages partition the result.
        """
        ds = self.router.resolve(datasource)
        columns = self.introspector.list_columns(ds, table)
        page, size = self.normalize_paging(page, size)
        result = Page(page=page, size=size)
        order_by = self._order_by(columns)
        paging = {"limit": size, "offset": result.offset}
        value = (raw_value or "").strip()

        if not value:
            row_count = self.introspector.exact_row_count(ds, table)
            result.total_count = row_count.count
            result.approximate = row_count.approximate
            result.rows = ds.executor.query(
                f"SELECT * FROM {ds.qualify(table)}{order_by} LIMIT :limit OFFSET :offset",
                paging,
            )
        else:
            mode = SearchMode.parse(mode, self.default_mode())
            counted, cached = self.count_matches(ds, table, columns, value, mode)
            result.total_count = counted.match_count
            result.cached = cached
            if counted.match_count > 0:
                result.rows = ds.executor.query(
                    f"SELECT * FROM {ds.qualify(table)} WHERE {counted.where_clause}"
                    f"{order_by} LIMIT :limit OFFSET :offset",
                    {**counted.bindings(), **paging},
                )

        result.total_pages = math.ceil(result.total_count / size) if result.total_count else 0
        return result

    @staticmethod
    def _order_by(columns: list[ColumnDescriptor]) -> str:
        """Primary key order, or every column in ordinal order for keyless tables."""
        keys = [c for c in columns if c.is_primary_key] or columns
        return f" ORDER BY {', '.join(quote_identifier(c.name) for c in keys)}" if keys else ""

    def find_tables_by_column(self, datasource: str, pattern: str) -> list[dict[str, str]]:
        """Tables having a column whose name contains ``pattern``."""
        ds = self.router.resolve(datasource)
        return self.introspector.find_tables_by_column(ds, pattern)
