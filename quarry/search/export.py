# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""CSV and Excel export of a table or of a value search result.

Rows are collected through ``SearchEngine.paginate``, so a search export reuses
the cached WHERE clause and comes out in the same order as the paged view.
CSV is written with a UTF-8 byte order mark so spreadsheet tools detect the
encoding; Excel output has one sheet named after the table.
"""

import io
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from quarry.search.engine import SearchEngine
from quarry.search.predicate import SearchMode

logger = logging.getLogger(__name__)

# Excel caps sheet names at 31 characters
_SHEET_NAME_MAX = 31


class ExportFormat(str, Enum):
    CSV = "csv"
    EXCEL = "xlsx"

    @classmethod
    def parse(cls, value: "str | ExportFormat") -> "ExportFormat":
        """Parse a format name; ``excel`` and ``xls`` are accepted for xlsx."""
        if isinstance(value, ExportFormat):
            return value
        name = str(value or "").strip().lower().lstrip(".")
        if name in ("excel", "xls"):
            return cls.EXCEL
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unsupported export format '{value}'. Allowed: csv, xlsx")

    @classmethod
    def from_path(cls, path: str | Path) -> "ExportFormat":
        return cls.parse(Path(path).suffix)

    @property
    def media_type(self) -> str:
        if self is ExportFormat.CSV:
            return "text/csv; charset=utf-8"
        return "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass
class ExportResult:
    """Rendered file plus what a download response needs."""
    content: bytes
    filename: str
    file_format: ExportFormat
    row_count: int

    @property
    def media_type(self) -> str:
        return self.file_format.media_type


class TableExporter:
    """Writes table contents or search matches as CSV or Excel."""

    def __init__(self, engine: SearchEngine):
        self.engine = engine

    def frame(
        self,
        datasource: str,
        table: str,
        raw_value: Optional[str] = None,
        mode: Optional[SearchMode | str] = None,
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        """Matching rows (all rows for a blank value) as a DataFrame.

        Columns keep their ordinal order even when no row matches.
        """
        ds = self.engine.router.resolve(datasource)
        columns = [c.name for c in self.engine.introspector.list_columns(ds, table)]
        limit = limit if limit and limit > 0 else self.engine.config.export_limit
        size = min(limit, self.engine.config.max_page_size)

        rows: list[dict[str, Any]] = []
        page = 1
        while len(rows) < limit:
            result = self.engine.paginate(datasource, table, raw_value, page=page, size=size, mode=mode)
            rows.extend(result.rows)
            if not result.rows or page >= result.total_pages:
                break
            page += 1
        # object dtype keeps integer columns with NULLs from turning into floats
        return pd.DataFrame(rows[:limit], columns=columns, dtype=object)

    def export(
        self,
        datasource: str,
        table: str,
        file_format: ExportFormat | str = ExportFormat.CSV,
        raw_value: Optional[str] = None,
        mode: Optional[SearchMode | str] = None,
        limit: Optional[int] = None,
    ) -> ExportResult:
        """Render matching rows as a CSV or xlsx file in memory."""
        file_format = ExportFormat.parse(file_format)
        df = self.frame(datasource, table, raw_value, mode, limit)

        buffer = io.BytesIO()
        if file_format is ExportFormat.CSV:
            df.to_csv(buffer, index=False, encoding="utf-8-sig")
        else:
            df.to_excel(buffer, index=False, sheet_name=table[:_SHEET_NAME_MAX], engine="openpyxl")

        suffix = "search" if (raw_value or "").strip() else "export"
        logger.info(f"Exported {len(df)} rows of {datasource}.{table} as {file_format.value}")
        return ExportResult(
            content=buffer.getvalue(),
            filename=f"{table}_{suffix}.{file_format.value}",
            file_format=file_format,
            row_count=len(df),
        )

    def export_to_path(self, datasource: str, table: str, path: str | Path,
                       raw_value: Optional[str] = None, mode: Optional[SearchMode | str] = None,
                       limit: Optional[int] = None) -> ExportResult:
        """Export to a file whose suffix picks the format."""
        result = self.export(datasource, table, ExportFormat.from_path(path), raw_value, mode, limit)
        Path(path).write_bytes(result.content)
        return result

    def export_info(self, datasource: str, table: str, raw_value: Optional[str] = None,
                    mode: Optional[SearchMode | str] = None) -> dict[str, Any]:
        """Column list and total row count an export would cover before its limit."""
        ds = self.engine.router.resolve(datasource)
        columns = self.engine.introspector.list_columns(ds, table)
        page = self.engine.paginate(datasource, table, raw_value, page=1, size=1, mode=mode)
        return {
            "datasource": ds.name,
            "table": table,
            "column_count": len(columns),
            "total_rows": page.total_count,
            "approximate": page.approximate,
            "limit": self.engine.config.export_limit,
            "columns": [
                {"name": c.name, "type": c.sql_type, "nullable": c.nullable} for c in columns
            ],
        }
