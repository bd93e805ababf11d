# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Pre-import checks of tabular rows against a table's columns."""

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from quarry.catalog.introspector import ColumnDescriptor, SchemaIntrospector
from quarry.catalog.router import DataSourceRouter
from quarry.search.predicate import base_type

INTEGER_TYPES = {"TINYINT", "SMALLINT", "MEDIUMINT", "INT", "INTEGER", "BIGINT"}
DECIMAL_TYPES = {"DECIMAL", "DEC", "NUMERIC", "FIXED", "FLOAT", "DOUBLE", "REAL"}

_PATTERNS = {
    "integer": re.compile(r"^[+-]?\d+$"),
    "date": re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    "datetime": re.compile(r"^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}(:\d{2}(\.\d+)?)?$"),
    "time": re.compile(r"^-?\d{1,3}:\d{2}(:\d{2}(\.\d+)?)?$"),
}
_LENGTH = re.compile(r"\((\d+)\)")


def value_kind(column: ColumnDescriptor) -> Optional[str]:
    """Which format check applies to a column, if any."""
    base = base_type(column.sql_type)
    if base in INTEGER_TYPES:
        return "integer"
    if base in DECIMAL_TYPES:
        return "decimal"
    if base == "DATE":
        return "date"
    if base in ("DATETIME", "TIMESTAMP"):
        return "datetime"
    if base == "TIME":
        return "time"
    return None


def matches_kind(value: str, kind: str) -> bool:
    if kind == "decimal":
        try:
            float(value)
        except ValueError:
            return False
        return True
    return bool(_PATTERNS[kind].match(value))


def max_length(column: ColumnDescriptor) -> Optional[int]:
    """Declared width of CHAR/VARCHAR columns."""
    if base_type(column.sql_type) not in ("CHAR", "VARCHAR"):
        return None
    match = _LENGTH.search(column.sql_type)
    return int(match.group(1)) if match else None


@dataclass
class ValidationReport:
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    checked_rows: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "checked_rows": self.checked_rows,
        }


class ImportValidator:
    """Checks rows before a bulk import.

    - required columns (NOT NULL, no default, not auto-increment) missing from
      the input are errors
    - input columns the table does not have are warnings (they are ignored)
    - the first ``sample_rows`` rows are checked for blank required values,
      number/date/time formats and string width
    """

    def __init__(self, router: DataSourceRouter, introspector: SchemaIntrospector, sample_rows: int = 100):
        self.router = router
        self.introspector = introspector
        self.sample_rows = sample_rows

    def validate(self, datasource: str, table: str, rows: Sequence[dict[str, Any]]) -> ValidationReport:
        ds = self.router.resolve(datasource)
        columns = self.introspector.list_columns(ds, table)
        report = ValidationReport()
        if not rows:
            report.errors.append("No rows to import")
            report.valid = False
            return report

        header = list(rows[0].keys())
        by_name = {c.name: c for c in columns}

        for col in columns:
            if col.is_required and col.name not in header:
                report.errors.append(f"Missing required column '{col.name}'")
        for name in header:
            if name not in by_name:
                report.warnings.append(f"Column '{name}' does not exist in '{table}' and will be ignored")

        checked = [by_name[name] for name in header if name in by_name]
        sample = rows[:self.sample_rows]
        for index, row in enumerate(sample, start=1):
            for col in checked:
                value = row.get(col.name)
                if value is None or (isinstance(value, str) and not value.strip()):
                    if col.is_required:
                        report.errors.append(f"Row {index}: column '{col.name}' is required")
                    continue
                text = str(value).strip()
                kind = value_kind(col)
                if kind and not matches_kind(text, kind):
                    report.errors.append(
                        f"Row {index}: column '{col.name}' expects {kind}, got '{text}'"
                    )
                width = max_length(col)
                if width is not None and len(text) > width:
                    report.errors.append(
                        f"Row {index}: column '{col.name}' is longer than {width} characters"
                    )
        report.checked_rows = len(sample)
        if len(rows) > len(sample):
            report.warnings.append(f"Only the first {len(sample)} of {len(rows)} rows were checked")
        report.valid = not report.errors
        return report
