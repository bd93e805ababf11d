# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Create a table from the shape of imported rows, then load them.

Headers become safe column names and each column gets the narrowest type that
holds every value seen: integers are narrowed to TINYINT..BIGINT by range,
decimals get a DECIMAL wide enough for their digits, ISO dates and datetimes
get DATE/DATETIME, everything else VARCHAR(255) or TEXT.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from quarry.core.errors import ColumnNotFound, InvalidColumnSpec
from quarry.core.models import ColumnSpec, ImportReport
from quarry.ddl.generator import DdlGenerator
from quarry.loader.bulk import BulkLoader

logger = logging.getLogger(__name__)

MAX_COLUMN_NAME = 60

RESERVED_WORDS = frozenset({
    "add", "all", "alter", "and", "as", "asc", "between", "by", "case", "check",
    "column", "constraint", "create", "cross", "current_date", "current_time",
    "database", "default", "delete", "desc", "distinct", "drop", "else", "exists",
    "false", "for", "foreign", "from", "group", "having", "in", "index", "inner",
    "insert", "interval", "into", "is", "join", "key", "left", "like", "limit",
    "not", "null", "on", "or", "order", "outer", "primary", "references", "right",
    "select", "set", "table", "then", "to", "true", "union", "unique", "update",
    "use", "using", "values", "when", "where", "with",
})

# (type, min, max) from narrowest to widest
INTEGER_RANGES = [
    ("TINYINT", -128, 127),
    ("SMALLINT", -32768, 32767),
    ("MEDIUMINT", -8388608, 8388607),
    ("INT", -2147483648, 2147483647),
    ("BIGINT", -9223372036854775808, 9223372036854775807),
]

# Inferred types that cannot back a primary key without a prefix length
UNKEYABLE_TYPES = frozenset({"TEXT", "LONGTEXT"})

_NON_WORD = re.compile(r"[^A-Za-z0-9_]")
_INTEGER = re.compile(r"^[+-]?\d+$")
_DECIMAL = re.compile(r"^[+-]?\d*\.\d+$|^[+-]?\d+\.\d*$")
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}(:\d{2})?$")


def sanitize_column_name(name: str) -> str:
    """Turn an arbitrary header into a valid column name."""
    cleaned = _NON_WORD.sub("_", str(name).strip()) or "col"
    if cleaned[0].isdigit():
        cleaned = f"col_{cleaned}"
    if cleaned.lower() in RESERVED_WORDS:
        cleaned = f"col_{cleaned}"
    return cleaned[:MAX_COLUMN_NAME]


def narrow_integer_type(low: int, high: int) -> Optional[str]:
    """Smallest integer type holding [low, high], or None if BIGINT overflows."""
    for type_name, type_min, type_max in INTEGER_RANGES:
        if low >= type_min and high <= type_max:
            return type_name
    return None


def infer_column_spec(name: str, values: Sequence[Any]) -> ColumnSpec:
    """Pick a column type from sample values (blank values are ignored)."""
    texts = [str(v).strip() for v in values if v is not None and str(v).strip()]
    if not texts:
        return ColumnSpec(name=name, declared_type="VARCHAR", length=255)

    if all(_INTEGER.match(t) for t in texts):
        numbers = [int(t) for t in texts]
        type_name = narrow_integer_type(min(numbers), max(numbers))
        if type_name:
            return ColumnSpec(name=name, declared_type=type_name)
        digits = max(len(t.lstrip("+-")) for t in texts)
        return ColumnSpec(name=name, declared_type="DECIMAL", length=min(65, digits), decimals=0)

    if all(_INTEGER.match(t) or _DECIMAL.match(t) for t in texts):
        try:
            parsed = [Decimal(t) for t in texts]
        except InvalidOperation:
            parsed = []
        if parsed:
            scale = max(max(-d.as_tuple().exponent, 0) for d in parsed)
            whole = max(len(str(abs(int(d)))) for d in parsed)
            scale = min(scale, 30)
            return ColumnSpec(name=name, declared_type="DECIMAL",
                              length=min(65, whole + scale), decimals=scale)

    if all(_DATE.match(t) for t in texts):
        return ColumnSpec(name=name, declared_type="DATE")
    if all(_DATETIME.match(t) or _DATE.match(t) for t in texts):
        return ColumnSpec(name=name, declared_type="DATETIME")

    longest = max(len(t) for t in texts)
    if longest <= 255:
        return ColumnSpec(name=name, declared_type="VARCHAR", length=255)
    if longest <= 65535:
        return ColumnSpec(name=name, declared_type="TEXT")
    return ColumnSpec(name=name, declared_type="LONGTEXT")


@dataclass
class AutoImportResult:
    table: str
    create_sql: str
    columns: list[ColumnSpec]
    renamed: dict[str, str]
    report: ImportReport

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "create_sql": self.create_sql,
            "columns": [{"name": c.name, "type": c.declared_type, "length": c.length,
                         "decimals": c.decimals, "primary_key": c.primary_key}
                        for c in self.columns],
            "renamed": self.renamed,
            "report": self.report.to_dict(),
        }


class AutoTableImporter:
    """Creates a table sized to the input rows and loads them."""

    def __init__(self, ddl: DdlGenerator, loader: BulkLoader, sample_rows: Optional[int] = None):
        self.ddl = ddl
        self.loader = loader
        self.sample_rows = sample_rows

    def plan_columns(
        self,
        rows: Sequence[dict[str, Any]],
        primary_keys: Optional[Sequence[str]] = None,
    ) -> tuple[list[ColumnSpec], dict[str, str]]:
        """Column specs for the rows, plus original header -> column name.

        ``primary_keys`` may name headers as given or as sanitized; the chosen
        columns become a (possibly composite) NOT NULL primary key.

        Raises:
            ColumnNotFound: if a primary key names no header
            InvalidColumnSpec: if a key column was inferred as a long text type
        """
        if not rows:
            raise ValueError("Cannot infer a table from zero rows")
        header = list(rows[0].keys())
        sample = rows if self.sample_rows is None else rows[:self.sample_rows]

        renamed: dict[str, str] = {}
        used: set[str] = set()
        specs = []
        for original in header:
            name = sanitize_column_name(original)
            candidate, suffix = name, 2
            while candidate.lower() in used:
                tail = f"_{suffix}"
                candidate = name[:MAX_COLUMN_NAME - len(tail)] + tail
                suffix += 1
            used.add(candidate.lower())
            renamed[original] = candidate
            specs.append(infer_column_spec(candidate, [row.get(original) for row in sample]))

        by_name = {spec.name: spec for spec in specs}
        for key in primary_keys or []:
            column = renamed.get(key, key)
            spec = by_name.get(column)
            if spec is None:
                raise ColumnNotFound(f"Primary key column '{key}' is not in the input")
            if spec.declared_type in UNKEYABLE_TYPES:
                raise InvalidColumnSpec(
                    f"Column '{spec.name}' holds values too long for a primary key ({spec.declared_type})"
                )
            spec.primary_key = True
            spec.not_null = True
        return specs, renamed

    def create_and_import(
        self,
        datasource: str,
        table: str,
        rows: Sequence[dict[str, Any]],
        database: Optional[str] = None,
        comment: Optional[str] = None,
        primary_keys: Optional[Sequence[str]] = None,
        transactional: bool = False,
    ) -> AutoImportResult:
        """Create ``table`` from the rows' shape and load them.

        Batches load independently unless ``transactional`` is set, in which
        case every row goes in one transaction and a failure leaves the new
        table empty.
        """
        specs, renamed = self.plan_columns(rows, primary_keys)
        sql = self.ddl.create_table(
            datasource, database, table, specs, comment,
            charset="utf8mb4", collation="utf8mb4_general_ci",
        )
        target = database or datasource
        mapped = [{renamed[k]: v for k, v in row.items() if k in renamed} for row in rows]
        if transactional:
            report = self.loader.insert_batch_transactional(target, table, mapped)
        else:
            report = self.loader.insert_batch(target, table, mapped)
        logger.info(f"Auto-created {target}.{table} with {len(specs)} columns, {report.success} rows loaded")
        return AutoImportResult(table=table, create_sql=sql, columns=specs, renamed=renamed, report=report)
