# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Type-aware WHERE fragment synthesis for value search over unknown tables.

Each column is classified as numeric or text from its declared type. The
search mode decides which columns take part; each column contributes one
parenthesised clause and the clauses are OR'ed in column order::

    numeric, numeric value   (`id` = :p0 OR CAST(`id` AS CHAR) LIKE :p1)
    numeric, other value     (CAST(`id` AS CHAR) LIKE :p0)
    text                     (<dialect text match> :p0)

Parameters are named ``p0..pN`` in clause order, so the ``params`` tuple is
also a valid positional binding.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Union

from quarry.catalog.dialects import MYSQL, Dialect
from quarry.catalog.identifiers import quote_identifier
from quarry.catalog.introspector import ColumnDescriptor
from quarry.core.errors import InvalidSearchValue, NoApplicableColumn

NUMERIC_BASE_TYPES = frozenset({
    "TINYINT", "SMALLINT", "MEDIUMINT", "INT", "INTEGER", "BIGINT",
    "DECIMAL", "DEC", "NUMERIC", "FIXED", "FLOAT", "DOUBLE", "REAL",
})

_BASE_TYPE = re.compile(r"[A-Za-z]+")
_INTEGER = re.compile(r"[+-]?\d+")
_DECIMAL = re.compile(r"[+-]?(\d+\.\d*|\.\d+)")


class SearchMode(str, Enum):
    """Which columns a value search may touch."""
    TEXT_ONLY = "text_only"
    NUMERIC_ONLY = "numeric_only"
    AUTO = "auto"
    ALL = "all"

    @classmethod
    def parse(cls, value: Union[str, "SearchMode", None],
              default: Optional["SearchMode"] = None) -> "SearchMode":
        """Parse a mode name, falling back to ``default`` (AUTO) when empty."""
        if isinstance(value, SearchMode):
            return value
        if value is None or not str(value).strip():
            return default or cls.AUTO
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValueError(f"Invalid search mode '{value}'. Allowed: {allowed}")


def base_type(sql_type: str) -> str:
    """Leading keyword of a declared type, upper-cased (``int(11) unsigned`` -> ``INT``)."""
    match = _BASE_TYPE.search(sql_type or "")
    return match.group(0).upper() if match else ""


def is_numeric_type(sql_type: str) -> bool:
    return base_type(sql_type) in NUMERIC_BASE_TYPES


def is_integer(value: str) -> bool:
    return bool(_INTEGER.fullmatch(value))


def is_decimal(value: str) -> bool:
    """Plain decimal notation with a point (no exponent, no digit separators)."""
    if not _DECIMAL.fullmatch(value):
        return False
    try:
        float(value)
    except ValueError:
        return False
    return True


def parse_number(value: str) -> Optional[Union[int, float]]:
    """Numeric value of a search string, or None when it is not a number."""
    if is_integer(value):
        return int(value)
    if is_decimal(value):
        return float(value)
    return None


def describe_mode(mode: SearchMode, raw_value: str) -> str:
    """Human-readable label of what a search will look at."""
    numeric = parse_number(raw_value.strip()) is not None
    if mode is SearchMode.TEXT_ONLY:
        return "Text columns only"
    if mode is SearchMode.NUMERIC_ONLY:
        return "Numeric columns only"
    if mode is SearchMode.ALL:
        return "All columns"
    if numeric:
        return "Auto: numeric value, searching all columns"
    return "Auto: text value, searching text columns"


@dataclass(frozen=True)
class Predicate:
    """A WHERE fragment plus its bound parameters, in clause order."""
    clause: str
    params: tuple[Any, ...]
    columns: tuple[str, ...]

    def bindings(self) -> dict[str, Any]:
        """Parameters keyed by their ``p<N>`` names for SQLAlchemy text()."""
        return {f"p{i}": value for i, value in enumerate(self.params)}


class PredicateBuilder:
    """Builds search predicates for one SQL dialect."""

    def __init__(self, dialect: Dialect = MYSQL):
        self.dialect = dialect

    def applicable_columns(self, columns: Iterable[ColumnDescriptor], raw_value: str,
                           mode: SearchMode) -> list[ColumnDescriptor]:
        """Columns the mode allows for this value, in ordinal order."""
        columns = list(columns)
        if mode is SearchMode.ALL:
            return columns
        if mode is SearchMode.NUMERIC_ONLY:
            return [c for c in columns if is_numeric_type(c.sql_type)]
        if mode is SearchMode.TEXT_ONLY:
            return [c for c in columns if not is_numeric_type(c.sql_type)]
        # AUTO
        if parse_number(raw_value) is not None:
            return columns
        return [c for c in columns if not is_numeric_type(c.sql_type)]

    def build(self, columns: Iterable[ColumnDescriptor], raw_value: str,
              mode: SearchMode = SearchMode.AUTO) -> Predicate:
        """Build the OR'ed predicate for ``raw_value`` over ``columns``.

        Raises:
            InvalidSearchValue: if the value is blank
            NoApplicableColumn: if the mode leaves no column
        """
        if raw_value is None or not str(raw_value).strip():
            raise InvalidSearchValue("Search value must not be blank")
        value = str(raw_value).strip()
        mode = SearchMode.parse(mode)

        selected = self.applicable_columns(columns, value, mode)
        if not selected:
            raise NoApplicableColumn(f"No columns applicable to mode '{mode.value}'")

        number = parse_number(value)
        like = f"%{value}%"
        clauses: list[str] = []
        params: list[Any] = []

        for col in selected:
            column_sql = quote_identifier(col.name)
            if is_numeric_type(col.sql_type):
                if number is not None:
                    eq_param = f"p{len(params)}"
                    params.append(number)
                    like_param = f"p{len(params)}"
                    params.append(like)
                    clauses.append(
                        f"({column_sql} = :{eq_param} OR CAST({column_sql} AS CHAR) LIKE :{like_param})"
                    )
                else:
                    like_param = f"p{len(params)}"
                    params.append(like)
                    clauses.append(f"(CAST({column_sql} AS CHAR) LIKE :{like_param})")
            else:
                like_param = f"p{len(params)}"
                params.append(like)
                clauses.append(f"({self.dialect.text_match(column_sql, like_param)})")

        return Predicate(
            clause=" OR ".join(clauses),
            params=tuple(params),
            columns=tuple(c.name for c in selected),
        )


def build_predicate(columns: Iterable[ColumnDescriptor], raw_value: str,
                    mode: SearchMode = SearchMode.AUTO, dialect: Dialect = MYSQL) -> Predicate:
    """Module-level shortcut for ``PredicateBuilder(dialect).build``."""
    return PredicateBuilder(dialect).build(columns, raw_value, mode)
