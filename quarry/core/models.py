# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Core data structures shared by the DDL generator and bulk loader."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ImportStrategy(Enum):
    """How a bulk import treats rows already in the table."""
    APPEND = "append"        # Keep existing rows, skip duplicates
    OVERWRITE = "overwrite"  # Delete all rows first


class ReferentialAction(Enum):
    """Allowed ON UPDATE / ON DELETE actions."""
    RESTRICT = "RESTRICT"
    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    NO_ACTION = "NO ACTION"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ReferentialAction"]:
        """Parse an action name; None or blank means no clause."""
        if value is None or not str(value).strip():
            return None
        normalized = " ".join(str(value).upper().replace("_", " ").split())
        for action in cls:
            if action.value == normalized:
                return action
        allowed = ", ".join(a.value for a in cls)
        raise ValueError(f"Invalid referential action '{value}'. Allowed: {allowed}")


@dataclass
class ForeignKeySpec:
    """Foreign key attached to a column definition."""
    ref_table: str
    ref_column: str
    # None renders no clause, leaving the database default (reject)
    on_update: Optional[str] = None
    on_delete: Optional[str] = None


@dataclass
class ColumnSpec:
    """Column definition input for CREATE TABLE."""
    name: str
    declared_type: str
    length: Optional[int] = None
    decimals: Optional[int] = None
    not_null: bool = False
    auto_increment: bool = False
    default_value: Optional[str] = None
    comment: Optional[str] = None
    primary_key: bool = False
    foreign_key: Optional[ForeignKeySpec] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColumnSpec":
        """Build from a plain dict (as received over HTTP)."""
        data = dict(data)
        fk = data.pop("foreign_key", None)
        if isinstance(fk, dict):
            fk = ForeignKeySpec(**fk)
        return cls(foreign_key=fk, **data)


@dataclass
class ImportReport:
    """Outcome of a bulk load call."""
    total: int = 0
    success: int = 0
    failure: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    strategy: Optional[str] = None
    deleted_rows: Optional[int] = None  # overwrite only
    skipped: Optional[int] = None       # append only
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict, omitting strategy-specific fields that are unset."""
        result = {
            "total": self.total,
            "success": self.success,
            "failure": self.failure,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }
        if self.strategy is not None:
            result["strategy"] = self.strategy
        if self.deleted_rows is not None:
            result["deleted_rows"] = self.deleted_rows
        if self.skipped is not None:
            result["skipped"] = self.skipped
        if self.message:
            result["message"] = self.message
        return result
