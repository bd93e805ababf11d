# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Error taxonomy shared by the query engine, DDL generator and bulk loader.

Every error carries a stable ``kind`` string (used as the ``error`` field of
HTTP error bodies) and the HTTP status the server maps it to.
"""

from typing import Optional


class QuarryError(Exception):
    """Base class for all engine errors."""
    kind = "quarry_error"
    status_code = 500


class UnknownDataSource(QuarryError):
    """Raised when a logical datasource name cannot be resolved."""
    kind = "unknown_datasource"
    status_code = 404


class InvalidIdentifier(QuarryError, ValueError):
    """Raised when a schema, table or column name fails the identifier pattern."""
    kind = "invalid_identifier"
    status_code = 400


class TableNotFound(QuarryError):
    """Raised when a table does not exist in the resolved schema."""
    kind = "table_not_found"
    status_code = 404

    def __init__(self, table: str, datasource: Optional[str] = None):
        where = f" in '{datasource}'" if datasource else ""
        super().__init__(f"Table '{table}' not found{where}")
        self.table = table
        self.datasource = datasource


class TableAlreadyExists(QuarryError):
    """Raised when CREATE TABLE targets an existing table."""
    kind = "table_exists"
    status_code = 409


class UnsupportedOperation(QuarryError):
    """Raised when the datasource's dialect cannot perform an operation."""
    kind = "unsupported_operation"
    status_code = 400


class ColumnNotFound(QuarryError):
    """Raised when a referenced column does not exist."""
    kind = "column_not_found"
    status_code = 400


class NoApplicableColumn(QuarryError):
    """Raised when a search mode leaves no column to build a predicate over."""
    kind = "no_applicable_column"
    status_code = 400


class InvalidSearchValue(QuarryError, ValueError):
    """Raised for a blank search value."""
    kind = "invalid_search_value"
    status_code = 400


class InvalidColumnSpec(QuarryError, ValueError):
    """Raised when a column definition cannot be rendered."""
    kind = "invalid_column_spec"
    status_code = 400


class ForeignKeyTypeMismatch(QuarryError):
    """Raised when referencing and referenced column types differ."""
    kind = "foreign_key_type_mismatch"
    status_code = 400

    def __init__(self, column: str, column_type: str, ref: str, required_type: str):
        super().__init__(
            f"Foreign key column '{column}' has type {column_type} but {ref} "
            f"requires type {required_type}"
        )
        self.column = column
        self.required_type = required_type


class ForeignKeyTargetMissing(QuarryError):
    """Raised when a foreign key references a missing table, column or row."""
    kind = "foreign_key_target_missing"
    status_code = 400


class DuplicateKeyViolation(QuarryError):
    """Raised when a write collides with a unique or primary key."""
    kind = "duplicate_key"
    status_code = 409


class RequiredFieldMissing(QuarryError):
    """Raised when a NOT NULL column receives no value."""
    kind = "required_field_missing"
    status_code = 400


class ValueTooLong(QuarryError):
    """Raised when a value exceeds its column width."""
    kind = "value_too_long"
    status_code = 400


class NumericOutOfRange(QuarryError):
    """Raised when a numeric value exceeds its column range."""
    kind = "numeric_out_of_range"
    status_code = 400


class InvalidValue(QuarryError):
    """Raised when a value cannot be converted to its column type."""
    kind = "invalid_value"
    status_code = 400


class WriteFailure(QuarryError):
    """Raised for write errors that fit no narrower kind."""
    kind = "write_failure"
    status_code = 500


class ConnectionFailure(QuarryError):
    """Raised when a datasource cannot be reached."""
    kind = "connection_failure"
    status_code = 503


class Timeout(QuarryError):
    """Raised when an operation exceeds its wall-clock budget."""
    kind = "timeout"
    status_code = 504


# Driver message fragments (MySQL first, SQLite second) -> error class
_WRITE_ERROR_PATTERNS: list[tuple[tuple[str, ...], type[QuarryError]]] = [
    (("duplicate entry", "unique constraint failed"), DuplicateKeyViolation),
    (("cannot be null", "not null constraint failed", "doesn't have a default value"), RequiredFieldMissing),
    (("data too long",), ValueTooLong),
    (("out of range value",), NumericOutOfRange),
    (("incorrect integer value", "incorrect decimal value", "incorrect date value",
      "incorrect datetime value", "datatype mismatch"), InvalidValue),
    (("foreign key constraint",), ForeignKeyTargetMissing),
]


def classify_write_error(exc: Exception) -> QuarryError:
    """Map a driver error raised by an INSERT/UPDATE/DELETE to a taxonomy error.

    Returns:
        An error instance whose message keeps the driver's original text.
    """
    if isinstance(exc, QuarryError):
        return exc
    original = getattr(exc, "orig", None) or exc
    message = str(original)
    lowered = message.lower()
    for fragments, error_cls in _WRITE_ERROR_PATTERNS:
        if any(fragment in lowered for fragment in fragments):
            return error_cls(message)
    return WriteFailure(message)
