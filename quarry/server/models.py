# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Pydantic models for API request/response schemas."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from quarry.core.models import ColumnSpec, ForeignKeySpec


# ============================================================================
# Datasource Models
# ============================================================================


class AddDataSourceRequest(BaseModel):
    """Request to register a datasource at runtime."""

    name: str = Field(description="Logical datasource name")
    uri: str = Field(description="SQLAlchemy connection URI")
    description: str = Field(default="", description="Human-readable description")


class DataSourceTestResponse(BaseModel):
    """Result of a connection test."""

    name: str
    connected: bool


# ============================================================================
# DDL Models
# ============================================================================


class ForeignKeyModel(BaseModel):
    """Foreign key on a column definition."""

    ref_table: str = Field(description="Referenced table")
    ref_column: str = Field(description="Referenced column")
    on_update: Optional[str] = Field(
        default=None,
        description="RESTRICT, CASCADE, SET NULL or NO ACTION; omitted renders no clause",
    )
    on_delete: Optional[str] = Field(
        default=None,
        description="RESTRICT, CASCADE, SET NULL or NO ACTION; omitted renders no clause",
    )


class ColumnModel(BaseModel):
    """Column definition for CREATE TABLE."""

    name: str
    type: str = Field(description="Declared SQL type, e.g. VARCHAR")
    length: Optional[int] = None
    decimals: Optional[int] = None
    not_null: bool = False
    auto_increment: bool = False
    default_value: Optional[str] = None
    comment: Optional[str] = None
    primary_key: bool = False
    foreign_key: Optional[ForeignKeyModel] = None

    def to_spec(self) -> ColumnSpec:
        fk = None
        if self.foreign_key is not None:
            fk = ForeignKeySpec(**self.foreign_key.model_dump())
        return ColumnSpec(
            name=self.name,
            declared_type=self.type,
            length=self.length,
            decimals=self.decimals,
            not_null=self.not_null,
            auto_increment=self.auto_increment,
            default_value=self.default_value,
            comment=self.comment,
            primary_key=self.primary_key,
            foreign_key=fk,
        )


class CreateTableRequest(BaseModel):
    """Request to create a table."""

    table: str = Field(description="New table name")
    columns: list[ColumnModel] = Field(description="Column definitions in order")
    database: Optional[str] = Field(
        default=None,
        description="Target database when it differs from the datasource",
    )
    comment: Optional[str] = None


class CreateTableResponse(BaseModel):
    """Executed CREATE TABLE statement."""

    status: str = "created"
    table: str
    sql: str


class ModifyColumnRequest(BaseModel):
    """New type of an existing column."""

    type: str = Field(description="Declared SQL type, e.g. VARCHAR")
    length: Optional[int] = None
    decimals: Optional[int] = None
    database: Optional[str] = Field(
        default=None,
        description="Target database when it differs from the datasource",
    )


class CreateDatabaseRequest(BaseModel):
    """Request to create a user database on the default server."""

    name: str
    charset: str = "utf8"
    collation: str = "utf8_general_ci"


# ============================================================================
# Data Models
# ============================================================================


class ImportRequest(BaseModel):
    """Bulk import of tabular rows."""

    rows: list[dict[str, Any]] = Field(description="Rows keyed by column name")
    strategy: str = Field(default="append", description="append or overwrite")
    transactional: bool = Field(
        default=False,
        description="All-or-nothing import in one transaction",
    )
    key_columns: Optional[list[str]] = Field(
        default=None,
        description="Duplicate detection columns for append (default: primary key)",
    )


class ValidateRequest(BaseModel):
    """Rows to check before an import."""

    rows: list[dict[str, Any]]


class AutoCreateRequest(BaseModel):
    """Create a table from the rows' shape and load them."""

    table: str
    rows: list[dict[str, Any]]
    database: Optional[str] = None
    comment: Optional[str] = None
    primary_keys: Optional[list[str]] = Field(
        default=None,
        description="Headers that form the primary key (composite when several)",
    )
    transactional: bool = Field(
        default=False,
        description="Load every row in one transaction, or none",
    )


class RowInsertRequest(BaseModel):
    values: dict[str, Any]


class RowUpdateRequest(BaseModel):
    values: dict[str, Any]
    conditions: dict[str, Any]


class RowDeleteRequest(BaseModel):
    conditions: dict[str, Any]


class RowWriteResponse(BaseModel):
    affected_rows: int
