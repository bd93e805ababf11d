# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Bulk import, validation, auto-create and row edit REST endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from quarry.loader.autocreate import AutoTableImporter
from quarry.loader.bulk import BulkLoader
from quarry.loader.files import detect_file_type, read_rows
from quarry.loader.rows import RowEditor
from quarry.loader.validation import ImportValidator
from quarry.server.models import (
    AutoCreateRequest,
    ImportRequest,
    RowDeleteRequest,
    RowInsertRequest,
    RowUpdateRequest,
    RowWriteResponse,
    ValidateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_loader(request: Request) -> BulkLoader:
    return request.app.state.loader


def get_row_editor(request: Request) -> RowEditor:
    return request.app.state.row_editor


def get_validator(request: Request) -> ImportValidator:
    return request.app.state.validator


def get_auto_importer(request: Request) -> AutoTableImporter:
    return request.app.state.auto_importer


@router.post("/{datasource}/{table}/import")
def import_rows(
    datasource: str,
    table: str,
    body: ImportRequest,
    loader: BulkLoader = Depends(get_loader),
) -> dict[str, Any]:
    """Bulk import rows with the append or overwrite strategy.

    Non-transactional imports report per-batch failures in the result;
    transactional imports roll back and fail with the classified error.
    """
    report = loader.bulk_import(
        datasource,
        table,
        body.rows,
        strategy=body.strategy,
        transactional=body.transactional,
        key_columns=body.key_columns,
    )
    return report.to_dict()


@router.post("/{datasource}/{table}/upload")
def upload_rows(
    datasource: str,
    table: str,
    file: UploadFile = File(...),
    strategy: str = Form(default="append"),
    transactional: bool = Form(default=False),
    loader: BulkLoader = Depends(get_loader),
) -> dict[str, Any]:
    """Bulk import a CSV, TSV, JSON or JSONL file."""
    rows = read_rows(file.file, detect_file_type(file.filename or ""))
    logger.info(f"Importing {len(rows)} rows from {file.filename} into {datasource}.{table}")
    report = loader.bulk_import(datasource, table, rows, strategy=strategy, transactional=transactional)
    return report.to_dict()


@router.post("/{datasource}/{table}/validate")
def validate_rows(
    datasource: str,
    table: str,
    body: ValidateRequest,
    validator: ImportValidator = Depends(get_validator),
) -> dict[str, Any]:
    """Check rows against the table before importing them."""
    return validator.validate(datasource, table, body.rows).to_dict()


@router.post("/{datasource}/auto-create")
def auto_create(
    datasource: str,
    body: AutoCreateRequest,
    importer: AutoTableImporter = Depends(get_auto_importer),
) -> dict[str, Any]:
    """Create a table typed from the rows, then load them."""
    result = importer.create_and_import(
        datasource,
        body.table,
        body.rows,
        database=body.database,
        comment=body.comment,
        primary_keys=body.primary_keys,
        transactional=body.transactional,
    )
    return result.to_dict()


@router.post("/{datasource}/{table}/rows", response_model=RowWriteResponse)
def insert_row(
    datasource: str,
    table: str,
    body: RowInsertRequest,
    editor: RowEditor = Depends(get_row_editor),
) -> RowWriteResponse:
    return RowWriteResponse(affected_rows=editor.insert_row(datasource, table, body.values))


@router.put("/{datasource}/{table}/rows", response_model=RowWriteResponse)
def update_rows(
    datasource: str,
    table: str,
    body: RowUpdateRequest,
    editor: RowEditor = Depends(get_row_editor),
) -> RowWriteResponse:
    return RowWriteResponse(
        affected_rows=editor.update_rows(datasource, table, body.values, body.conditions)
    )


@router.post("/{datasource}/{table}/rows/delete", response_model=RowWriteResponse)
def delete_rows(
    datasource: str,
    table: str,
    body: RowDeleteRequest,
    editor: RowEditor = Depends(get_row_editor),
) -> RowWriteResponse:
    """Delete rows matching every condition; at least one condition is required."""
    return RowWriteResponse(affected_rows=editor.delete_rows(datasource, table, body.conditions))
