# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Bulk loading, row edits, import validation and auto-created tables."""

from .autocreate import AutoTableImporter, infer_column_spec, sanitize_column_name
from .bulk import BulkLoader
from .files import FileType, detect_file_type, read_rows
from .rows import RowEditor
from .validation import ImportValidator, ValidationReport
