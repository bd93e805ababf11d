# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Reading tabular files into import rows."""

from enum import Enum
from pathlib import Path
from typing import IO, Any, Optional, Union

import pandas as pd


class FileType(Enum):
    CSV = "csv"
    TSV = "tsv"
    JSON = "json"
    JSONL = "jsonl"


_EXTENSIONS = {
    ".csv": FileType.CSV,
    ".tsv": FileType.TSV,
    ".txt": FileType.CSV,
    ".json": FileType.JSON,
    ".jsonl": FileType.JSONL,
    ".ndjson": FileType.JSONL,
}


def detect_file_type(filename: str) -> FileType:
    """File type from the extension.

    Raises:
        ValueError: for unsupported extensions
    """
    suffix = Path(filename).suffix.lower()
    if suffix not in _EXTENSIONS:
        supported = ", ".join(sorted(_EXTENSIONS))
        raise ValueError(f"Unsupported file type '{suffix}'. Supported: {supported}")
    return _EXTENSIONS[suffix]


def read_rows(
    source: Union[str, Path, IO],
    file_type: Optional[FileType] = None,
) -> list[dict[str, Any]]:
    """Load a CSV/TSV/JSON/JSONL file as a list of row dicts.

    Delimited files are read as text, so values reach the loader exactly as
    written (blank cells become empty strings). JSON nulls become None.
    """
    if file_type is None:
        if not isinstance(source, (str, Path)):
            raise ValueError("file_type is required when reading from a stream")
        file_type = detect_file_type(str(source))

    if file_type in (FileType.CSV, FileType.TSV):
        sep = "\t" if file_type is FileType.TSV else ","
        df = pd.read_csv(source, sep=sep, dtype=str, keep_default_na=False)
    elif file_type is FileType.JSON:
        df = pd.read_json(source, dtype=False)
    else:
        df = pd.read_json(source, lines=True, dtype=False)

    df = df.astype(object).where(df.notna(), None)
    return df.to_dict(orient="records")
