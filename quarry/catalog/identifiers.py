# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Identifier validation and quoting.

User-supplied names are matched against an allow-list pattern before they are
ever interpolated into SQL. Names that come back from the database catalog are
quoted with backticks (doubling any embedded backtick).
"""

import re

from quarry.core.errors import InvalidIdentifier

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,63}$")
DATABASE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,64}$")


def validate_name(name: str, what: str = "identifier") -> str:
    """Validate a table or column name.

    Raises:
        InvalidIdentifier: if the name does not match ``[A-Za-z_][A-Za-z0-9_]{0,63}``
    """
    if not isinstance(name, str) or not TABLE_NAME_PATTERN.match(name):
        raise InvalidIdentifier(
            f"Invalid {what} '{name}': must start with a letter or underscore, "
            f"contain only letters, digits and underscores, and be at most 64 characters"
        )
    return name


def validate_database_name(name: str) -> str:
    """Validate a database (schema) name.

    Raises:
        InvalidIdentifier: if the name does not match ``[A-Za-z0-9_]{1,64}``
    """
    if not isinstance(name, str) or not DATABASE_NAME_PATTERN.match(name):
        raise InvalidIdentifier(
            f"Invalid database name '{name}': only letters, digits and underscores, "
            f"at most 64 characters"
        )
    return name


def quote_identifier(name: str) -> str:
    """Backtick-quote an identifier (accepted by both MySQL and SQLite)."""
    return "`" + name.replace("`", "``") + "`"
