# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Dialect-specific SQL fragments.

Nearly every statement the engine emits is portable between MySQL and SQLite
(backtick identifiers, ``SELECT EXISTS``, ``CAST(x AS CHAR)``, ``LIMIT/OFFSET``).
The handful of fragments that are not live here, keyed by the SQLAlchemy
dialect name of the engine.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class Dialect:
    """MySQL-flavoured SQL fragments. Subclasses override what differs."""
    name = "mysql"
    supports_comments = True
    supports_databases = True
    supports_row_estimates = True
    supports_modify_column = True
    auto_increment_keyword: Optional[str] = "AUTO_INCREMENT"
    table_charset = "utf8"
    table_collation = "utf8_general_ci"

    def text_match(self, column_sql: str, param: str) -> str:
        """Collation-normalized, case-insensitive substring match."""
        return (
            f"CAST({column_sql} AS CHAR CHARACTER SET utf8mb4) "
            f"COLLATE utf8mb4_general_ci LIKE :{param}"
        )

    def quote_literal(self, value: str) -> str:
        """Render a string literal for DDL, where bind parameters are not allowed.

        Colons are escaped so that SQLAlchemy ``text()`` does not read them as
        bind parameters.
        """
        escaped = self._escape(str(value)).replace(":", "\\:")
        return f"'{escaped}'"

    def _escape(self, value: str) -> str:
        return value.replace("\\", "\\\\").replace("'", "''")

    def column_comment(self, comment: Optional[str]) -> str:
        if not comment or not self.supports_comments:
            return ""
        return f" COMMENT {self.quote_literal(comment)}"

    def table_options(self, comment: Optional[str], charset: Optional[str] = None,
                      collation: Optional[str] = None) -> str:
        """Suffix rendered after the closing parenthesis of CREATE TABLE."""
        charset = charset or self.table_charset
        collation = collation or self.table_collation
        options = f" ENGINE=InnoDB DEFAULT CHARSET={charset} COLLATE={collation}"
        if comment:
            options += f" COMMENT={self.quote_literal(comment)}"
        return options


class SQLiteDialect(Dialect):
    """SQLite: no comments, no table options, attached files instead of databases."""
    name = "sqlite"
    supports_comments = False
    supports_databases = False
    supports_row_estimates = False
    supports_modify_column = False
    # INTEGER PRIMARY KEY columns are rowid aliases and number themselves
    auto_increment_keyword = None

    def text_match(self, column_sql: str, param: str) -> str:
        # SQLite LIKE is case-insensitive for ASCII
        return f"CAST({column_sql} AS TEXT) LIKE :{param}"

    def _escape(self, value: str) -> str:
        return value.replace("'", "''")

    def table_options(self, comment: Optional[str], charset: Optional[str] = None,
                      collation: Optional[str] = None) -> str:
        return ""


MYSQL = Dialect()
SQLITE = SQLiteDialect()

# SQLAlchemy dialect name -> fragments
DIALECT_MAP = {
    "mysql": MYSQL,
    "mariadb": MYSQL,
    "sqlite": SQLITE,
}


def dialect_for(name: str) -> Dialect:
    """Look up the fragments for a SQLAlchemy dialect name."""
    dialect = DIALECT_MAP.get(name)
    if dialect is None:
        logger.warning(f"No SQL fragments registered for dialect '{name}', using MySQL syntax")
        return MYSQL
    return dialect
