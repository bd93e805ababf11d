# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for CREATE TABLE generation and table/database lifecycle."""

from dataclasses import replace
from unittest.mock import patch

import pytest

from quarry.catalog.dialects import MYSQL
from quarry.catalog.router import SqlExecutor
from quarry.core.errors import (
    ColumnNotFound,
    ForeignKeyTargetMissing,
    ForeignKeyTypeMismatch,
    InvalidColumnSpec,
    InvalidIdentifier,
    TableAlreadyExists,
    TableNotFound,
    UnsupportedOperation,
)
from quarry.core.models import ColumnSpec, ForeignKeySpec
from quarry.ddl.generator import DdlGenerator, normalize_type, render_type


@pytest.fixture
def ddl(router, introspector, cache):
    return DdlGenerator(router, introspector, cache)


@pytest.fixture
def chem_mysql(router):
    """The chem datasource rendered with MySQL fragments."""
    return replace(router.resolve("chem"), dialect=MYSQL)


def results_columns(**fk_options):
    return [
        ColumnSpec(name="id", declared_type="INT", not_null=True, auto_increment=True, primary_key=True),
        ColumnSpec(name="compound_id", declared_type="INT",
                   foreign_key=ForeignKeySpec(ref_table="compounds", ref_column="id", **fk_options)),
        ColumnSpec(name="score", declared_type="DECIMAL", length=10, decimals=2,
                   default_value="0.00", comment="Potency"),
        ColumnSpec(name="label", declared_type="VARCHAR", length=64, not_null=True, default_value="n/a"),
    ]


class TestTypes:
    """Tests for type rendering and normalization."""

    def test_render_type(self):
        assert render_type(ColumnSpec("a", "decimal", length=10, decimals=2)) == "DECIMAL(10,2)"
        assert render_type(ColumnSpec("a", "VARCHAR", length=64)) == "VARCHAR(64)"
        assert render_type(ColumnSpec("a", "TEXT")) == "TEXT"

    @pytest.mark.parametrize("left, right", [
        ("INT(11)", "INT"),
        ("int unsigned", "INTEGER"),
        ("VARCHAR(64)", "varchar(64)"),
        ("DECIMAL(10, 2)", "DECIMAL(10,2)"),
    ])
    def test_compatible(self, left, right):
        assert normalize_type(left) == normalize_type(right)

    @pytest.mark.parametrize("left, right", [
        ("INT", "BIGINT"),
        ("VARCHAR(64)", "VARCHAR(32)"),
        ("DECIMAL(10,2)", "DECIMAL(12,2)"),
    ])
    def test_incompatible(self, left, right):
        assert normalize_type(left) != normalize_type(right)

    def test_supported_types(self, ddl):
        types = {t["name"]: t for t in ddl.supported_types()}

        assert types["VARCHAR"]["requires_length"] is True
        assert types["DECIMAL"]["accepts_decimals"] is True
        assert types["TEXT"]["accepts_length"] is False


class TestBuildCreateTable:
    """Tests for MySQL CREATE TABLE rendering."""

    def test_full_statement(self, ddl, chem_mysql):
        sql = ddl.build_create_table(chem_mysql, "results", results_columns(), comment="Assay results")

        assert sql == (
            "CREATE TABLE `results` (\n"
            "  `id` INT NOT NULL AUTO_INCREMENT,\n"
            "  `compound_id` INT,\n"
            "  `score` DECIMAL(10,2) DEFAULT 0.00 COMMENT 'Potency',\n"
            "  `label` VARCHAR(64) NOT NULL DEFAULT 'n/a',\n"
            "  PRIMARY KEY (`id`),\n"
            "  CONSTRAINT `fk_results_compound_id` FOREIGN KEY (`compound_id`) "
            "REFERENCES `compounds` (`id`)\n"
            ") ENGINE=InnoDB DEFAULT CHARSET=utf8 COLLATE=utf8_general_ci COMMENT='Assay results'"
        )

    def test_no_referential_clause_unless_requested(self, ddl, chem_mysql):
        """Test that a foreign key without actions leaves the database default in place."""
        sql = ddl.build_create_table(chem_mysql, "results", results_columns())

        assert "ON DELETE" not in sql
        assert "ON UPDATE" not in sql

    def test_referential_actions(self, ddl, chem_mysql):
        sql = ddl.build_create_table(
            chem_mysql, "results", results_columns(on_delete="set_null", on_update="cascade")
        )

        assert "REFERENCES `compounds` (`id`) ON DELETE SET NULL ON UPDATE CASCADE" in sql

    def test_invalid_referential_action(self, ddl, chem_mysql):
        with pytest.raises(InvalidColumnSpec):
            ddl.build_create_table(chem_mysql, "results", results_columns(on_delete="explode"))

    def test_charset_and_collation(self, ddl, chem_mysql):
        sql = ddl.build_create_table(chem_mysql, "t", [ColumnSpec("a", "TEXT")],
                                     charset="utf8mb4", collation="utf8mb4_general_ci")

        assert sql.endswith("DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_general_ci")

    def test_default_literal_is_escaped(self, ddl, chem_mysql):
        sql = ddl.build_create_table(chem_mysql, "t", [
            ColumnSpec("a", "VARCHAR", length=20, default_value="it's 10:30"),
        ])

        assert "DEFAULT 'it''s 10\\:30'" in sql

    def test_temporal_default_keyword(self, ddl, chem_mysql):
        sql = ddl.build_create_table(chem_mysql, "t", [
            ColumnSpec("created", "DATETIME", default_value="current_timestamp"),
        ])

        assert "`created` DATETIME DEFAULT CURRENT_TIMESTAMP" in sql

    def test_self_reference(self, ddl, chem_mysql):
        columns = [
            ColumnSpec("id", "INT", primary_key=True),
            ColumnSpec("parent_id", "INT", foreign_key=ForeignKeySpec("tree", "id")),
        ]

        sql = ddl.build_create_table(chem_mysql, "tree", columns)

        assert "FOREIGN KEY (`parent_id`) REFERENCES `tree` (`id`)" in sql


class TestValidation:
    """Tests for definitions rejected before any statement runs."""

    @pytest.mark.parametrize("spec", [
        ColumnSpec("name", "VARCHAR"),
        ColumnSpec("price", "DECIMAL"),
        ColumnSpec("code", "VARBINARY"),
    ])
    def test_required_length(self, ddl, chem_mysql, spec):
        with pytest.raises(InvalidColumnSpec, match="requires a length"):
            ddl.build_create_table(chem_mysql, "t", [spec])

    @pytest.mark.parametrize("spec", [
        ColumnSpec("a", "GEOMETRY"),
        ColumnSpec("a", "TEXT", length=10),
        ColumnSpec("a", "INT", decimals=2),
        ColumnSpec("a", "VARCHAR", length=0),
        ColumnSpec("a", "VARCHAR", length=10, auto_increment=True),
        ColumnSpec("a", "INT", default_value="abc"),
    ])
    def test_invalid_column(self, ddl, chem_mysql, spec):
        with pytest.raises(InvalidColumnSpec):
            ddl.build_create_table(chem_mysql, "t", [spec])

    def test_invalid_names(self, ddl, chem_mysql):
        with pytest.raises(InvalidIdentifier):
            ddl.build_create_table(chem_mysql, "bad name", [ColumnSpec("a", "TEXT")])
        with pytest.raises(InvalidIdentifier):
            ddl.build_create_table(chem_mysql, "t", [ColumnSpec("1a; DROP", "TEXT")])

    def test_duplicate_column(self, ddl, chem_mysql):
        with pytest.raises(InvalidColumnSpec, match="Duplicate"):
            ddl.build_create_table(chem_mysql, "t", [ColumnSpec("a", "TEXT"), ColumnSpec("A", "INT")])

    def test_no_columns(self, ddl, chem_mysql):
        with pytest.raises(InvalidColumnSpec):
            ddl.build_create_table(chem_mysql, "t", [])

    def test_fk_type_mismatch(self, ddl, chem_mysql):
        columns = [ColumnSpec("compound_id", "VARCHAR", length=10,
                              foreign_key=ForeignKeySpec("compounds", "id"))]

        with pytest.raises(ForeignKeyTypeMismatch) as exc_info:
            ddl.build_create_table(chem_mysql, "results", columns)

        assert exc_info.value.column == "compound_id"
        assert exc_info.value.required_type == "INT"

    def test_fk_missing_table(self, ddl, chem_mysql):
        columns = [ColumnSpec("reagent_id", "INT", foreign_key=ForeignKeySpec("reagents", "id"))]

        with pytest.raises(ForeignKeyTargetMissing):
            ddl.build_create_table(chem_mysql, "results", columns)

    def test_fk_missing_column(self, ddl, chem_mysql):
        columns = [ColumnSpec("compound_id", "INT", foreign_key=ForeignKeySpec("compounds", "uuid"))]

        with pytest.raises(ForeignKeyTargetMissing):
            ddl.build_create_table(chem_mysql, "results", columns)

    def test_self_reference_missing_column(self, ddl, chem_mysql):
        columns = [ColumnSpec("parent_id", "INT", foreign_key=ForeignKeySpec("tree", "id"))]

        with pytest.raises(ForeignKeyTargetMissing):
            ddl.build_create_table(chem_mysql, "tree", columns)


class TestCreateTable:
    """Tests for executing DDL against a live datasource."""

    def test_create_table(self, ddl, router, introspector):
        sql = ddl.create_table("chem", None, "results", results_columns())

        ds = router.resolve("chem")
        assert sql.startswith("CREATE TABLE `results`")
        assert [c.name for c in introspector.list_columns(ds, "results")] == [
            "id", "compound_id", "score", "label",
        ]
        assert introspector.foreign_keys(ds, "results")[0].to_table == "compounds"

    def test_rejected_definition_creates_nothing(self, ddl, router, introspector):
        columns = [ColumnSpec("compound_id", "BIGINT", foreign_key=ForeignKeySpec("compounds", "id"))]

        with pytest.raises(ForeignKeyTypeMismatch):
            ddl.create_table("chem", None, "results", columns)

        assert not introspector.table_exists(router.resolve("chem"), "results")

    def test_existing_table(self, ddl):
        with pytest.raises(TableAlreadyExists):
            ddl.create_table("chem", None, "compounds", [ColumnSpec("a", "TEXT")])

    def test_create_in_user_database(self, ddl, router, introspector):
        sql = ddl.create_table("login", "lab", "batches", [
            ColumnSpec("id", "INT", primary_key=True),
            ColumnSpec("code", "VARCHAR", length=16),
        ])

        assert "`lab`.`batches`" in sql
        assert introspector.table_exists(router.resolve("lab"), "batches")

    def test_drop_invalidates_cache(self, ddl, engine, cache):
        engine.search("chem", "compounds", "aspirin")
        ddl.drop_table("chem", "compounds")

        assert len(cache) == 0


class TestModifyColumn:
    """Tests for changing the type of an existing column."""

    @pytest.fixture
    def mysql_target(self, ddl, chem_mysql):
        """Route chem to its MySQL rendering and capture the executed DDL."""
        with patch.object(ddl.router, "resolve_target", return_value=chem_mysql), \
                patch.object(SqlExecutor, "execute_ddl") as execute_ddl:
            yield execute_ddl

    def test_build_modify_column(self, ddl, chem_mysql):
        sql = ddl.build_modify_column(
            chem_mysql, "compounds", ColumnSpec("formula", "DECIMAL", length=10, decimals=2)
        )

        assert sql == "ALTER TABLE `compounds` MODIFY COLUMN `formula` DECIMAL(10,2)"

    def test_keeps_not_null_and_matches_case_insensitively(self, ddl, mysql_target):
        sql = ddl.modify_column("chem", None, "compounds", "NAME", "varchar", 128)

        assert sql == "ALTER TABLE `compounds` MODIFY COLUMN `name` VARCHAR(128) NOT NULL"
        mysql_target.assert_called_once_with(sql)

    def test_invalidates_cache(self, ddl, engine, cache, mysql_target):
        engine.search("chem", "compounds", "aspirin")
        assert len(cache) == 1

        ddl.modify_column("chem", None, "compounds", "formula", "VARCHAR", 64)

        assert len(cache) == 0

    @pytest.mark.parametrize("declared_type,length", [
        ("VARCHAR", None),
        ("GEOMETRY", None),
        ("TEXT", 10),
    ])
    def test_validated_like_create_table(self, ddl, mysql_target, declared_type, length):
        with pytest.raises(InvalidColumnSpec):
            ddl.modify_column("chem", None, "compounds", "formula", declared_type, length)
        mysql_target.assert_not_called()

    def test_unknown_column(self, ddl):
        with pytest.raises(ColumnNotFound):
            ddl.modify_column("chem", None, "compounds", "weight", "INT")

    def test_unknown_table(self, ddl):
        with pytest.raises(TableNotFound):
            ddl.modify_column("chem", None, "reagents", "name", "INT")

    def test_unsupported_on_sqlite(self, ddl, router, introspector):
        with pytest.raises(UnsupportedOperation):
            ddl.modify_column("chem", None, "compounds", "formula", "VARCHAR", 64)

        columns = introspector.list_columns(router.resolve("chem"), "compounds")
        assert columns[2].sql_type == "VARCHAR(32)"


class TestDropAndDatabases:
    """Tests for dropping tables and database lifecycle."""

    def test_drop_table(self, ddl, router, introspector):
        ddl.drop_table("chem", "notes")

        assert not introspector.table_exists(router.resolve("chem"), "notes")

    def test_drop_missing_table(self, ddl):
        with pytest.raises(TableNotFound):
            ddl.drop_table("chem", "reagents")

    def test_create_database_unsupported_on_sqlite(self, ddl):
        with pytest.raises(UnsupportedOperation):
            ddl.create_database("warehouse")

    def test_reserved_database_names(self, ddl):
        with pytest.raises(InvalidIdentifier):
            ddl.create_database("information_schema")
        with pytest.raises(InvalidIdentifier):
            ddl.drop_database("chem")
        with pytest.raises(InvalidIdentifier):
            ddl.create_database("bad-name")

    def test_invalid_charset(self, ddl):
        with pytest.raises(InvalidColumnSpec):
            ddl.create_database("warehouse", charset="utf8; DROP")
