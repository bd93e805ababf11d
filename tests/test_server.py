# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for the REST API."""

import io
import json

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from quarry.server.app import create_app
from quarry.server.config import ServerConfig


@pytest.fixture
def app(config, attach_lab):
    app = create_app(config, ServerConfig())
    attach_lab(app.state.router)
    yield app
    app.state.scan_executor.shutdown(wait=True)
    app.state.router.close()


@pytest.fixture
def client(app):
    return TestClient(app)


def parse_sse(body: str) -> list[tuple[str, dict]]:
    """(event type, payload) pairs of a text/event-stream body."""
    events = []
    for block in body.strip().split("\n\n"):
        fields = dict(line.split(": ", 1) for line in block.splitlines() if ": " in line)
        events.append((fields["event"], json.loads(fields["data"])))
    return events


class TestHealthAndCatalog:
    """Tests for health and datasource catalog endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["datasources"]["default"] == "login"
        assert data["cache"]["entries"] == 0

    def test_list_datasources(self, client):
        data = client.get("/api/datasources").json()

        assert [d["name"] for d in data["datasources"]] == ["chem", "login"]
        assert "lab" in data["user_databases"]

    def test_list_tables(self, client):
        data = client.get("/api/datasources/chem/tables").json()

        assert data["kind"] == "configured"
        assert [t["name"] for t in data["tables"]] == ["assays", "compounds", "measurements", "notes"]

    def test_list_tables_user_created(self, client):
        data = client.get("/api/datasources/lab/tables", params={"include_columns": True}).json()

        assert data["kind"] == "user_created"
        assert [c["name"] for c in data["tables"][0]["columns"]] == ["id", "label"]

    def test_get_table(self, client):
        data = client.get("/api/datasources/chem/tables/compounds").json()

        assert [c["name"] for c in data["columns"]] == ["id", "name", "formula"]
        assert data["foreign_keys"] == []

    def test_indexes(self, client):
        data = client.get("/api/datasources/chem/tables/compounds/indexes").json()

        assert data["indexes"] == [
            {"name": "PRIMARY", "columns": ["id"], "unique": True, "primary": True},
        ]

    def test_count(self, client):
        assert client.get("/api/datasources/chem/tables/compounds/count").json() == {
            "table": "compounds",
            "count": 4,
            "approximate": False,
        }

    def test_find_columns(self, client):
        data = client.get("/api/datasources/chem/columns", params={"pattern": "compound"}).json()

        assert data["matches"] == [{"table": "assays", "column": "compound_id", "type": "INTEGER"}]

    def test_test_connection(self, client):
        assert client.get("/api/datasources/chem/test").json() == {"name": "chem", "connected": True}

    def test_add_and_remove_datasource(self, client, db_paths):
        response = client.post("/api/datasources", json={"name": "lab2", "uri": f"sqlite:///{db_paths['lab']}"})
        assert response.status_code == 200

        assert client.get("/api/datasources/lab2/tables").json()["kind"] == "configured"
        assert client.delete("/api/datasources/lab2").json() == {"status": "removed", "name": "lab2"}

    def test_unknown_datasource(self, client):
        response = client.get("/api/datasources/nowhere/tables")

        assert response.status_code == 404
        assert response.json()["error"] == "unknown_datasource"

    def test_system_schema_is_not_a_datasource(self, client):
        response = client.get("/api/datasources/information_schema/tables")

        assert response.status_code == 404

    def test_unknown_table(self, client):
        response = client.get("/api/datasources/chem/tables/reagents")

        assert response.status_code == 404
        assert response.json()["error"] == "table_not_found"


class TestSearchEndpoints:
    """Tests for search, paging and scans."""

    def test_search(self, client):
        response = client.get("/api/search/chem/compounds", params={"value": "123"})

        assert response.json() == {"matched": True, "count": 2, "cached": False}

    def test_search_mode(self, client):
        data = client.get("/api/search/chem/compounds", params={"value": "123", "mode": "text_only"}).json()

        assert data["count"] == 1

    def test_invalid_mode(self, client):
        response = client.get("/api/search/chem/compounds", params={"value": "1", "mode": "fuzzy"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_blank_value(self, client):
        response = client.get("/api/search/chem/compounds", params={"value": " "})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_search_value"

    def test_no_applicable_column(self, client):
        response = client.get("/api/search/chem/measurements", params={"value": "aspirin"})

        assert response.status_code == 400
        assert response.json()["error"] == "no_applicable_column"

    def test_rows(self, client):
        data = client.get("/api/search/chem/compounds/rows", params={"value": "e", "size": 1, "page": 2}).json()

        assert data["total_count"] == 2
        assert data["total_pages"] == 2
        assert [r["name"] for r in data["rows"]] == ["Ibuprofen"]

    def test_rows_without_value(self, client):
        data = client.get("/api/search/lab/samples/rows").json()

        assert data["total_count"] == 2
        assert data["size"] == 50

    def test_find_tables_by_column(self, client):
        data = client.get("/api/search/chem", params={"column": "body"}).json()

        assert data["matches"][0]["table"] == "notes"

    def test_scan(self, client):
        data = client.get("/api/scan/chem", params={"value": "aspirin"}).json()

        assert data["state"] == "done"
        assert [t["table"] for t in data["tables"]] == ["compounds", "notes"]
        assert data["searched_count"] == 4

    def test_scan_unknown_datasource(self, client):
        response = client.get("/api/scan/nowhere", params={"value": "aspirin"})

        assert response.status_code == 404

    def test_scan_stream(self, client):
        response = client.get("/api/scan/chem/stream", params={"value": "123"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(response.text)
        types = [t for t, _ in events]
        assert types[:2] == ["start", "total"]
        assert types[-1] == "complete"
        assert [d["table"]["table"] for t, d in events if t == "found"] == ["assays", "compounds"]
        assert events[-1][1]["found_count"] == 2

    def test_scan_stream_error_event(self, client):
        events = parse_sse(client.get("/api/scan/nowhere/stream", params={"value": "x"}).text)

        assert events[-1][0] == "error"
        assert events[-1][1]["error"] == "unknown_datasource"


class TestDdlEndpoints:
    """Tests for table and database DDL."""

    def test_types(self, client):
        names = [t["name"] for t in client.get("/api/ddl/types").json()["types"]]

        assert "VARCHAR" in names and "DECIMAL" in names

    def test_create_table(self, client):
        body = {
            "table": "results",
            "columns": [
                {"name": "id", "type": "INT", "primary_key": True, "not_null": True},
                {"name": "compound_id", "type": "INT",
                 "foreign_key": {"ref_table": "compounds", "ref_column": "id"}},
            ],
        }

        response = client.post("/api/ddl/chem/tables", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "created"
        assert "ON DELETE" not in data["sql"]
        assert client.get("/api/datasources/chem/tables/results").json()["foreign_keys"] == [
            {"from_column": "compound_id", "to_table": "compounds", "to_column": "id"}
        ]

    def test_create_table_type_mismatch(self, client):
        body = {
            "table": "results",
            "columns": [{"name": "compound_id", "type": "VARCHAR", "length": 8,
                         "foreign_key": {"ref_table": "compounds", "ref_column": "id"}}],
        }

        response = client.post("/api/ddl/chem/tables", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "foreign_key_type_mismatch"
        assert client.get("/api/datasources/chem/tables/results").status_code == 404

    def test_create_existing_table(self, client):
        body = {"table": "notes", "columns": [{"name": "a", "type": "TEXT"}]}

        response = client.post("/api/ddl/chem/tables", json=body)

        assert response.status_code == 409
        assert response.json()["error"] == "table_exists"

    def test_invalid_table_name(self, client):
        body = {"table": "drop table", "columns": [{"name": "a", "type": "TEXT"}]}

        response = client.post("/api/ddl/chem/tables", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_identifier"

    def test_missing_body_fields(self, client):
        response = client.post("/api/ddl/chem/tables", json={"table": "t"})

        assert response.status_code == 422

    def test_drop_table(self, client):
        assert client.delete("/api/ddl/chem/tables/notes").json() == {"status": "dropped", "table": "notes"}
        assert client.get("/api/datasources/chem/tables/notes").status_code == 404

    def test_create_database_unsupported(self, client):
        response = client.post("/api/ddl/databases", json={"name": "warehouse"})

        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_operation"

    def test_modify_column_unsupported(self, client):
        response = client.put(
            "/api/ddl/chem/tables/compounds/columns/formula",
            json={"type": "VARCHAR", "length": 64},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_operation"

    def test_modify_column_invalid_type(self, client):
        response = client.put(
            "/api/ddl/chem/tables/compounds/columns/formula",
            json={"type": "VARCHAR"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_column_spec"

    def test_modify_unknown_column(self, client):
        response = client.put("/api/ddl/chem/tables/compounds/columns/weight", json={"type": "INT"})

        assert response.json()["error"] == "column_not_found"


class TestDataEndpoints:
    """Tests for imports and row edits."""

    def test_import(self, client):
        body = {"rows": [{"id": 1, "reading": 9}, {"id": 3, "reading": 4}]}

        data = client.post("/api/data/chem/measurements/import", json=body).json()

        assert data["success"] == 1
        assert data["skipped"] == 1
        assert data["strategy"] == "append"

    def test_import_overwrite(self, client):
        body = {"rows": [{"id": 1, "reading": 9}], "strategy": "overwrite"}

        data = client.post("/api/data/chem/measurements/import", json=body).json()

        assert data["deleted_rows"] == 2

    def test_transactional_import_failure(self, client):
        body = {"rows": [{"id": 10, "name": "A"}, {"id": 10, "name": "B"}], "strategy": "overwrite",
                "transactional": True}

        response = client.post("/api/data/chem/compounds/import", json=body)

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_key"
        assert client.get("/api/datasources/chem/tables/compounds/count").json()["count"] == 4

    def test_import_invalidates_search(self, client):
        assert client.get("/api/search/chem/compounds", params={"value": "naproxen"}).json()["count"] == 0
        client.post("/api/data/chem/compounds/import", json={"rows": [{"id": 9, "name": "Naproxen"}]})

        assert client.get("/api/search/chem/compounds", params={"value": "naproxen"}).json()["count"] == 1

    def test_upload_csv(self, client):
        files = {"file": ("measurements.csv", b"id,reading\n3,\n4,12\n", "text/csv")}

        response = client.post("/api/data/chem/measurements/upload", files=files, data={"strategy": "append"})

        assert response.status_code == 200
        assert response.json()["success"] == 2

    def test_upload_unsupported_type(self, client):
        files = {"file": ("book.xlsx", b"PK", "application/octet-stream")}

        response = client.post("/api/data/chem/measurements/upload", files=files)

        assert response.status_code == 400

    def test_validate(self, client):
        data = client.post("/api/data/chem/compounds/validate", json={"rows": [{"id": "x"}]}).json()

        assert data["valid"] is False
        assert "Missing required column 'name'" in data["errors"]

    def test_auto_create(self, client):
        body = {"table": "uploads", "rows": [{"Lot No": "17", "Note": "ok"}]}

        data = client.post("/api/data/chem/auto-create", json=body).json()

        assert data["renamed"] == {"Lot No": "Lot_No", "Note": "Note"}
        assert data["report"]["success"] == 1

    def test_auto_create_with_primary_key(self, client):
        body = {
            "table": "uploads",
            "rows": [{"Lot No": "17", "Note": "ok"}, {"Lot No": "17", "Note": "again"}],
            "primary_keys": ["Lot No"],
            "transactional": True,
        }

        response = client.post("/api/data/chem/auto-create", json=body)

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_key"
        tables = client.get("/api/datasources/chem/tables", params={"include_columns": True}).json()
        uploads = next(t for t in tables["tables"] if t["name"] == "uploads")
        assert uploads["primary_keys"] == ["Lot_No"]

    def test_row_edits(self, client):
        insert = client.post("/api/data/chem/assays/rows", json={"values": {"id": 7, "result": "pending"}})
        update = client.put("/api/data/chem/assays/rows",
                            json={"values": {"result": "done"}, "conditions": {"id": 7}})
        delete = client.post("/api/data/chem/assays/rows/delete", json={"conditions": {"result": "done"}})

        assert insert.json() == {"affected_rows": 1}
        assert update.json() == {"affected_rows": 1}
        assert delete.json() == {"affected_rows": 1}

    def test_delete_without_conditions(self, client):
        response = client.post("/api/data/chem/assays/rows/delete", json={"conditions": {}})

        assert response.status_code == 400

    def test_insert_unknown_column(self, client):
        response = client.post("/api/data/chem/assays/rows", json={"values": {"status": "x"}})

        assert response.status_code == 400
        assert response.json()["error"] == "column_not_found"


class TestExportEndpoints:
    """Tests for table and search result downloads."""

    def test_csv(self, client):
        response = client.get("/api/export/chem/compounds")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"] == 'attachment; filename="compounds_export.csv"'
        assert response.headers["x-row-count"] == "4"
        assert response.content.decode("utf-8-sig").splitlines()[0] == "id,name,formula"

    def test_search_result_xlsx(self, client):
        response = client.get(
            "/api/export/chem/compounds", params={"format": "xlsx", "value": "aspirin"}
        )

        assert response.status_code == 200
        assert response.headers["content-disposition"] == 'attachment; filename="compounds_search.xlsx"'
        df = pd.read_excel(io.BytesIO(response.content), sheet_name="compounds")
        assert df["name"].tolist() == ["Aspirin"]

    def test_unsupported_format(self, client):
        response = client.get("/api/export/chem/compounds", params={"format": "pdf"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_info(self, client):
        data = client.get("/api/export/chem/compounds/info", params={"value": "e"}).json()

        assert data["total_rows"] == 2
        assert [c["name"] for c in data["columns"]] == ["id", "name", "formula"]

    def test_unknown_table(self, client):
        assert client.get("/api/export/chem/reagents").status_code == 404


class TestCacheEndpoints:
    def test_stats_invalidate_and_clear(self, client):
        client.get("/api/search/chem/compounds", params={"value": "aspirin"})
        client.get("/api/search/chem/notes", params={"value": "aspirin"})

        assert client.get("/api/cache/stats").json()["entries"] == 2
        assert client.post("/api/cache/invalidate/chem/compounds").json() == {"removed": 1}
        client.post("/api/cache/clear")
        assert client.get("/api/cache/stats").json()["entries"] == 0
        assert client.post("/api/cache/sweep").status_code == 200
