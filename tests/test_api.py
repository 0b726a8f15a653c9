"""Tests for the HTTP endpoints."""

import os

import duckdb
import pytest
from fastapi.testclient import TestClient

from duckdb_explorer.config import settings
from duckdb_explorer.main import app


@pytest.fixture
def duckdb_bytes(tmp_path):
    """Bytes of a small DuckDB file with an ``orders`` table."""
    source = tmp_path / "source.duckdb"
    conn = duckdb.connect(str(source))
    conn.execute("CREATE TABLE orders AS SELECT range AS id FROM range(5)")
    conn.close()
    return source.read_bytes()


class TestRoot:
    """Tests for service-level endpoints."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == settings.api_title
        assert data["api"] == settings.api_prefix

    def test_health(self, client, temp_data_dir):
        """Test health check with both directories in place."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["storage_available"] is True
        assert data["details"] == {"data_dir": True, "meta_dir": True}
        assert data["pool_size"] == 0
        assert data["max_pool_size"] == settings.max_pool_size
        assert data["active_path"] is None

    def test_health_reports_active_database(self, client, api_prefix, temp_data_dir):
        """Test that the pool section follows the opened database."""
        opened = client.post(f"{api_prefix}/open", json={"filename": "shop.duckdb"}).json()

        data = client.get("/health").json()

        assert data["pool_size"] == 1
        assert data["active_path"] == opened["path"]

    def test_health_missing_directory(self, client, temp_data_dir):
        """Test that a vanished backup directory reports unhealthy."""
        os.rmdir(temp_data_dir["meta_dir"])

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "storage_unavailable"

    def test_request_id_echoed(self, client):
        """Test that a caller-supplied request id is returned."""
        response = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client):
        response = client.get("/health")

        assert response.headers["X-Request-ID"]

    def test_explorer_unavailable_without_lifespan(self, temp_data_dir):
        """Test that handlers answer 503 before the service has started."""
        app.state.explorer = None
        response = TestClient(app).get(f"{settings.api_prefix}/info")

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "service_unavailable"

    def test_unhandled_exception_returns_500(self, temp_data_dir, monkeypatch):
        """Test the global exception handler."""
        with TestClient(app, raise_server_exceptions=False) as test_client:

            def explode():
                raise RuntimeError("kaboom")

            monkeypatch.setattr(app.state.explorer, "database_info", explode)
            response = test_client.get(f"{settings.api_prefix}/info")

        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"


class TestQueryEndpoint:
    """Tests for POST /query."""

    def test_query_demo_database(self, client, api_prefix):
        """Test querying the in-memory demo data."""
        response = client.post(
            f"{api_prefix}/query",
            json={"sql": "SELECT name, value FROM items ORDER BY value DESC LIMIT 2"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "results": [
                {"name": "Foxtrot", "value": 40},
                {"name": "Delta", "value": 30},
            ]
        }

    def test_query_with_params(self, client, api_prefix):
        response = client.post(
            f"{api_prefix}/query",
            json={"sql": "SELECT name FROM items WHERE id = ?", "params": [3]},
        )

        assert response.json() == {"results": [{"name": "Charlie"}]}

    def test_query_serializes_dates(self, client, api_prefix):
        """Test that non-JSON engine types are stringified."""
        response = client.post(
            f"{api_prefix}/query", json={"sql": "SELECT DATE '2024-03-01' AS d"}
        )

        assert response.json() == {"results": [{"d": "2024-03-01"}]}

    def test_missing_sql(self, client, api_prefix):
        response = client.post(f"{api_prefix}/query", json={})

        assert response.status_code == 400
        assert response.json() == {
            "error": "validation_error",
            "message": "SQL query is required",
        }

    def test_missing_table(self, client, api_prefix):
        """Test that a missing relation reports the tables that exist."""
        response = client.post(
            f"{api_prefix}/query", json={"sql": "SELECT * FROM nonexistent"}
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Table not found"
        assert data["targetTable"] == "nonexistent"
        assert data["availableTables"] == ["items"]
        assert "nonexistent" in data["message"]

    def test_syntax_error(self, client, api_prefix):
        """Test that other engine errors are passed through."""
        response = client.post(f"{api_prefix}/query", json={"sql": "SELEC 1"})

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Query error"
        assert "targetTable" not in data

    def test_query_named_database(self, client, api_prefix):
        """Test that dbPath selects the database."""
        client.post(f"{api_prefix}/open", json={"filename": "shop.duckdb"})
        client.post(
            f"{api_prefix}/query",
            json={"sql": "CREATE TABLE orders (id INTEGER)", "dbPath": "shop.duckdb"},
        )

        response = client.post(
            f"{api_prefix}/query",
            json={"sql": "SELECT count(*) AS n FROM orders", "dbPath": "shop.duckdb"},
        )

        assert response.json() == {"results": [{"n": 0}]}


class TestTablesAndInfo:
    """Tests for GET /tables and GET /info."""

    def test_info_before_any_request(self, client, api_prefix):
        response = client.get(f"{api_prefix}/info")

        assert response.json() == {"connected": False, "path": ":memory:"}

    def test_tables_of_demo_database(self, client, api_prefix):
        response = client.get(f"{api_prefix}/tables")

        assert response.status_code == 200
        assert response.json() == {"tables": [{"name": "items", "type": "table"}]}

    def test_tables_for_db_path(self, client, api_prefix):
        """Test listing a database named in the query string."""
        client.post(f"{api_prefix}/open", json={"filename": "shop.duckdb"})
        client.post(f"{api_prefix}/query", json={"sql": "CREATE TABLE orders (id INTEGER)"})
        client.post(f"{api_prefix}/open", json={"filename": "other.duckdb"})

        response = client.get(f"{api_prefix}/tables", params={"dbPath": "shop.duckdb"})

        assert response.json() == {"tables": [{"name": "orders", "type": "table"}]}

    def test_info_after_open(self, client, api_prefix, temp_data_dir):
        client.post(f"{api_prefix}/open", json={"filename": "shop.duckdb"})

        response = client.get(f"{api_prefix}/info")

        assert response.json() == {
            "connected": True,
            "path": os.path.join(os.path.abspath(temp_data_dir["data_dir"]), "shop.duckdb"),
        }


class TestOpenEndpoint:
    """Tests for POST /open."""

    def test_open_new_database(self, client, api_prefix, temp_data_dir):
        """Test creating a database through the API."""
        response = client.post(f"{api_prefix}/open", json={"filename": "test.duckdb"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["isNew"] is True
        assert data["tableCount"] == 1
        assert data["tables"] == ["items"]
        assert (temp_data_dir["data_dir"] / "test.duckdb").exists()

    def test_reopen_is_not_new(self, client, api_prefix):
        client.post(f"{api_prefix}/open", json={"filename": "test.duckdb"})

        response = client.post(f"{api_prefix}/open", json={"filename": "test.duckdb"})

        assert response.json()["isNew"] is False

    def test_missing_filename(self, client, api_prefix):
        response = client.post(f"{api_prefix}/open", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_open_invalid_file(self, client, api_prefix, temp_data_dir):
        """Test that open failures are reported in the body."""
        (temp_data_dir["data_dir"] / "bogus.duckdb").write_text("nope " * 200)

        response = client.post(f"{api_prefix}/open", json={"filename": "bogus.duckdb"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["message"].startswith("Failed to open database: ")


class TestBackupEndpoint:
    """Tests for POST /backup."""

    def test_backup(self, client, api_prefix, temp_data_dir):
        """Test backing up an opened database."""
        client.post(f"{api_prefix}/open", json={"filename": "shop.duckdb"})

        response = client.post(f"{api_prefix}/backup", json={"filename": "shop.duckdb"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["sizeBytes"] > 0
        assert os.path.dirname(data["path"]) == str(
            os.path.abspath(temp_data_dir["meta_dir"])
        )
        assert os.path.basename(data["path"]).startswith("shop_backup_")

    def test_backup_memory_rejected(self, client, api_prefix):
        response = client.post(f"{api_prefix}/backup", json={"filename": ":memory:"})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert "in-memory" in data["message"]

    def test_backup_missing_filename(self, client, api_prefix):
        response = client.post(f"{api_prefix}/backup", json={})

        assert response.status_code == 400


class TestUploadEndpoint:
    """Tests for POST /upload."""

    def test_upload_valid_database(self, client, api_prefix, temp_data_dir, duckdb_bytes):
        """Test that an uploaded database is stored and opened."""
        response = client.post(
            f"{api_prefix}/upload",
            files={"file": ("my sales.duckdb", duckdb_bytes, "application/octet-stream")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["filename"] == "my_sales.duckdb"
        assert (temp_data_dir["data_dir"] / "my_sales.duckdb").exists()

        tables = client.get(f"{api_prefix}/tables").json()
        assert tables == {"tables": [{"name": "orders", "type": "table"}]}

    def test_upload_replaces_open_database(self, client, api_prefix, duckdb_bytes):
        """Test that uploading over a pooled file closes it first."""
        client.post(f"{api_prefix}/open", json={"filename": "shop.duckdb"})

        response = client.post(
            f"{api_prefix}/upload",
            files={"file": ("shop.duckdb", duckdb_bytes, "application/octet-stream")},
        )

        assert response.status_code == 200
        result = client.post(
            f"{api_prefix}/query", json={"sql": "SELECT count(*) AS n FROM orders"}
        )
        assert result.json() == {"results": [{"n": 5}]}

    def test_upload_wrong_extension(self, client, api_prefix, temp_data_dir):
        response = client.post(
            f"{api_prefix}/upload",
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_file_extension"
        assert not (temp_data_dir["data_dir"] / "notes.txt").exists()

    def test_upload_invalid_database(self, client, api_prefix, temp_data_dir):
        """Test that a file DuckDB cannot open is rejected and deleted."""
        response = client.post(
            f"{api_prefix}/upload",
            files={"file": ("fake.duckdb", b"not a database " * 100, "application/octet-stream")},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_database_file"
        assert not (temp_data_dir["data_dir"] / "fake.duckdb").exists()

    def test_upload_too_large(self, client, api_prefix, temp_data_dir, monkeypatch):
        """Test that oversized uploads are refused and not kept."""
        monkeypatch.setattr(settings, "upload_max_bytes", 16)

        response = client.post(
            f"{api_prefix}/upload",
            files={"file": ("big.duckdb", b"x" * 64, "application/octet-stream")},
        )

        assert response.status_code == 413
        data = response.json()
        assert data["error"] == "file_too_large"
        assert data["details"] == {"max_size_bytes": 16}
        assert not (temp_data_dir["data_dir"] / "big.duckdb").exists()
        assert list(temp_data_dir["data_dir"].glob("*.part")) == []

    def test_upload_too_large_keeps_existing_database(
        self, client, api_prefix, temp_data_dir, monkeypatch
    ):
        """Test that a refused upload leaves a same-named database untouched."""
        client.post(f"{api_prefix}/open", json={"filename": "keep.duckdb"})
        client.post(
            f"{api_prefix}/query",
            json={"sql": "CREATE TABLE precious AS SELECT 42 AS answer"},
        )
        monkeypatch.setattr(settings, "upload_max_bytes", 16)

        response = client.post(
            f"{api_prefix}/upload",
            files={"file": ("keep.duckdb", b"x" * 64, "application/octet-stream")},
        )

        assert response.status_code == 413
        assert (temp_data_dir["data_dir"] / "keep.duckdb").exists()
        assert list(temp_data_dir["data_dir"].glob("*.part")) == []
        result = client.post(
            f"{api_prefix}/query",
            json={"sql": "SELECT answer FROM precious", "dbPath": "keep.duckdb"},
        )
        assert result.json() == {"results": [{"answer": 42}]}

    def test_upload_without_file(self, client, api_prefix):
        """Test that a multipart body without a file is a validation error."""
        response = client.post(
            f"{api_prefix}/upload",
            files={"attachment": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "validation_error",
            "message": "No file uploaded",
        }
