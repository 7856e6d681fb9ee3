"""Tests for DuckDB adapter."""

import pytest

from sideorm.db.base import validate_identifier
from sideorm.db.duckdb import DuckDBAdapter


def test_duckdb_adapter_memory():
    """Test DuckDB adapter with in-memory database."""
    adapter = DuckDBAdapter(":memory:")
    assert adapter.dialect == "duckdb"
    assert adapter.raw_connection is not None


def test_duckdb_adapter_execute_with_params():
    """Test executing queries with positional placeholders."""
    adapter = DuckDBAdapter()
    result = adapter.execute("SELECT ? as x, ? as y", [1, "two"])
    assert adapter.fetchone(result) == (1, "two")


def test_duckdb_adapter_column_names():
    """Column labels follow the select list order."""
    adapter = DuckDBAdapter()
    result = adapter.execute("SELECT 1 as b, 2 as a")
    assert adapter.column_names(result) == ["b", "a"]
    assert adapter.fetchall(result) == [(1, 2)]


def test_duckdb_adapter_affected_rows():
    """DML statements report how many rows they changed."""
    adapter = DuckDBAdapter()
    adapter.execute("CREATE TABLE test (x INT)")

    assert adapter.affected_rows(adapter.execute("INSERT INTO test VALUES (1), (2), (3)")) == 3
    assert adapter.affected_rows(adapter.execute("UPDATE test SET x = x + 1 WHERE x > ?", [1])) == 2
    assert adapter.affected_rows(adapter.execute("DELETE FROM test")) == 3


def test_duckdb_adapter_executemany():
    """Test executemany."""
    adapter = DuckDBAdapter()
    adapter.execute("CREATE TABLE test (x INT, y INT)")
    adapter.executemany("INSERT INTO test VALUES (?, ?)", [(1, 2), (3, 4)])
    result = adapter.execute("SELECT COUNT(*) FROM test")
    assert result.fetchone()[0] == 2


def test_duckdb_adapter_from_url_variations():
    """Test various memory URL formats."""
    for url in ["duckdb:///:memory:", "duckdb:///", "duckdb://"]:
        adapter = DuckDBAdapter.from_url(url)
        assert adapter.path == ":memory:"
        assert adapter.execute("SELECT 1").fetchone()[0] == 1


def test_duckdb_adapter_from_url_file(tmp_path):
    """File URLs keep the absolute path and persist across connections."""
    path = tmp_path / "app.duckdb"

    adapter = DuckDBAdapter.from_url(f"duckdb://{path}")
    assert adapter.path == str(path)
    adapter.execute("CREATE TABLE test (x INT)")
    adapter.execute("INSERT INTO test VALUES (7)")
    adapter.close()

    reopened = DuckDBAdapter(str(path))
    assert reopened.execute("SELECT x FROM test").fetchone()[0] == 7


def test_duckdb_adapter_from_url_rejects_other_schemes():
    with pytest.raises(ValueError, match="Invalid DuckDB URL"):
        DuckDBAdapter.from_url("postgres://localhost/db")


def test_duckdb_adapter_get_tables():
    """Test getting table list."""
    adapter = DuckDBAdapter()
    adapter.execute("CREATE TABLE test1 (x INT)")
    adapter.execute("CREATE TABLE test2 (x INT)")

    tables = adapter.get_tables()
    table_names = {t["table_name"] for t in tables}
    assert "test1" in table_names
    assert "test2" in table_names


def test_duckdb_adapter_get_columns():
    """Test getting column list."""
    adapter = DuckDBAdapter()
    adapter.execute("CREATE TABLE test (x INT, y VARCHAR)")

    columns = adapter.get_columns("test")
    assert {c["column_name"]: c["data_type"] for c in columns} == {"x": "INTEGER", "y": "VARCHAR"}


def test_duckdb_adapter_get_columns_validates_identifiers():
    adapter = DuckDBAdapter()

    with pytest.raises(ValueError, match="Invalid table name"):
        adapter.get_columns("test; DROP TABLE users")
    with pytest.raises(ValueError, match="Invalid schema"):
        adapter.get_columns("test", schema="main--")


def test_validate_identifier():
    assert validate_identifier("main.users") == "main.users"
    assert validate_identifier("_private") == "_private"

    with pytest.raises(ValueError, match="cannot be empty"):
        validate_identifier("")
    with pytest.raises(ValueError):
        validate_identifier("1users")


def test_duckdb_adapter_close():
    """Test closing connection."""
    adapter = DuckDBAdapter()
    adapter.execute("SELECT 1")
    adapter.close()
    # After close, new queries should fail
    with pytest.raises(Exception):
        adapter.execute("SELECT 1")
