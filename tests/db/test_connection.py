"""Tests for connections and the connection resolver."""

import pytest

from sideorm import SideORMConfig
from sideorm.config import DuckDBConnection
from sideorm.db.connection import Connection
from sideorm.db.duckdb import DuckDBAdapter
from sideorm.db.resolver import ConnectionResolver, make_adapter
from sideorm.exceptions import ConfigurationError


@pytest.fixture
def connection():
    conn = Connection(DuckDBAdapter(), name="test", log_queries=True)
    conn.statement("CREATE TABLE items (id INTEGER, label VARCHAR)")
    conn.flush_query_log()
    yield conn
    conn.close()


def test_select_returns_rows_as_dicts(connection):
    connection.insert("INSERT INTO items VALUES (?, ?), (?, ?)", [1, "a", 2, "b"])

    rows = connection.select("SELECT id, label FROM items ORDER BY id")

    assert rows == [{"id": 1, "label": "a"}, {"id": 2, "label": "b"}]
    assert connection.select_one("SELECT label FROM items WHERE id = ?", [2]) == {"label": "b"}
    assert connection.select_one("SELECT label FROM items WHERE id = ?", [9]) is None


def test_write_statements_return_affected_rows(connection):
    assert connection.insert("INSERT INTO items VALUES (1, 'a'), (2, 'b')") == 2
    assert connection.update("UPDATE items SET label = ? WHERE id = ?", ["z", 1]) == 1
    assert connection.delete("DELETE FROM items") == 2


def test_query_log_records_statements(connection):
    connection.select("SELECT * FROM items WHERE id = ?", [1])

    [entry] = connection.query_log
    assert entry["query"] == "SELECT * FROM items WHERE id = ?"
    assert entry["bindings"] == [1]
    assert entry["time"] >= 0


def test_query_log_can_be_toggled(connection):
    connection.disable_query_log()
    connection.select("SELECT 1")
    assert connection.query_log == []

    connection.enable_query_log()
    connection.select("SELECT 1")
    assert len(connection.query_log) == 1

    connection.flush_query_log()
    assert connection.query_log == []


def test_table_starts_a_query(connection):
    connection.insert("INSERT INTO items VALUES (1, 'a')")

    assert connection.table("items").value("label") == "a"
    assert connection.dialect == "duckdb"


def test_resolver_opens_connections_lazily():
    resolver = ConnectionResolver(SideORMConfig())

    assert resolver._connections == {}
    first = resolver.connection()
    assert resolver.connection("default") is first
    assert first.name == "default"

    resolver.disconnect()
    assert resolver._connections == {}


def test_resolver_named_connections_are_separate():
    config = SideORMConfig(
        default="main",
        connections={"main": DuckDBConnection(), "reporting": DuckDBConnection()},
        log_queries=True,
    )
    resolver = ConnectionResolver(config)

    resolver.connection().statement("CREATE TABLE only_main (x INT)")

    assert resolver.connection("reporting") is not resolver.connection("main")
    assert resolver.connection("reporting").logging_queries is True
    with pytest.raises(Exception):
        resolver.connection("reporting").select("SELECT * FROM only_main")

    resolver.disconnect()


def test_resolver_unknown_connection_raises():
    resolver = ConnectionResolver()

    with pytest.raises(ConfigurationError, match="not configured"):
        resolver.connection("missing")


def test_resolver_add_connection_and_default():
    resolver = ConnectionResolver()
    extra = Connection(DuckDBAdapter())

    resolver.add_connection("extra", extra)
    resolver.set_default_connection("extra")

    assert resolver.connection() is extra
    assert extra.name == "extra"
    assert resolver.has_connection("extra")
    assert resolver.has_connection("default")
    assert not resolver.has_connection("other")

    resolver.disconnect("extra")
    assert not resolver.has_connection("extra")


def test_make_adapter_rejects_unknown_urls():
    assert isinstance(make_adapter("duckdb:///:memory:"), DuckDBAdapter)

    with pytest.raises(ConfigurationError):
        make_adapter("sqlite:///app.db")


def test_schema_introspection(connection):
    assert "items" in connection.get_table_listing()
    assert connection.has_table("ITEMS")
    assert not connection.has_table("missing")

    assert sorted(connection.get_column_listing("items")) == ["id", "label"]
    assert sorted(connection.get_column_listing("main.items")) == ["id", "label"]
    assert connection.has_column("items", "Label")
    assert not connection.has_column("items", "price")


def test_schema_introspection_rejects_unsafe_names(connection):
    with pytest.raises(ValueError, match="Invalid table name"):
        connection.get_column_listing("items; DROP TABLE items")
