from contextlib import contextmanager
from typing import Any


@contextmanager
def count_queries(database: Any):
    """Collect the statements run on the default connection inside the block.

    Yields the connection's live query log; entries are dicts with ``query``,
    ``bindings`` and ``time`` keys.
    """
    connection = database.connection()
    connection.flush_query_log()
    yield connection.query_log


def table_rows(database: Any, table: str, order_by: str = "rowid") -> list[dict[str, Any]]:
    """Raw rows of a table, bypassing entities and scopes."""
    return database.select(f"SELECT * FROM {table} ORDER BY {order_by}")


def ids(entities: Any) -> list[Any]:
    """Sorted primary keys of a collection (or None for a missing entity)."""
    return sorted(entity.get_key() for entity in entities)
