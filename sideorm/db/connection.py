"""Connection wrapper that executes compiled statements through an adapter."""

import logging
import time
from typing import TYPE_CHECKING, Any

from sideorm.config import DEFAULT_DATE_FORMAT
from sideorm.db.base import BaseDatabaseAdapter

if TYPE_CHECKING:
    from sideorm.query.builder import QueryBuilder

logger = logging.getLogger(__name__)


class Connection:
    """A named database connection.

    Runs SQL through a database adapter, converts result rows into
    dictionaries and optionally records every statement in a query log.
    """

    def __init__(
        self,
        adapter: BaseDatabaseAdapter,
        name: str = "default",
        date_format: str = DEFAULT_DATE_FORMAT,
        log_queries: bool = False,
    ):
        """Initialize connection.

        Args:
            adapter: Database adapter that executes SQL
            name: Connection name used by the resolver
            date_format: strftime/strptime format for date columns
            log_queries: Record executed statements in ``query_log``
        """
        self.adapter = adapter
        self.name = name
        self.date_format = date_format
        self.logging_queries = log_queries
        self.query_log: list[dict[str, Any]] = []

    @property
    def dialect(self) -> str:
        """SQLGlot dialect used to render statements for this connection."""
        return self.adapter.dialect

    def query(self) -> "QueryBuilder":
        """Begin a fluent query against this connection."""
        from sideorm.query.builder import QueryBuilder

        return QueryBuilder(self)

    def table(self, table: str) -> "QueryBuilder":
        """Begin a fluent query against a table."""
        return self.query().from_(table)

    def select(self, sql: str, bindings: list | None = None) -> list[dict[str, Any]]:
        """Run a select statement and return rows keyed by column label."""
        result = self._run(sql, bindings)
        columns = self.adapter.column_names(result)
        return [dict(zip(columns, row)) for row in self.adapter.fetchall(result)]

    def select_one(self, sql: str, bindings: list | None = None) -> dict[str, Any] | None:
        """Run a select statement and return the first row."""
        rows = self.select(sql, bindings)
        return rows[0] if rows else None

    def insert(self, sql: str, bindings: list | None = None) -> int:
        """Run an insert statement and return the inserted row count."""
        return self.affecting_statement(sql, bindings)

    def update(self, sql: str, bindings: list | None = None) -> int:
        """Run an update statement and return the affected row count."""
        return self.affecting_statement(sql, bindings)

    def delete(self, sql: str, bindings: list | None = None) -> int:
        """Run a delete statement and return the affected row count."""
        return self.affecting_statement(sql, bindings)

    def affecting_statement(self, sql: str, bindings: list | None = None) -> int:
        result = self._run(sql, bindings)
        return self.adapter.affected_rows(result)

    def statement(self, sql: str, bindings: list | None = None) -> bool:
        """Run a statement that returns nothing useful (DDL, raw writes)."""
        self._run(sql, bindings)
        return True

    def enable_query_log(self) -> None:
        self.logging_queries = True

    def disable_query_log(self) -> None:
        self.logging_queries = False

    def flush_query_log(self) -> None:
        self.query_log = []

    # Schema introspection

    def get_table_listing(self) -> list[str]:
        return [table["table_name"] for table in self.adapter.get_tables()]

    def has_table(self, table: str) -> bool:
        return table.lower() in (name.lower() for name in self.get_table_listing())

    def get_column_listing(self, table: str) -> list[str]:
        """Column names of ``table``; a ``schema.table`` name limits the lookup to that schema.

        Raises:
            ValueError: If the table or schema name is not a plain identifier
        """
        schema, _, name = table.rpartition(".")
        columns = self.adapter.get_columns(name, schema or None)
        return [column["column_name"] for column in columns]

    def has_column(self, table: str, column: str) -> bool:
        return column.lower() in (name.lower() for name in self.get_column_listing(table))

    def close(self) -> None:
        self.adapter.close()

    def _run(self, sql: str, bindings: list | None) -> Any:
        bindings = list(bindings or [])
        start = time.perf_counter()

        result = self.adapter.execute(sql, bindings)

        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(f"[{self.name}] {sql} {bindings} ({elapsed:.2f} ms)")

        if self.logging_queries:
            self.query_log.append({"query": sql, "bindings": bindings, "time": elapsed})

        return result
