"""Database facade wiring configuration, connections and events."""

import logging
from pathlib import Path
from typing import Any

from sideorm.config import DuckDBConnection, SideORMConfig, find_config, load_config
from sideorm.core.registry import reset_dispatcher, reset_resolver, set_dispatcher, set_resolver
from sideorm.db.connection import Connection
from sideorm.db.resolver import ConnectionResolver
from sideorm.events import Dispatcher
from sideorm.exceptions import ConfigurationError
from sideorm.query.builder import QueryBuilder

logger = logging.getLogger(__name__)


class Database:
    """Entry point for using entities.

    Owns the connection resolver and the event dispatcher. Entities look both
    up from the current context, so a Database must be installed before
    entities touch storage:

        >>> with Database(url="duckdb:///:memory:") as db:
        ...     db.statement("CREATE TABLE users (id INTEGER, name VARCHAR)")
        ...     User.create(name="Ada")
    """

    def __init__(
        self,
        config: SideORMConfig | None = None,
        url: str | None = None,
        dispatcher: Dispatcher | None = None,
    ):
        """Initialize database.

        Args:
            config: Parsed configuration (default: one in-memory DuckDB connection)
            url: Connection URL for the default connection, overriding ``config``
            dispatcher: Event dispatcher for entity lifecycle events
        """
        if url is not None:
            config = _config_from_url(url, config)

        self.config = config or SideORMConfig()
        self.resolver = ConnectionResolver(self.config)
        self.dispatcher = dispatcher or Dispatcher()
        self._tokens: list[tuple[Any, Any]] = []

    @classmethod
    def from_config(cls, path: str | Path | None = None, dispatcher: Dispatcher | None = None) -> "Database":
        """Build a Database from a sideorm.yaml / sideorm.json file.

        Args:
            path: Config file path (searched for from the cwd upwards when omitted)
            dispatcher: Event dispatcher for entity lifecycle events

        Raises:
            ConfigurationError: If no config file is found
        """
        config_path = Path(path) if path else find_config()
        if config_path is None:
            raise ConfigurationError("No sideorm.yaml, sideorm.yml or sideorm.json found")

        logger.debug(f"Loading config from {config_path}")
        return cls(load_config(config_path), dispatcher=dispatcher)

    def install(self) -> "Database":
        """Make this database current for entity operations in this context."""
        self._tokens.append((set_resolver(self.resolver), set_dispatcher(self.dispatcher)))
        return self

    def uninstall(self) -> None:
        """Restore whatever database was current before the last ``install``."""
        if not self._tokens:
            return
        resolver_token, dispatcher_token = self._tokens.pop()
        reset_dispatcher(dispatcher_token)
        reset_resolver(resolver_token)

    def __enter__(self):
        """Context manager entry - install as current database."""
        return self.install()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - restore the previous database."""
        self.uninstall()

    def connection(self, name: str | None = None) -> Connection:
        return self.resolver.connection(name)

    def table(self, table: str, connection: str | None = None) -> QueryBuilder:
        """Begin a fluent query against a table."""
        return self.connection(connection).table(table)

    def select(self, sql: str, bindings: list | None = None, connection: str | None = None) -> list[dict[str, Any]]:
        return self.connection(connection).select(sql, bindings)

    def statement(self, sql: str, bindings: list | None = None, connection: str | None = None) -> bool:
        return self.connection(connection).statement(sql, bindings)

    def disconnect(self, name: str | None = None) -> None:
        """Close one connection, or every open connection."""
        self.resolver.disconnect(name)


def _config_from_url(url: str, config: SideORMConfig | None) -> SideORMConfig:
    if not url.startswith("duckdb://"):
        raise ConfigurationError(f"Connection type {url} not yet supported")

    path = url[len("duckdb://") :]
    if path in ("/:memory:", ":memory:", "", "/"):
        path = ":memory:"

    base = config or SideORMConfig()
    connections = {**base.connections, base.default: DuckDBConnection(path=path)}
    return base.model_copy(update={"connections": connections})
