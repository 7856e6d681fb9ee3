"""Named connection resolution."""

import logging

from sideorm.config import SideORMConfig, build_connection_url
from sideorm.db.connection import Connection
from sideorm.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def make_adapter(url: str):
    """Create a database adapter from a connection URL."""
    if url.startswith("duckdb://"):
        from sideorm.db.duckdb import DuckDBAdapter

        return DuckDBAdapter.from_url(url)

    raise ConfigurationError(f"Connection type {url} not yet supported")


class ConnectionResolver:
    """Resolves connection names to live connections.

    Connections declared in the config are opened lazily the first time they
    are requested. Connections can also be registered directly.
    """

    def __init__(self, config: SideORMConfig | None = None):
        self.config = config or SideORMConfig()
        self.default_connection = self.config.default
        self._connections: dict[str, Connection] = {}

    def connection(self, name: str | None = None) -> Connection:
        """Get a connection by name (the default connection when omitted)."""
        name = name or self.default_connection

        if name not in self._connections:
            self._connections[name] = self.resolve(name)

        return self._connections[name]

    def resolve(self, name: str) -> Connection:
        """Open the connection configured under ``name``."""
        entry = self.config.connections.get(name)
        if entry is None:
            raise ConfigurationError(f"Database connection [{name}] not configured")

        url = build_connection_url(entry)
        logger.debug(f"Opening connection '{name}' ({url})")

        return Connection(
            make_adapter(url),
            name=name,
            date_format=self.config.date_format,
            log_queries=self.config.log_queries,
        )

    def add_connection(self, name: str, connection: Connection) -> None:
        """Register an already open connection under ``name``."""
        connection.name = name
        self._connections[name] = connection

    def has_connection(self, name: str) -> bool:
        return name in self._connections or name in self.config.connections

    def set_default_connection(self, name: str) -> None:
        self.default_connection = name

    def disconnect(self, name: str | None = None) -> None:
        """Close and forget one connection, or all of them."""
        names = [name] if name else list(self._connections)
        for key in names:
            connection = self._connections.pop(key, None)
            if connection is not None:
                connection.close()
