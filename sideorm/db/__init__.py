"""Database adapter abstraction layer."""

from sideorm.db.base import BaseDatabaseAdapter
from sideorm.db.connection import Connection
from sideorm.db.resolver import ConnectionResolver

__all__ = ["BaseDatabaseAdapter", "Connection", "ConnectionResolver"]


def __getattr__(name):
    """Lazy import database adapters to avoid importing optional dependencies."""
    if name == "DuckDBAdapter":
        from sideorm.db.duckdb import DuckDBAdapter

        return DuckDBAdapter
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
