"""SideORM: active-record entities and relations on a SQLGlot query builder."""

__version__ = "0.1.0"

from sideorm.config import SideORMConfig, load_config
from sideorm.core.collection import Collection
from sideorm.core.descriptor import Column, relation
from sideorm.core.entity import Entity
from sideorm.core.relations import MorphPivot, Pivot
from sideorm.core.scopes import Scope, SoftDeletes
from sideorm.events import Dispatcher
from sideorm.exceptions import (
    ArgumentError,
    ConfigurationError,
    EntityNotFoundError,
    InvalidRelationError,
    MassAssignmentError,
    RelationNotFoundError,
    SideORMError,
)
from sideorm.query.expression import Raw, raw

__all__ = [
    "ArgumentError",
    "Collection",
    "Column",
    "ConfigurationError",
    "Database",
    "Dispatcher",
    "Entity",
    "EntityNotFoundError",
    "InvalidRelationError",
    "MassAssignmentError",
    "MorphPivot",
    "Pivot",
    "Raw",
    "RelationNotFoundError",
    "Scope",
    "SideORMConfig",
    "SideORMError",
    "SoftDeletes",
    "load_config",
    "raw",
    "relation",
]

def __getattr__(name):  # Lazy import to avoid importing duckdb on package import
    if name == "Database":
        from sideorm.database import Database  # type: ignore
        return Database
    raise AttributeError(name)
