"""Error taxonomy for the ORM."""

from typing import Any


class SideORMError(Exception):
    """Base class for recoverable ORM errors."""

    pass


class EntityNotFoundError(SideORMError, LookupError):
    """Raised when a lookup by key (or a first-or-fail query) finds nothing."""

    def __init__(self, entity: str, ids: Any = None):
        self.entity = entity
        self.ids = ids

        message = f"No query results for entity [{entity}]"
        if ids is not None:
            message += f" {ids!r}"
        super().__init__(message)


class MassAssignmentError(SideORMError):
    """Raised when a guarded attribute is mass-assigned."""

    def __init__(self, key: str, entity: str | None = None):
        self.key = key
        self.entity = entity

        target = f" on [{entity}]" if entity else ""
        super().__init__(f"Mass assignment of [{key}]{target} is not allowed")


class ArgumentError(SideORMError, ValueError):
    """Raised when an operation receives arguments it cannot work with."""

    pass


class ConfigurationError(SideORMError):
    """Raised when connections or config files are missing or invalid."""

    pass


class RelationNotFoundError(SideORMError, AttributeError):
    """Raised when a name is not registered as a relation on an entity type."""

    def __init__(self, entity: str, relation: str):
        self.entity = entity
        self.relation = relation
        super().__init__(f"Call to undefined relationship [{relation}] on entity [{entity}]")


class InvalidRelationError(TypeError):
    """Raised when a relation accessor does not return a Relation.

    This is a programming error in the entity definition. It intentionally does
    not derive from SideORMError so generic ORM error handling never masks it.
    """

    pass
