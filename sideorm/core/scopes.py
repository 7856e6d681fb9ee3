"""Global query scopes and entity capabilities (soft deletes)."""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.descriptor import EntityDescriptor
    from sideorm.core.entity import Entity

logger = logging.getLogger(__name__)


class Scope:
    """A constraint applied to every query built for an entity type.

    ``remove`` strips the predicates this scope added, by structural match:
    the scope is applied to an empty builder and, for each where clause it
    produced, one clause compiling to the same SQL and bindings is removed
    from the target builder.
    """

    def apply(self, builder: "EntityBuilder", entity: "Entity") -> None:
        raise NotImplementedError

    def remove(self, builder: "EntityBuilder", entity: "Entity") -> None:
        sample = entity.new_query_without_scopes()
        before = len(sample.get_query().wheres)
        self.apply(sample, entity)

        query = builder.get_query()
        grammar = query.grammar
        pending = [grammar.where_signature(where) for where in sample.get_query().wheres[before:]]

        kept = []
        for where in query.wheres:
            signature = grammar.where_signature(where)
            if signature in pending:
                pending.remove(signature)
            else:
                kept.append(where)
        query.wheres = kept


class CallbackScope(Scope):
    """Scope built from a plain ``callback(builder)`` function."""

    def __init__(self, callback: Callable[["EntityBuilder"], Any]):
        self.callback = callback

    def apply(self, builder: "EntityBuilder", entity: "Entity") -> None:
        self.callback(builder)


def as_scope(scope: "Scope | Callable") -> Scope:
    if isinstance(scope, Scope):
        return scope
    if callable(scope):
        return CallbackScope(scope)
    raise TypeError(f"Global scope must be a Scope or a callable, got {type(scope).__name__}")


class SoftDeletingScope(Scope):
    """Hides soft-deleted rows and adds the trashed-row builder verbs."""

    extensions = ("force_delete", "restore", "with_trashed", "only_trashed")

    def apply(self, builder: "EntityBuilder", entity: "Entity") -> None:
        builder.get_query().where_null(entity.get_qualified_deleted_at_column())
        self.extend(builder)

    def remove(self, builder: "EntityBuilder", entity: "Entity") -> None:
        column = entity.get_qualified_deleted_at_column()
        query = builder.get_query()
        query.wheres = [where for where in query.wheres if not self.is_soft_delete_constraint(where, column)]

    def extend(self, builder: "EntityBuilder") -> None:
        for extension in self.extensions:
            getattr(self, f"add_{extension}")(builder)

        builder.on_delete(self._soft_delete)

    def _soft_delete(self, builder: "EntityBuilder") -> int:
        column = self.get_deleted_at_column(builder)
        return builder.update({column: builder.get_entity().fresh_timestamp()})

    def get_deleted_at_column(self, builder: "EntityBuilder") -> str:
        entity = builder.get_entity()
        if builder.get_query().joins:
            return entity.get_qualified_deleted_at_column()
        return entity.get_deleted_at_column()

    def add_force_delete(self, builder: "EntityBuilder") -> None:
        builder.macro("force_delete", lambda builder: builder.get_query().delete())

    def add_restore(self, builder: "EntityBuilder") -> None:
        def restore(builder: "EntityBuilder") -> int:
            builder.with_trashed()
            return builder.update({builder.get_entity().get_deleted_at_column(): None})

        builder.macro("restore", restore)

    def add_with_trashed(self, builder: "EntityBuilder") -> None:
        def with_trashed(builder: "EntityBuilder") -> "EntityBuilder":
            self.remove(builder, builder.get_entity())
            return builder

        builder.macro("with_trashed", with_trashed)

    def add_only_trashed(self, builder: "EntityBuilder") -> None:
        def only_trashed(builder: "EntityBuilder") -> "EntityBuilder":
            entity = builder.get_entity()
            self.remove(builder, entity)
            builder.get_query().where_not_null(entity.get_qualified_deleted_at_column())
            return builder

        builder.macro("only_trashed", only_trashed)

    def is_soft_delete_constraint(self, where: dict[str, Any], column: str) -> bool:
        return where["type"] == "null" and not where["not"] and where["column"] == column


class SoftDeletes:
    """Capability marking rows deleted with a timestamp instead of removing them.

    Example:
        >>> class Post(Entity):
        ...     capabilities = (SoftDeletes(),)
    """

    scope_name = "soft_deletes"

    def __init__(self, column: str = "deleted_at"):
        self.column = column

    def boot(self, descriptor: "EntityDescriptor") -> None:
        descriptor.global_scopes[self.scope_name] = SoftDeletingScope()
        if self.column not in descriptor.dates:
            descriptor.dates.append(self.column)

    def run_soft_delete(self, entity: "Entity") -> None:
        query = entity.new_query().where(entity.get_key_name(), "=", entity.get_key())

        time = entity.fresh_timestamp()
        entity.set_attribute(self.column, time)
        query.update({self.column: time})
        entity.sync_original_attribute(self.column)

        logger.debug(f"Soft deleted {type(entity).__name__} {entity.get_key()!r}")
