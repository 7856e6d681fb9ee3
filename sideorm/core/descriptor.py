"""Per-entity-type metadata, column descriptors and relation accessors."""

import re
from collections.abc import Callable
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

from sideorm.core.naming import table_name
from sideorm.exceptions import InvalidRelationError

if TYPE_CHECKING:
    from sideorm.core.entity import Entity
    from sideorm.core.relations.base import Relation
    from sideorm.core.scopes import Scope

_GET_MUTATOR = re.compile(r"^get_(\w+)_attribute$")
_SET_MUTATOR = re.compile(r"^set_(\w+)_attribute$")
_QUERY_SCOPE = re.compile(r"^scope_(\w+)$")

# Name of the relation accessor currently being evaluated
_relation_name: ContextVar[str | None] = ContextVar("relation_name", default=None)


def current_relation_name() -> str | None:
    """Name of the relation accessor being evaluated, used for default key names."""
    return _relation_name.get()


@contextmanager
def building_relation(name: str):
    token = _relation_name.set(name)
    try:
        yield
    finally:
        _relation_name.reset(token)


class Column:
    """Declares a persisted column and exposes it as an attribute.

    Reads and writes go through the entity's ``get_attribute`` /
    ``set_attribute`` so mutators and date normalization apply.

    Example:
        >>> class User(Entity):
        ...     name = Column()
        ...     born_at = Column(date=True)
    """

    def __init__(self, name: str | None = None, *, date: bool = False):
        self.name = name
        self.date = date

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = self.name or name

    def __get__(self, instance: "Entity | None", owner: type) -> Any:
        if instance is None:
            return self
        return instance.get_attribute(self.name)

    def __set__(self, instance: "Entity", value: Any) -> None:
        instance.set_attribute(self.name, value)

    def __repr__(self) -> str:
        return f"Column({self.name!r})"


class relation:
    """Decorator registering a method as a relation accessor.

    The decorated method returns a Relation. On an instance, the attribute
    evaluates to the loaded results (lazy-loaded and cached on first access);
    ``entity.related(name)`` returns a fresh Relation to query further.

    Example:
        >>> class User(Entity):
        ...     @relation
        ...     def posts(self):
        ...         return self.has_many(Post)
    """

    def __init__(self, func: Callable[["Entity"], "Relation"]):
        self.func = func
        self.name = func.__name__
        self.__doc__ = func.__doc__

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: "Entity | None", owner: type) -> Any:
        if instance is None:
            return self
        return instance.get_relation_value(self.name)

    def __set__(self, instance: "Entity", value: Any) -> None:
        instance.set_relation(self.name, value)

    def build(self, instance: "Entity") -> "Relation":
        """Evaluate the accessor for ``instance``.

        Raises:
            InvalidRelationError: If the accessor does not return a Relation
        """
        from sideorm.core.relations.base import Relation

        with building_relation(self.name):
            result = self.func(instance)

        if not isinstance(result, Relation):
            raise InvalidRelationError(
                f"Relationship method {type(instance).__name__}.{self.name} must return a Relation, "
                f"got {type(result).__name__}"
            )
        return result


class EntityDescriptor:
    """Metadata for one entity type, built once when the class is defined.

    Collects the table, key settings, declared columns, relation accessors,
    attribute mutators, query scopes, global scopes and capabilities so that
    nothing is looked up by name at query time.
    """

    def __init__(self, entity: type["Entity"]):
        self.entity = entity
        self.name = entity.__name__
        self.key = f"{entity.__module__}.{entity.__qualname__}"

        self.table: str = entity.table or table_name(entity.__name__)
        self.morph_class: str = entity.morph_class or self.key

        self.columns: dict[str, Column] = {}
        self.relations: dict[str, relation] = {}
        self.get_mutators: dict[str, Callable] = {}
        self.set_mutators: dict[str, Callable] = {}
        self.query_scopes: dict[str, Callable] = {}
        self.global_scopes: dict[str, "Scope"] = {}
        self.capabilities: list[Any] = []
        self.dates: list[str] = list(entity.dates)

        self._collect(entity)
        self._boot(entity)

    def _collect(self, entity: type["Entity"]) -> None:
        from sideorm.core.entity import Entity

        base_names = set(dir(Entity))

        # Walk the MRO from the base down so subclasses override parents
        for klass in reversed(entity.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, Column):
                    self.columns[value.name] = value
                    if value.date and value.name not in self.dates:
                        self.dates.append(value.name)
                elif isinstance(value, relation):
                    self.relations[name] = value
                elif callable(value) and name not in base_names:
                    self._collect_method(name, value)

    def _collect_method(self, name: str, method: Callable) -> None:
        if match := _GET_MUTATOR.match(name):
            self.get_mutators[match.group(1)] = method
        elif match := _SET_MUTATOR.match(name):
            self.set_mutators[match.group(1)] = method
        elif match := _QUERY_SCOPE.match(name):
            self.query_scopes[match.group(1)] = method

    def _boot(self, entity: type["Entity"]) -> None:
        from sideorm.core.scopes import as_scope

        for name, scope in entity.global_scopes.items():
            self.global_scopes[name] = as_scope(scope)

        for capability in entity.capabilities:
            self.add_capability(capability)

    def add_capability(self, capability: Any) -> None:
        self.capabilities.append(capability)
        capability.boot(self)

    def capability(self, kind: type) -> Any:
        """The attached capability of type ``kind``, or None."""
        for capability in self.capabilities:
            if isinstance(capability, kind):
                return capability
        return None

    def get_dates(self, timestamps: bool, created_at: str, updated_at: str) -> list[str]:
        dates = list(self.dates)
        if timestamps:
            dates.extend(column for column in (created_at, updated_at) if column not in dates)
        return dates

    def __repr__(self) -> str:
        return f"EntityDescriptor({self.key!r}, table={self.table!r})"
