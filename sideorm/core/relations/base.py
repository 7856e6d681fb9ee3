"""Base relation contract."""

import functools
import hashlib
import os
from collections.abc import Iterable
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

from sideorm.core.collection import Collection
from sideorm.query.expression import Raw

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.entity import Entity
    from sideorm.query.builder import QueryBuilder

# Whether relations apply their base (single-parent) constraints on construction
_constraints: ContextVar[bool] = ContextVar("relation_constraints", default=True)


class Relation:
    """A declared association between a parent entity and a related entity type.

    Constraints are applied in two phases. Base constraints scope the owned
    query to one parent and are added on construction unless the relation is
    built inside ``Relation.no_constraints()``. Eager constraints scope it to
    a batch of parents when eager loading.

    Unknown attributes are forwarded to the owned EntityBuilder; calls that
    return the builder return the relation instead, so
    ``user.related("posts").where("draft", False).get()`` chains.
    """

    def __init__(self, query: "EntityBuilder", parent: "Entity"):
        self.query = query
        self.parent = parent
        self.related = query.get_entity()

        self.add_constraints()

    @classmethod
    @contextmanager
    def no_constraints(cls):
        """Build relations without their single-parent constraints inside the block."""
        token = _constraints.set(False)
        try:
            yield
        finally:
            _constraints.reset(token)

    @staticmethod
    def constraints_enabled() -> bool:
        return _constraints.get()

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") or "query" not in self.__dict__:
            raise AttributeError(name)

        attribute = getattr(self.query, name)
        if not callable(attribute):
            return attribute

        @functools.wraps(attribute)
        def forward(*args: Any, **kwargs: Any) -> Any:
            result = attribute(*args, **kwargs)
            return self if result is self.query else result

        return forward

    # Relation contract

    def add_constraints(self) -> None:
        raise NotImplementedError

    def add_eager_constraints(self, models: list["Entity"]) -> None:
        raise NotImplementedError

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        raise NotImplementedError

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        raise NotImplementedError

    def get_results(self) -> Any:
        raise NotImplementedError

    def get_eager(self) -> Collection:
        return self.get()

    def get(self, columns: list | None = None) -> Collection:
        return self.query.get(columns)

    # Writes

    def touch(self) -> None:
        """Stamp the related rows' update timestamp."""
        column = self.related.get_updated_at_column()
        self.raw_update({column: self.related.fresh_timestamp()})

    def raw_update(self, attributes: dict[str, Any]) -> int:
        return self.query.update(attributes)

    # Existence queries

    def get_relation_count_query(self, query: "EntityBuilder", parent: "EntityBuilder") -> "EntityBuilder":
        """Correlated ``count(*)`` query used by ``has`` and ``with_count``."""
        query.select(Raw("count(*)"))
        key = self.get_qualified_parent_key_name()
        return query.where(self.get_has_compare_key(), "=", Raw(key))

    def get_relation_count_hash(self) -> str:
        return "self_" + hashlib.md5(os.urandom(16)).hexdigest()

    def get_has_compare_key(self) -> str:
        raise NotImplementedError

    # Helpers

    def get_keys(self, models: Iterable["Entity"], key: str | None = None) -> list[Any]:
        """Unique non-null keys of ``models`` (primary key, or attribute ``key``)."""
        keys = []
        for model in models:
            value = model.get_attribute(key) if key else model.get_key()
            if value is not None and value not in keys:
                keys.append(value)
        return keys

    def get_query(self) -> "EntityBuilder":
        return self.query

    def get_base_query(self) -> "QueryBuilder":
        return self.query.get_query()

    def get_parent(self) -> "Entity":
        return self.parent

    def get_related(self) -> "Entity":
        return self.related

    def get_qualified_parent_key_name(self) -> str:
        return self.parent.get_qualified_key_name()

    def created_at(self) -> str:
        return self.parent.get_created_at_column()

    def updated_at(self) -> str:
        return self.parent.get_updated_at_column()

    def related_updated_at(self) -> str:
        return self.related.get_updated_at_column()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {type(self.parent).__name__} -> {type(self.related).__name__}>"
