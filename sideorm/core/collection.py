"""List of entities with key-aware helpers."""

import json
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sideorm.core.entity import Entity


def _key_of(item: Any) -> Any:
    get_key = getattr(item, "get_key", None)
    return get_key() if callable(get_key) else item


class Collection(list):
    """Entities returned by a query.

    A plain ``list`` subclass: iteration, indexing and ``len`` behave as usual.
    The extra methods look entities up by primary key.
    """

    def find(self, key: Any, default: Any = None) -> "Entity | None":
        """Entity whose primary key equals ``key`` (an entity can be passed)."""
        key = _key_of(key)
        for item in self:
            if item.get_key() == key:
                return item
        return default

    def model_keys(self) -> list[Any]:
        return [item.get_key() for item in self]

    def load(self, *relations: Any) -> "Collection":
        """Eager load relations onto every entity in the collection."""
        if self:
            query = self[0].new_query().with_(*relations)
            query.eager_load_relations(list(self))
        return self

    def contains(self, key: Any) -> bool:
        """True if an item matches ``key`` (a callable predicate, an entity or a key)."""
        if callable(key) and not hasattr(key, "get_key"):
            return any(key(item) for item in self)
        return self.find(key) is not None

    def pluck(self, value: str, key: str | None = None) -> list | dict:
        if key is None:
            return [item.get_attribute(value) for item in self]
        return {item.get_attribute(key): item.get_attribute(value) for item in self}

    def get_dictionary(self, items: Iterable["Entity"] | None = None) -> dict[Any, "Entity"]:
        items = self if items is None else items
        return {item.get_key(): item for item in items}

    def first(self, callback: Callable[["Entity"], bool] | None = None, default: Any = None) -> Any:
        for item in self:
            if callback is None or callback(item):
                return item
        return default

    def unique(self) -> "Collection":
        return Collection(self.get_dictionary().values())

    def only(self, keys: Iterable[Any]) -> "Collection":
        wanted = set(keys)
        return Collection(item for item in self if item.get_key() in wanted)

    def except_(self, keys: Iterable[Any]) -> "Collection":
        unwanted = set(keys)
        return Collection(item for item in self if item.get_key() not in unwanted)

    def merge(self, items: Iterable["Entity"]) -> "Collection":
        dictionary = self.get_dictionary()
        for item in items:
            dictionary[item.get_key()] = item
        return Collection(dictionary.values())

    def diff(self, items: Iterable["Entity"]) -> "Collection":
        other = {_key_of(item) for item in items}
        return Collection(item for item in self if item.get_key() not in other)

    def intersect(self, items: Iterable["Entity"]) -> "Collection":
        other = {_key_of(item) for item in items}
        return Collection(item for item in self if item.get_key() in other)

    def to_dict(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self]

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), default=str, **kwargs)
