"""Polymorphic inverse relation."""

import logging
from typing import TYPE_CHECKING, Any

from sideorm.core.collection import Collection
from sideorm.core.registry import resolve_morph_type
from sideorm.core.relations.belongs_to import BelongsTo

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.entity import Entity

logger = logging.getLogger(__name__)


class MorphTo(BelongsTo):
    """Belongs-to whose related entity type is read from a discriminator column.

    Eager loading groups the parents by discriminator value and issues one
    query per distinct type present, then matches each batch back using a
    per-type dictionary.
    """

    def __init__(
        self,
        query: "EntityBuilder",
        parent: "Entity",
        foreign_key: str,
        other_key: str | None,
        type: str,
        relation: str,
    ):
        self.morph_type = type
        self.models: list[Entity] = []
        self.dictionary: dict[str, dict[Any, list[Entity]]] = {}
        self.with_trashed_flag = False

        super().__init__(query, parent, foreign_key, other_key, relation)

    def get_results(self) -> "Entity | None":
        if self.other_key is None or self.parent.get_attribute(self.foreign_key) is None:
            return None
        return self.query.first()

    def add_eager_constraints(self, models: list["Entity"]) -> None:
        self.models = list(models)
        self.build_dictionary(self.models)

    def build_dictionary(self, models: list["Entity"]) -> None:
        for model in models:
            type = model.get_attribute(self.morph_type)
            key = model.get_attribute(self.foreign_key)
            if type:
                self.dictionary.setdefault(type, {}).setdefault(key, []).append(model)

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        # Matching already happened per type in get_eager
        return models

    def get_eager(self) -> list["Entity"]:
        for type in self.dictionary:
            self.match_to_morph_parents(type, self.get_results_by_type(type))
        return self.models

    def match_to_morph_parents(self, type: str, results: Collection) -> None:
        for result in results:
            for model in self.dictionary[type].get(result.get_key(), []):
                model.set_relation(self.relation, result)

    def get_results_by_type(self, type: str) -> Collection:
        instance = self.create_model_by_type(type)
        key = instance.get_qualified_key_name()

        query = instance.new_query().set_eager_loads(self.query.get_eager_loads())
        query = self.use_with_trashed(query)

        logger.debug(f"Loading morph type '{type}' for relation '{self.relation}'")

        return query.where_in(key, self.gather_keys_by_type(type)).get()

    def gather_keys_by_type(self, type: str) -> list[Any]:
        return [key for key in self.dictionary[type] if key is not None]

    def create_model_by_type(self, type: str) -> "Entity":
        instance = resolve_morph_type(type)()
        instance.set_connection(self.parent.get_connection_name())
        return instance

    def use_with_trashed(self, query: "EntityBuilder") -> "EntityBuilder":
        if self.with_trashed_flag and query.get_macro("with_trashed") is not None:
            return query.with_trashed()
        return query

    def with_trashed(self) -> "MorphTo":
        """Include soft-deleted rows of every related type."""
        self.with_trashed_flag = True
        self.query = self.use_with_trashed(self.query)
        return self

    def associate(self, model: "Entity") -> "Entity":
        self.parent.set_attribute(self.foreign_key, model.get_key())
        self.parent.set_attribute(self.morph_type, model.get_morph_class())
        return self.parent.set_relation(self.relation, model)

    def dissociate(self) -> "Entity":
        self.parent.set_attribute(self.foreign_key, None)
        self.parent.set_attribute(self.morph_type, None)
        return self.parent.set_relation(self.relation, None)

    def get_morph_type(self) -> str:
        return self.morph_type

    def get_dictionary(self) -> dict[str, dict[Any, list["Entity"]]]:
        return self.dictionary
