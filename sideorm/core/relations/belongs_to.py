"""Inverse one-to-one / many-to-one relation."""

from typing import TYPE_CHECKING, Any

from sideorm.core.collection import Collection
from sideorm.core.relations.base import Relation
from sideorm.query.expression import Raw

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.entity import Entity


class BelongsTo(Relation):
    """Foreign key stored on the parent (``posts.user_id -> users.id``)."""

    def __init__(
        self,
        query: "EntityBuilder",
        parent: "Entity",
        foreign_key: str,
        other_key: str | None,
        relation: str | None,
    ):
        self.foreign_key = foreign_key
        self.other_key = other_key
        self.relation = relation

        super().__init__(query, parent)

    def get_results(self) -> "Entity | None":
        return self.query.first()

    def add_constraints(self) -> None:
        if self.constraints_enabled():
            table = self.related.get_table()
            self.query.where(f"{table}.{self.other_key}", "=", self.parent.get_attribute(self.foreign_key))

    def get_relation_count_query(self, query: "EntityBuilder", parent: "EntityBuilder") -> "EntityBuilder":
        if parent.get_query().from_table == query.get_query().from_table:
            return self.get_relation_count_query_for_self_relation(query, parent)

        query.select(Raw("count(*)"))
        other_key = f"{query.get_entity().get_table()}.{self.other_key}"
        return query.where(self.get_qualified_foreign_key(), "=", Raw(other_key))

    def get_relation_count_query_for_self_relation(
        self, query: "EntityBuilder", parent: "EntityBuilder"
    ) -> "EntityBuilder":
        hash = self.get_relation_count_hash()
        query.select(Raw("count(*)"))
        query.get_query().from_(f"{query.get_entity().get_table()} as {hash}")

        return query.where(f"{hash}.{self.other_key}", "=", Raw(self.get_qualified_foreign_key()))

    def add_eager_constraints(self, models: list["Entity"]) -> None:
        key = f"{self.related.get_table()}.{self.other_key}"
        self.query.where_in(key, self.get_eager_model_keys(models))

    def get_eager_model_keys(self, models: list["Entity"]) -> list[Any]:
        """Distinct foreign key values of ``models``, skipping nulls."""
        return self.get_keys(models, self.foreign_key)

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, None)
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        dictionary = {result.get_attribute(self.other_key): result for result in results}

        for model in models:
            key = model.get_attribute(self.foreign_key)
            if key in dictionary:
                model.set_relation(relation, dictionary[key])

        return models

    def associate(self, model: "Entity") -> "Entity":
        """Point the parent's foreign key at ``model`` (not saved)."""
        self.parent.set_attribute(self.foreign_key, model.get_attribute(self.other_key))
        return self.parent.set_relation(self.relation, model)

    def dissociate(self) -> "Entity":
        self.parent.set_attribute(self.foreign_key, None)
        return self.parent.set_relation(self.relation, None)

    def update(self, attributes: dict[str, Any]) -> bool:
        instance = self.get_results()
        return instance.fill(attributes).save()

    def get_foreign_key(self) -> str:
        return self.foreign_key

    def get_qualified_foreign_key(self) -> str:
        return f"{self.parent.get_table()}.{self.foreign_key}"

    def get_other_key(self) -> str | None:
        return self.other_key

    def get_qualified_other_key_name(self) -> str:
        return f"{self.related.get_table()}.{self.other_key}"
