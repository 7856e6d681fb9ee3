"""Eager-load planning and resolution.

A plan maps every relation path to a constraint callback. Every prefix of a
dotted path is present as its own entry, so requesting ``posts.comments``
also plans ``posts``. Only top-level names are loaded directly; deeper paths
are handed to the child relation's builder and resolved when it runs.
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.entity import Entity
    from sideorm.core.relations.base import Relation

logger = logging.getLogger(__name__)

EagerLoadPlan = dict[str, Callable[[Any], Any]]


def _no_constraints(query: Any) -> None:
    return None


def parse_relations(relations: tuple | list) -> EagerLoadPlan:
    """Build a plan from relation names, lists and ``{name: callback}`` dicts.

    Example:
        >>> plan = parse_relations(("posts.comments", {"roles": lambda q: q.where("active", True)}))
        >>> list(plan)
        ['posts', 'posts.comments', 'roles']
    """
    plan: EagerLoadPlan = {}

    for item in _expand(relations):
        if isinstance(item, str):
            name, constraints = item, _no_constraints
        else:
            name, constraints = item

        # Every segment of a nested path gets its own entry
        plan.update(parse_nested(name, plan))
        plan[name] = constraints

    return plan


def _expand(relations: Any) -> list:
    items: list = []
    for relation in relations:
        if isinstance(relation, dict):
            items.extend(relation.items())
        elif isinstance(relation, (list, tuple)):
            items.extend(_expand(relation))
        else:
            items.append(relation)
    return items


def parse_nested(name: str, plan: EagerLoadPlan) -> EagerLoadPlan:
    """Entries for every proper prefix of ``name`` not already planned."""
    progress: list[str] = []
    nested: EagerLoadPlan = {}

    for segment in name.split(".")[:-1]:
        progress.append(segment)
        last = ".".join(progress)
        if last not in plan:
            nested[last] = _no_constraints

    return nested


def nested_relations(plan: EagerLoadPlan, relation: str) -> EagerLoadPlan:
    """Sub-plan for the paths below ``relation``, with the prefix stripped."""
    prefix = f"{relation}."
    return {name[len(prefix) :]: constraints for name, constraints in plan.items() if name.startswith(prefix)}


def eager_load_relations(builder: "EntityBuilder", entities: list["Entity"]) -> list["Entity"]:
    """Load every top-level relation in the builder's plan onto ``entities``."""
    for name, constraints in builder.get_eager_loads().items():
        if "." not in name:
            entities = load_relation(builder, entities, name, constraints)
    return entities


def load_relation(
    builder: "EntityBuilder", entities: list["Entity"], name: str, constraints: Callable[[Any], Any]
) -> list["Entity"]:
    """Resolve one relation for a batch of parents with a single query (per type)."""
    relation = get_relation(builder, name)

    relation.add_eager_constraints(entities)
    constraints(relation)

    entities = relation.init_relation(entities, name)

    logger.debug(f"Eager loading '{name}' for {len(entities)} {builder.get_entity().descriptor().name} entities")

    return relation.match(entities, relation.get_eager(), name)


def get_relation(builder: "EntityBuilder", name: str) -> "Relation":
    """Unconstrained relation for ``name`` carrying any deeper paths as eager loads."""
    from sideorm.core.relations.base import Relation

    with Relation.no_constraints():
        relation = builder.get_entity().related(name)

    nested = nested_relations(builder.get_eager_loads(), name)
    if nested:
        relation.get_query().with_(nested)

    return relation
