"""Naming conventions for tables, keys and relations."""

import re

import inflect

p = inflect.engine()

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """Convert ``BlogPost`` / ``blogPost`` to ``blog_post``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def plural(word: str) -> str:
    """Pluralize the last segment of a snake_case word (``blog_post`` -> ``blog_posts``)."""
    head, _, last = word.rpartition("_")
    pluralized = p.plural_noun(last) or last
    return f"{head}_{pluralized}" if head else pluralized


def table_name(class_name: str) -> str:
    """Default table for an entity class."""
    return plural(snake_case(class_name))


def foreign_key(class_name: str, primary_key: str = "id") -> str:
    """Default foreign key pointing at an entity (``User`` -> ``user_id``)."""
    return f"{snake_case(class_name)}_{primary_key}"


def joining_table(first: str, second: str) -> str:
    """Pivot table for two entity classes, alphabetical (``Role``, ``User`` -> ``role_user``)."""
    return "_".join(sorted([snake_case(first), snake_case(second)]))
