"""Raw SQL fragments."""


class Raw:
    """A literal SQL fragment inserted into a query without parameter binding.

    Used for column references on the right-hand side of a comparison
    (``posts.user_id = users.id``), aggregate select expressions and
    raw predicates.
    """

    __slots__ = ("value",)

    def __init__(self, value: str | int | float):
        self.value = str(value)

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"Raw({self.value!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Raw) and other.value == self.value

    def __hash__(self) -> int:
        return hash(("raw", self.value))


def raw(value: str | int | float) -> Raw:
    """Shorthand for ``Raw(value)``."""
    return Raw(value)
