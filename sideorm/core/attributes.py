"""Per-entity attribute state with an original snapshot for dirty tracking."""

from collections.abc import Callable, Iterable
from decimal import Decimal, InvalidOperation
from typing import Any

_MISSING = object()


def is_numeric(value: Any) -> bool:
    """True for numbers and strings that parse as a number (bools excluded)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return True
    if isinstance(value, str):
        try:
            Decimal(value.strip())
        except InvalidOperation:
            return False
        return value.strip() != ""
    return False


def values_equivalent(current: Any, original: Any, lenient: bool = True) -> bool:
    """Compare an attribute value with its original.

    With ``lenient`` comparison numerically equal values are equivalent even
    when their types differ (``"1"`` and ``1``). Strict comparison requires the
    same type and value.
    """
    if current is None or original is None:
        return current is original

    if not lenient:
        return type(current) is type(original) and current == original

    if current == original:
        return True

    if is_numeric(current) and is_numeric(original):
        return Decimal(str(current).strip()) == Decimal(str(original).strip())

    return False


class AttributeStore:
    """Current attribute values plus the snapshot taken at the last load/save."""

    def __init__(self, attributes: dict[str, Any] | None = None):
        self.attributes: dict[str, Any] = dict(attributes or {})
        self.original: dict[str, Any] = {}

    def __contains__(self, key: str) -> bool:
        return key in self.attributes

    def __iter__(self):
        return iter(self.attributes)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def remove(self, key: str) -> None:
        self.attributes.pop(key, None)

    def set_raw(self, attributes: dict[str, Any], sync: bool = False) -> None:
        """Replace all attributes without mutators, optionally syncing the snapshot."""
        self.attributes = dict(attributes)
        if sync:
            self.sync_original()

    def sync_original(self) -> None:
        self.original = dict(self.attributes)

    def sync_original_attribute(self, key: str) -> None:
        if key in self.attributes:
            self.original[key] = self.attributes[key]
        else:
            self.original.pop(key, None)

    def get_original(self, key: str | None = None, default: Any = None) -> Any:
        if key is None:
            return dict(self.original)
        return self.original.get(key, default)

    def get_dirty(
        self,
        lenient: bool = True,
        normalize: Callable[[str, Any], Any] | None = None,
    ) -> dict[str, Any]:
        """Attributes whose value differs from the original snapshot.

        Args:
            lenient: Treat numerically equal values as unchanged
            normalize: Optional ``(key, value) -> value`` applied to both sides
                before comparing (used for date columns)
        """
        dirty = {}
        for key, value in self.attributes.items():
            original = self.original.get(key, _MISSING)
            if original is _MISSING:
                dirty[key] = value
                continue

            current = value
            if normalize is not None:
                current = normalize(key, value)
                original = normalize(key, original)

            if not values_equivalent(current, original, lenient):
                dirty[key] = value

        return dirty

    def is_dirty(self, keys: Iterable[str] | None = None, lenient: bool = True, normalize=None) -> bool:
        dirty = self.get_dirty(lenient, normalize)
        if not keys:
            return bool(dirty)
        return any(key in dirty for key in keys)
