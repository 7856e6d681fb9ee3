"""Context-local resolver and dispatcher, plus the morph-type registry."""

from contextvars import ContextVar
from typing import TYPE_CHECKING

from sideorm.exceptions import ConfigurationError

if TYPE_CHECKING:
    from sideorm.core.entity import Entity
    from sideorm.db.resolver import ConnectionResolver
    from sideorm.events import Dispatcher

# Context for the current connection resolver and event dispatcher
_current_resolver: ContextVar["ConnectionResolver | None"] = ContextVar("current_resolver", default=None)
_current_dispatcher: ContextVar["Dispatcher | None"] = ContextVar("current_dispatcher", default=None)

# Morph class name -> entity type
_morph_types: dict[str, type["Entity"]] = {}


def get_resolver() -> "ConnectionResolver":
    """Get the connection resolver from context.

    Raises:
        ConfigurationError: If no Database has been installed
    """
    resolver = _current_resolver.get()
    if resolver is None:
        raise ConfigurationError("No connection resolver installed. Use `with Database(...):` or Database.install()")
    return resolver


def set_resolver(resolver: "ConnectionResolver | None"):
    """Set the connection resolver context. Returns a token for reset."""
    return _current_resolver.set(resolver)


def reset_resolver(token) -> None:
    _current_resolver.reset(token)


def get_dispatcher() -> "Dispatcher | None":
    """Get the event dispatcher from context (None disables lifecycle events)."""
    return _current_dispatcher.get()


def set_dispatcher(dispatcher: "Dispatcher | None"):
    return _current_dispatcher.set(dispatcher)


def reset_dispatcher(token) -> None:
    _current_dispatcher.reset(token)


def register_morph_type(name: str, entity: type["Entity"]) -> None:
    """Register an entity type under its morph class name."""
    _morph_types[name] = entity


def resolve_morph_type(name: str) -> type["Entity"]:
    """Look up the entity type stored under a morph discriminator value.

    Raises:
        ConfigurationError: If no entity type uses this morph class name
    """
    entity = _morph_types.get(name)
    if entity is None:
        raise ConfigurationError(f"No entity registered for morph type [{name}]")
    return entity


def morph_types() -> dict[str, type["Entity"]]:
    return dict(_morph_types)
