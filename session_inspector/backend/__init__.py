"""Backend registry and discovery."""

from typing import Type

from .base import BackendError, EventBackend

# Registry of all available backends
_BACKENDS: dict[str, Type[EventBackend]] = {}


def register_backend(backend_class: Type[EventBackend]) -> Type[EventBackend]:
    """Decorator to register a backend class."""
    _BACKENDS[backend_class.name] = backend_class
    return backend_class


def get_backend(name: str, **kwargs) -> EventBackend | None:
    """Get an instance of a backend by name."""
    backend_class = _BACKENDS.get(name)
    if backend_class:
        return backend_class(**kwargs)
    return None


def get_backend_names() -> list[str]:
    return list(_BACKENDS)


# Import backends to trigger registration
from . import claude_code  # noqa: F401, E402

__all__ = [
    "BackendError",
    "EventBackend",
    "register_backend",
    "get_backend",
    "get_backend_names",
]
