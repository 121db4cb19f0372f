"""Remote backend implementations.

Provides the backends selectable by agent mode:
- Lite mode: in-memory store, no external service
- Standard mode: REST backend over HTTP
"""

from __future__ import annotations

from collections.abc import Callable

from dirwatch.backend.base import Backend
from dirwatch.backend.http import HttpBackend
from dirwatch.backend.memory import BackendCall, InMemoryBackend
from dirwatch.config import AgentSettings

# Mode registry
_BACKEND_REGISTRY: dict[str, Callable[[AgentSettings], Backend]] = {
    "lite": lambda settings: InMemoryBackend(page_size=settings.backend.page_size, record_calls=False),
    "standard": lambda settings: HttpBackend(settings.backend),
}


def get_backend(mode: str, settings: AgentSettings) -> Backend:
    """Build the backend for an agent mode.

    Args:
        mode: Mode name (lite, standard)
        settings: Agent settings

    Returns:
        Backend instance

    Raises:
        ValueError: If mode name is not recognized

    Examples:
        >>> backend = get_backend("lite", AgentSettings())
        >>> backend.page_size
        1000
    """
    factory = _BACKEND_REGISTRY.get(mode.lower())
    if not factory:
        valid_modes = ", ".join(_BACKEND_REGISTRY.keys())
        raise ValueError(f"Unknown mode: {mode}. Valid modes: {valid_modes}")
    return factory(settings)


def list_modes() -> list[str]:
    """List all available mode names.

    Examples:
        >>> list_modes()
        ['lite', 'standard']
    """
    return list(_BACKEND_REGISTRY.keys())


__all__ = [
    "Backend",
    "BackendCall",
    "HttpBackend",
    "InMemoryBackend",
    "get_backend",
    "list_modes",
]
