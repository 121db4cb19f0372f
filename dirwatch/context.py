"""Per-component context carrying a logger and a lock."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field


@dataclass
class ComponentContext:
    """Logger and synchronization primitive scoped to one component instance.

    Detectors, monitors and pipelines receive one of these at construction
    instead of reaching for module-level state.

    Attributes:
        name: Human-readable component name (used as logger suffix)
        logger: Logger for this component
        lock: Reentrant lock owned by this component
    """

    name: str
    logger: logging.Logger
    lock: threading.RLock = field(default_factory=threading.RLock)

    @classmethod
    def create(cls, name: str, base: str = "dirwatch") -> ComponentContext:
        """Create a root context with a logger named ``base.name``."""
        return cls(name=name, logger=logging.getLogger(f"{base}.{name}"))

    def child(self, suffix: str) -> ComponentContext:
        """Derive a context for a sub-component with its own lock."""
        return ComponentContext(
            name=f"{self.name}.{suffix}",
            logger=self.logger.getChild(suffix),
        )
