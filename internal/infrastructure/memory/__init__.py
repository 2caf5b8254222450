"""
In-memory infrastructure package.
"""
from .event_bus import InMemoryEventBus
from .stores import (
    InMemoryArticleStore,
    InMemoryLinkStore,
    InMemoryMediaStore,
    InMemoryOutbox,
    InMemoryPendingStore,
    InMemoryProductStore,
    InMemoryTypologyStore,
)

__all__ = [
    "InMemoryEventBus",
    "InMemoryArticleStore",
    "InMemoryLinkStore",
    "InMemoryMediaStore",
    "InMemoryOutbox",
    "InMemoryPendingStore",
    "InMemoryProductStore",
    "InMemoryTypologyStore",
]
