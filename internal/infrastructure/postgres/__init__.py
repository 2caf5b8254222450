"""
PostgreSQL infrastructure package.
"""
from .repository import (
    PostgresArticleStore,
    PostgresLinkStore,
    PostgresMediaStore,
    PostgresOutbox,
    PostgresProductStore,
    PostgresTypologyStore,
    create_pool,
)

__all__ = [
    "PostgresArticleStore",
    "PostgresLinkStore",
    "PostgresMediaStore",
    "PostgresOutbox",
    "PostgresProductStore",
    "PostgresTypologyStore",
    "create_pool",
]
