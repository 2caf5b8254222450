"""
Redis infrastructure package.
"""
from .pending_store import RedisPendingStore

__all__ = ["RedisPendingStore"]
