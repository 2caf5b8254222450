"""
Metrics infrastructure package.
"""
from . import prometheus

__all__ = ["prometheus"]
