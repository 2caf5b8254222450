"""
Binary storage infrastructure package.
"""
from .local import LocalBinaryStore

__all__ = ["LocalBinaryStore"]
