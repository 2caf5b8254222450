"""
Local filesystem binary store.

Stores media content under a root directory, fanned out by the first two
characters of the reference so no single directory grows unbounded.
"""
import asyncio
import os
from pathlib import Path
from typing import Optional, Union

from pkg.logger.logger import get_logger


logger = get_logger(__name__)


class LocalBinaryStore:
    """Binary store writing files with an atomic rename."""

    def __init__(self, root: Union[str, Path]) -> None:
        """
        Initialize the store.

        Args:
            root: Directory receiving the binaries.
        """
        self._root = Path(root)

    def path_for(self, ref: str) -> Path:
        """
        Filesystem path of a reference.

        Raises:
            ValueError: If the reference would escape the root directory.
        """
        if not ref or "/" in ref or "\\" in ref or ref.startswith("."):
            raise ValueError(f"Invalid storage reference: {ref!r}")
        return self._root / ref[:2] / ref

    async def save_binary(self, ref: str, data: bytes) -> str:
        """
        Write content under a reference; rewriting the same ref is harmless.

        Returns:
            The reference.
        """
        path = self.path_for(ref)
        await asyncio.to_thread(self._write, path, data)
        logger.debug("Binary stored", ref=ref, size_bytes=len(data))
        return ref

    async def read_binary(self, ref: str) -> Optional[bytes]:
        path = self.path_for(ref)
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_bytes)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
