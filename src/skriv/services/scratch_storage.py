"""Scratch area holding the bodies of documents that were never saved."""

from __future__ import annotations

import logging
from pathlib import Path

from ..errors import ScratchAllocationError
from .file_system import FileSystem

__all__ = ["ScratchStorage", "scratch_filename"]

LOGGER = logging.getLogger(__name__)


def scratch_filename(sequence: int) -> str:
    """Return the file name used for scratch document number ``sequence``."""

    return f"new {sequence}.txt"


class ScratchStorage:
    """Directory-backed store for unsaved document bodies."""

    def __init__(self, root: Path | str, file_system: FileSystem) -> None:
        self._root = Path(root).expanduser()
        self._fs = file_system

    @property
    def root(self) -> Path:
        return self._root

    async def ensure_dir(self) -> Path:
        if not await self._fs.exists(self._root):
            await self._fs.make_dirs(self._root)
        return self._root

    async def allocate(self, sequence: int) -> Path:
        """Prepare the scratch directory and return the path for ``sequence``."""

        try:
            root = await self.ensure_dir()
        except OSError as exc:
            LOGGER.error("Scratch directory %s unavailable: %s", self._root, exc)
            raise ScratchAllocationError(sequence, exc) from exc
        return root / scratch_filename(sequence)

    async def write(self, path: Path, content: str) -> None:
        await self._fs.write_text(path, content)

    async def read(self, path: Path) -> str:
        # Scratch files are always written as UTF-8 by this process.
        return await self._fs.read_text(path, encoding="utf-8")

    async def delete(self, path: Path) -> bool:
        """Remove a scratch file, returning ``False`` when it was already gone."""

        if not await self._fs.exists(path):
            return False
        try:
            await self._fs.remove(path)
        except FileNotFoundError:
            return False
        LOGGER.debug("Deleted scratch file %s", path)
        return True

    def owns(self, path: Path | str) -> bool:
        candidate = Path(path).expanduser()
        return candidate.parent == self._root
