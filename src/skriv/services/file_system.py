"""Async file system primitives consumed by the tab and session layers."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..utils import file_io

__all__ = ["FileSystem", "LocalFileSystem"]


@runtime_checkable
class FileSystem(Protocol):
    """Minimal async file API.

    Every failure surfaces as an :class:`OSError` subclass. ``read_text``
    sniffs the encoding unless one is given.
    """

    async def exists(self, path: Path) -> bool:  # pragma: no cover - protocol
        ...

    async def make_dirs(self, path: Path) -> None:  # pragma: no cover - protocol
        ...

    async def read_text(self, path: Path, *, encoding: str | None = None) -> str:  # pragma: no cover - protocol
        ...

    async def write_text(self, path: Path, content: str) -> None:  # pragma: no cover - protocol
        ...

    async def remove(self, path: Path) -> None:  # pragma: no cover - protocol
        ...

    async def rename(self, source: Path, target: Path) -> None:  # pragma: no cover - protocol
        ...


class LocalFileSystem:
    """:class:`FileSystem` backed by the local disk.

    Blocking calls run in the default executor so the event loop (and the Qt
    UI driven by it) never stalls on disk access.
    """

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(Path(path).exists)

    async def make_dirs(self, path: Path) -> None:
        await asyncio.to_thread(file_io.ensure_dir, path)

    async def read_text(self, path: Path, *, encoding: str | None = None) -> str:
        return await asyncio.to_thread(file_io.read_text, path, encoding=encoding)

    async def write_text(self, path: Path, content: str) -> None:
        await asyncio.to_thread(file_io.write_text, path, content)

    async def remove(self, path: Path) -> None:
        await asyncio.to_thread(file_io.remove_file, path)

    async def rename(self, source: Path, target: Path) -> None:
        await asyncio.to_thread(file_io.rename_file, source, target)
