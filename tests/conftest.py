"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
import errno
import itertools
from pathlib import Path

import pytest

from skriv.editor.registry import TabRegistry
from skriv.editor.tab_model import Session
from skriv.services.scratch_storage import ScratchStorage
from skriv.services.session_codec import SessionCodec
from skriv.ui.events import EventBus


class MemoryFileSystem:
    """In-memory :class:`~skriv.services.file_system.FileSystem` with failure injection.

    Every call yields to the event loop once so that interleavings between
    concurrent operations resemble real disk access.
    """

    def __init__(self) -> None:
        self.files: dict[Path, str] = {}
        self.dirs: set[Path] = set()
        self.calls: list[tuple[str, Path]] = []
        self._failures: dict[tuple[str, Path | None], OSError] = {}

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------
    def add_file(self, path: Path, content: str) -> Path:
        path = Path(path)
        self.add_dir(path.parent)
        self.files[path] = content
        return path

    def add_dir(self, path: Path) -> None:
        path = Path(path)
        self.dirs.add(path)
        self.dirs.update(path.parents)

    def fail(self, operation: str, path: Path | None = None, exc: OSError | None = None) -> None:
        """Make ``operation`` raise for ``path`` (or for every path when ``None``)."""

        key = (operation, Path(path) if path is not None else None)
        self._failures[key] = exc or PermissionError(errno.EACCES, "Permission denied", str(path or ""))

    def heal(self, operation: str | None = None) -> None:
        if operation is None:
            self._failures.clear()
            return
        for key in [key for key in self._failures if key[0] == operation]:
            del self._failures[key]

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def _enter(self, operation: str, path: Path) -> None:
        self.calls.append((operation, path))
        await asyncio.sleep(0)
        exc = self._failures.get((operation, path)) or self._failures.get((operation, None))
        if exc is not None:
            raise exc

    # ------------------------------------------------------------------
    # FileSystem protocol
    # ------------------------------------------------------------------
    async def exists(self, path: Path) -> bool:
        path = Path(path)
        await self._enter("exists", path)
        return path in self.files or path in self.dirs

    async def make_dirs(self, path: Path) -> None:
        path = Path(path)
        await self._enter("make_dirs", path)
        self.add_dir(path)

    async def read_text(self, path: Path, *, encoding: str | None = None) -> str:
        del encoding
        path = Path(path)
        await self._enter("read_text", path)
        if path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file", str(path))
        return self.files[path]

    async def write_text(self, path: Path, content: str) -> None:
        path = Path(path)
        await self._enter("write_text", path)
        if path.parent not in self.dirs:
            raise FileNotFoundError(errno.ENOENT, "No such directory", str(path.parent))
        self.files[path] = content

    async def remove(self, path: Path) -> None:
        path = Path(path)
        await self._enter("remove", path)
        if path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file", str(path))
        del self.files[path]

    async def rename(self, source: Path, target: Path) -> None:
        source, target = Path(source), Path(target)
        await self._enter("rename", source)
        if source not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file", str(source))
        if target in self.files:
            raise FileExistsError(errno.EEXIST, "File exists", str(target))
        self.files[target] = self.files.pop(source)


@pytest.fixture
def fs() -> MemoryFileSystem:
    return MemoryFileSystem()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path.resolve() / "data"


@pytest.fixture
def docs_dir(tmp_path: Path, fs: MemoryFileSystem) -> Path:
    path = tmp_path.resolve() / "docs"
    fs.add_dir(path)
    return path


@pytest.fixture
def storage(data_dir: Path, fs: MemoryFileSystem) -> ScratchStorage:
    return ScratchStorage(data_dir / "temp", fs)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def session() -> Session:
    return Session()


@pytest.fixture
def registry(session: Session, storage: ScratchStorage, fs: MemoryFileSystem, bus: EventBus) -> TabRegistry:
    counter = itertools.count(1)
    return TabRegistry(
        session,
        storage=storage,
        file_system=fs,
        event_bus=bus,
        id_factory=lambda: f"tab-{next(counter)}",
    )


@pytest.fixture
def codec(data_dir: Path, storage: ScratchStorage, fs: MemoryFileSystem) -> SessionCodec:
    return SessionCodec(data_dir / "session.json", storage=storage, file_system=fs)
