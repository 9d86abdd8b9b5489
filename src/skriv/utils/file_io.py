"""Blocking file IO helpers used by the async file system adapter."""

from __future__ import annotations

import codecs
import locale
import os
import tempfile
from pathlib import Path

__all__ = [
    "read_text",
    "write_text",
    "rename_file",
    "remove_file",
    "ensure_dir",
]

_BOM_MAP: dict[bytes, str] = {
    codecs.BOM_UTF8: "utf-8-sig",
    codecs.BOM_UTF32_LE: "utf-32-le",
    codecs.BOM_UTF32_BE: "utf-32-be",
    codecs.BOM_UTF16_LE: "utf-16-le",
    codecs.BOM_UTF16_BE: "utf-16-be",
}


def read_text(
    path: Path | str,
    *,
    encoding: str | None = None,
    errors: str = "strict",
) -> str:
    """Read a text file.

    Without ``encoding`` the codec is sniffed and a leading BOM dropped. An
    explicit ``encoding`` decodes the bytes verbatim, so a leading U+FEFF that
    belongs to the text survives. Newlines are returned exactly as stored.
    """

    raw = Path(path).read_bytes()
    if encoding is not None:
        return raw.decode(encoding, errors=errors)
    text = raw.decode(_detect_encoding(raw), errors=errors)
    return _strip_bom(text)


def write_text(
    path: Path | str,
    content: str,
    *,
    encoding: str = "utf-8",
    atomic: bool = True,
) -> Path:
    """Write ``content`` verbatim, replacing the target atomically by default."""

    target = Path(path)
    if not atomic:
        with target.open("w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        return target

    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
    return target


def rename_file(source: Path | str, target: Path | str) -> Path:
    """Rename ``source`` to ``target`` without clobbering an existing file."""

    source_path = Path(source)
    target_path = Path(target)
    if target_path.exists() and not _same_file(source_path, target_path):
        raise FileExistsError(f"Refusing to overwrite existing file: {target_path}")
    source_path.rename(target_path)
    return target_path


def remove_file(path: Path | str) -> None:
    Path(path).unlink()


def ensure_dir(path: Path | str) -> Path:
    """Create ``path`` (and parents) if needed and return it."""

    target = Path(path).expanduser()
    target.mkdir(parents=True, exist_ok=True)
    return target


def _same_file(left: Path, right: Path) -> bool:
    # Case-only renames on case-insensitive file systems resolve to one inode.
    try:
        return os.path.samefile(left, right)
    except OSError:
        return False


def _detect_encoding(raw: bytes) -> str:
    for bom, encoding in _BOM_MAP.items():
        if raw.startswith(bom):
            return encoding

    preferred = locale.getpreferredencoding(False) or "utf-8"
    seen: set[str] = set()
    for candidate in ("utf-8", preferred, "latin-1"):
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        try:
            raw.decode(candidate)
            return candidate
        except UnicodeDecodeError:
            continue
    return "utf-8"


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith("\ufeff") else text
