"""Requests to open files coming from the command line or a second instance."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

__all__ = ["OpenRequest", "encode_open_request", "decode_open_request"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class OpenRequest:
    """Raw process arguments plus the working directory they were given in.

    ``args`` includes the program name as its first element, the way
    ``sys.argv`` does.
    """

    args: tuple[str, ...] = field(default_factory=tuple)
    cwd: str = ""

    @classmethod
    def from_argv(cls, argv: Sequence[str], cwd: str | os.PathLike[str] | None = None) -> "OpenRequest":
        return cls(args=tuple(argv), cwd=str(cwd if cwd is not None else os.getcwd()))

    def resolve_paths(self) -> list[Path]:
        """Return the file arguments as absolute paths.

        The program name and option-like arguments are skipped; relative
        paths are resolved against ``cwd``.
        """

        base = Path(self.cwd) if self.cwd else Path.cwd()
        paths: list[Path] = []
        only_files = False
        for arg in self.args[1:]:
            if not only_files:
                if arg == "--":
                    only_files = True
                    continue
                if arg.startswith("-"):
                    continue
            if not arg:
                continue
            candidate = Path(arg).expanduser()
            if not candidate.is_absolute():
                candidate = base / candidate
            paths.append(candidate)
        return paths


def encode_open_request(request: OpenRequest) -> bytes:
    payload = {"args": list(request.args), "cwd": request.cwd}
    return json.dumps(payload).encode("utf-8")


def decode_open_request(data: bytes) -> OpenRequest | None:
    """Decode a forwarded request; malformed payloads are logged and dropped."""

    try:
        payload: Any = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        LOGGER.warning("Ignoring malformed open request: %s", exc)
        return None
    if not isinstance(payload, dict):
        LOGGER.warning("Ignoring open request that is not an object")
        return None
    args = payload.get("args")
    cwd = payload.get("cwd", "")
    if not isinstance(args, list) or not all(isinstance(arg, str) for arg in args):
        LOGGER.warning("Ignoring open request with invalid args")
        return None
    if not isinstance(cwd, str):
        LOGGER.warning("Ignoring open request with invalid cwd")
        return None
    return OpenRequest(args=tuple(args), cwd=cwd)
