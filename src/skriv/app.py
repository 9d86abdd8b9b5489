"""Command line entry point: settings, logging, Qt loop and single-instance hand-off."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence, TextIO, get_type_hints

from .services.open_requests import OpenRequest
from .services.settings import Settings, SettingsStore
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


def load_settings(store: SettingsStore, *, overrides: Mapping[str, Any] | None = None) -> Settings:
    """Load persisted settings or fall back to defaults."""

    try:
        return store.load(overrides=overrides)
    except (OSError, TypeError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", store.path, exc)
        return Settings()


def create_qapp() -> tuple[Any, asyncio.AbstractEventLoop]:
    """Create the QApplication and install a qasync loop driving it."""

    try:  # Local import to avoid mandatory PySide6 dependency at import time.
        from PySide6.QtWidgets import QApplication
    except ImportError as exc:  # pragma: no cover - depends on desktop stack
        raise RuntimeError("PySide6 must be installed to launch the skriv UI.") from exc

    try:
        from qasync import QEventLoop
    except ImportError as exc:  # pragma: no cover - depends on env setup
        raise RuntimeError("qasync is required to run the async Qt event loop.") from exc

    app = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName("skriv")
    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)
    return app, loop


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `skriv` console script."""

    args = _parse_cli_args(argv)
    settings_path = args.settings_path or os.environ.get("SKRIV_SETTINGS_PATH")
    store = SettingsStore(Path(settings_path).expanduser() if settings_path else None)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides)
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(store, overrides=cli_overrides or None)
    if args.dump_settings:
        _dump_settings(settings, store, overrides=cli_overrides)
        return

    log_path = logging_utils.setup_logging(settings, debug=_env_flag("SKRIV_DEBUG"))
    _LOGGER.debug("Logging to %s", log_path)

    program = sys.argv[0] if sys.argv else "skriv"
    request = OpenRequest.from_argv([program, "--", *args.files])

    app, loop = create_qapp()
    logging_utils.route_qt_messages()

    # Imported after the QApplication exists; widgets cannot be created earlier.
    from .services.single_instance import SingleInstanceServer, forward_to_primary
    from .ui.main_window import MainWindow
    from .ui.session_controller import SessionController

    if settings.single_instance and forward_to_primary(settings.server_name, request):
        _LOGGER.info("Another skriv instance is running; handed over and exiting.")
        loop.close()
        return

    controller = SessionController(settings)
    instance_server: SingleInstanceServer | None = None
    if settings.single_instance:
        instance_server = SingleInstanceServer(
            settings.server_name,
            lambda forwarded: _schedule_open_request(controller, forwarded),
        )
        instance_server.listen()

    loop.run_until_complete(controller.start(request))
    window = MainWindow(controller)
    window.show()

    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        if instance_server is not None:
            instance_server.close()
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(controller.shutdown())
        _drain_event_loop(loop)
        loop.close()


def _schedule_open_request(controller: Any, request: OpenRequest) -> None:
    """Open files forwarded by a secondary instance on the running loop."""

    task = asyncio.ensure_future(controller.handle_open_request(request))
    task.add_done_callback(_log_task_failure)


def _log_task_failure(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _LOGGER.error("Forwarded open request failed", exc_info=exc)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel tasks still scheduled on ``loop`` so it can be closed."""

    if loop.is_closed():
        return
    pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        _LOGGER.debug("Cancelling %d pending task(s) before exit", len(pending))
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    with contextlib.suppress(RuntimeError, NotImplementedError):
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.run_until_complete(loop.shutdown_default_executor())


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="skriv",
        add_help=True,
        description="Open files in the skriv editor, restoring the previous session.",
    )
    parser.add_argument(
        "files",
        nargs="*",
        metavar="FILE",
        help="Files to open in new tabs (forwarded to a running instance if there is one).",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.skriv/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    return parser.parse_intermixed_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` strings into typed :class:`Settings` overrides."""

    overrides: Dict[str, Any] = {}
    field_types = get_type_hints(Settings)
    for entry in items:
        key, separator, raw_value = entry.partition("=")
        key = key.strip()
        if not separator:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in field_types:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(field_types[key], raw_value.strip())
    return overrides


def _coerce_value(target: Any, raw_value: str) -> Any:
    parsers: Dict[Any, Callable[[str], Any]] = {
        bool: _parse_bool,
        int: int,
        float: float,
        Path: lambda value: Path(value).expanduser(),
    }
    return parsers.get(target, str)(raw_value)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["data_dir"] = str(settings.data_dir)
    metadata = {
        "path": str(store.path),
        "session_path": str(settings.session_path),
        "scratch_dir": str(settings.scratch_dir),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(name for name in os.environ if name.startswith("SKRIV_")),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")
