"""Tests for :mod:`skriv.utils.logging`."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from skriv.services.settings import Settings
from skriv.utils.logging import LOG_FILENAME, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("SKRIV_LOG_DIR", raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_log_file_lives_under_data_dir(tmp_path: Path) -> None:
    log_path = setup_logging(Settings(data_dir=tmp_path), console=False)

    logging.getLogger("skriv.test").info("hello log")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path == tmp_path / "logs" / LOG_FILENAME
    assert "| INFO     | skriv.test | hello log" in log_path.read_text(encoding="utf-8")


def test_debug_level_follows_settings(tmp_path: Path) -> None:
    setup_logging(Settings(data_dir=tmp_path, debug_logging=True), console=False)
    assert logging.getLogger().level == logging.DEBUG

    setup_logging(Settings(data_dir=tmp_path), console=False)
    assert logging.getLogger().level == logging.INFO

    setup_logging(Settings(data_dir=tmp_path), debug=True, console=False)
    assert logging.getLogger().level == logging.DEBUG


def test_noisy_loggers_stay_at_warning(tmp_path: Path) -> None:
    setup_logging(Settings(data_dir=tmp_path, debug_logging=True), console=False)

    assert logging.getLogger("asyncio").level == logging.WARNING
    assert logging.getLogger("qasync").level == logging.WARNING


def test_environment_overrides_log_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SKRIV_LOG_DIR", str(tmp_path / "elsewhere"))

    log_path = setup_logging(Settings(data_dir=tmp_path / "data"), console=False)

    assert log_path == tmp_path / "elsewhere" / LOG_FILENAME
    assert log_path.exists()
