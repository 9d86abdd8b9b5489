"""Tests for :mod:`skriv.services.session_codec`."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from skriv.editor.registry import TabRegistry
from skriv.editor.tab_model import Session, Tab
from skriv.errors import SessionDecodeError
from skriv.services.file_system import LocalFileSystem
from skriv.services.scratch_storage import ScratchStorage
from skriv.services.session_codec import SessionCodec, default_session


def _fresh_codec(codec: SessionCodec, storage: ScratchStorage, fs) -> SessionCodec:
    return SessionCodec(codec.path, storage=storage, file_system=fs)


def _scratch(storage: ScratchStorage, tab_id: str, sequence: int, content: str = "") -> Tab:
    return Tab(
        id=tab_id,
        name=f"new {sequence}",
        scratch_path=storage.root / f"new {sequence}.txt",
        content=content,
    )


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "version": 1,
        "tabs": [
            {
                "id": "a",
                "name": "new 1",
                "path": None,
                "scratch_path": "/tmp/temp/new 1.txt",
                "cursor_position": 0,
                "content": "",
                "saved_content": "",
            }
        ],
        "active_tab_id": "a",
        "next_scratch_sequence": 2,
        "dark_mode": True,
    }
    payload.update(overrides)
    return payload


# ----------------------------------------------------------------------
# round trips
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_empty_session_round_trip(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    assert await codec.save(Session()) is True

    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded == default_session()


@pytest.mark.asyncio
async def test_scratch_tabs_round_trip(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    session = Session(
        tabs=[
            _scratch(storage, "a", 1, "first"),
            _scratch(storage, "b", 2, "second\nline"),
        ],
        active_tab_id="b",
        next_scratch_sequence=3,
    )

    assert await codec.save(session)
    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded.tab_ids() == ("a", "b")
    assert [tab.name for tab in loaded.tabs] == ["new 1", "new 2"]
    assert [tab.content for tab in loaded.tabs] == ["first", "second\nline"]
    assert [tab.scratch_path for tab in loaded.tabs] == [tab.scratch_path for tab in session.tabs]
    assert loaded.active_tab_id == "b"
    assert loaded.next_scratch_sequence == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        "héllo wörld ✓ 日本語 🎉",
        'quote " and backslash \\ and \\n literal',
        "crlf\r\nlf\ncr\rend",
        "",
    ],
)
async def test_scratch_content_survives_byte_exact(
    codec: SessionCodec, storage: ScratchStorage, fs, content: str
) -> None:
    session = Session(tabs=[_scratch(storage, "a", 1, content)], active_tab_id="a", next_scratch_sequence=2)

    await codec.save(session)
    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded.tabs[0].content == content
    assert fs.files[storage.root / "new 1.txt"] == content


@pytest.mark.asyncio
async def test_names_with_special_characters_round_trip(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    tab = _scratch(storage, "a", 1)
    tab.name = 'Größe "quoted" back\\slash'
    session = Session(tabs=[tab], active_tab_id="a", next_scratch_sequence=2)

    await codec.save(session)
    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded.tabs[0].name == tab.name


@pytest.mark.asyncio
async def test_many_tabs_keep_their_order(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    tabs = [_scratch(storage, f"id-{n:02d}", n, f"body {n}") for n in range(1, 13)]
    session = Session(tabs=tabs, active_tab_id="id-07", next_scratch_sequence=13)

    await codec.save(session)
    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded.tab_ids() == tuple(f"id-{n:02d}" for n in range(1, 13))
    assert [tab.content for tab in loaded.tabs] == [f"body {n}" for n in range(1, 13)]
    assert loaded.active_tab_id == "id-07"


@pytest.mark.asyncio
async def test_persisted_tab_is_reread_from_its_path(
    codec: SessionCodec, storage: ScratchStorage, fs, docs_dir: Path
) -> None:
    path = fs.add_file(docs_dir / "notes.txt", "on disk")
    tab = Tab(id="p", name="notes.txt", path=path, content="unsaved edit", saved_content="on disk")
    session = Session(tabs=[tab], active_tab_id="p", next_scratch_sequence=1)

    await codec.save(session)
    loaded = await _fresh_codec(codec, storage, fs).load()

    assert fs.files[path] == "on disk"
    assert loaded.tabs[0].path == path
    assert loaded.tabs[0].content == "on disk"
    assert not loaded.tabs[0].dirty


@pytest.mark.asyncio
async def test_loaded_tabs_are_never_dirty(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    tab = _scratch(storage, "a", 1, "unsaved")
    assert tab.dirty
    await codec.save(Session(tabs=[tab], active_tab_id="a", next_scratch_sequence=2))

    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded.tabs[0].content == loaded.tabs[0].saved_content == "unsaved"


@pytest.mark.asyncio
async def test_dark_mode_is_persisted(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    await codec.save(Session(dark_mode=False))

    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded.dark_mode is False


# ----------------------------------------------------------------------
# file format
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_session_file_never_contains_bodies(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    session = Session(tabs=[_scratch(storage, "a", 1, "secret body")], active_tab_id="a", next_scratch_sequence=2)

    await codec.save(session)

    payload = json.loads(fs.files[codec.path])
    assert payload["tabs"][0]["content"] == ""
    assert payload["tabs"][0]["saved_content"] == ""
    assert payload["tabs"][0]["path"] is None
    assert payload["tabs"][0]["scratch_path"] == str(storage.root / "new 1.txt")
    assert payload["next_scratch_sequence"] == 2
    assert payload["dark_mode"] is True
    assert "secret body" not in fs.files[codec.path]


def test_encode_is_readable_json(codec: SessionCodec) -> None:
    text = codec.encode(Session())

    assert json.loads(text) == {
        "version": 1,
        "tabs": [],
        "active_tab_id": None,
        "next_scratch_sequence": 1,
        "dark_mode": True,
    }


@pytest.mark.asyncio
async def test_save_snapshots_before_first_await(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    session = Session(tabs=[_scratch(storage, "a", 1, "v1")], active_tab_id="a", next_scratch_sequence=2)

    task = asyncio.ensure_future(codec.save(session))
    await asyncio.sleep(0)
    session.tabs[0].content = "v2"
    session.tabs.append(_scratch(storage, "b", 2))
    session.active_tab_id = "b"
    assert await task

    payload = json.loads(fs.files[codec.path])
    assert [entry["id"] for entry in payload["tabs"]] == ["a"]
    assert payload["active_tab_id"] == "a"
    assert fs.files[storage.root / "new 1.txt"] == "v1"


@pytest.mark.asyncio
async def test_save_failure_keeps_previous_file(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    await codec.save(Session(tabs=[_scratch(storage, "a", 1)], active_tab_id="a", next_scratch_sequence=2))
    before = fs.files[codec.path]
    fs.fail("write_text", codec.path)

    assert await codec.save(Session()) is False

    assert fs.files[codec.path] == before


@pytest.mark.asyncio
async def test_save_scratch_write_failure_reports_false(codec: SessionCodec, storage: ScratchStorage, fs) -> None:
    fs.fail("write_text", storage.root / "new 1.txt")

    result = await codec.save(Session(tabs=[_scratch(storage, "a", 1)], active_tab_id="a", next_scratch_sequence=2))

    assert result is False
    assert codec.path not in fs.files


# ----------------------------------------------------------------------
# degraded loads
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_session_file_yields_default(codec: SessionCodec) -> None:
    assert await codec.load() == default_session()


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "{not json", "[]", "null", '"tabs"'])
async def test_corrupt_session_file_yields_exact_default(codec: SessionCodec, fs, text: str) -> None:
    fs.add_file(codec.path, text)

    loaded = await codec.load()

    assert loaded == Session(tabs=[], active_tab_id=None, next_scratch_sequence=1, dark_mode=True)


@pytest.mark.asyncio
async def test_unreadable_session_file_yields_default(codec: SessionCodec, fs) -> None:
    fs.add_file(codec.path, json.dumps(_payload()))
    fs.fail("read_text", codec.path)

    assert await codec.load() == default_session()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        _payload(tabs=[{"id": "a", "name": "x", "path": "/tmp/a.txt", "scratch_path": "/tmp/new 1.txt"}]),
        _payload(tabs=[{"id": "a", "name": "x", "path": None, "scratch_path": None}]),
        _payload(tabs=[{"id": "a", "name": "x"}]),
        _payload(tabs=[{"id": 7, "name": "x", "path": "/tmp/a.txt", "scratch_path": None}]),
        _payload(next_scratch_sequence=0),
        _payload(active_tab_id=3),
        {"tabs": []},
    ],
)
async def test_schema_mismatch_yields_default(codec: SessionCodec, fs, payload: dict[str, Any]) -> None:
    fs.add_file(codec.path, json.dumps(payload))

    assert await codec.load() == default_session()


def test_decode_rejects_duplicate_ids(codec: SessionCodec) -> None:
    entry = {"id": "a", "name": "x", "path": None, "scratch_path": "/tmp/new 1.txt"}
    text = json.dumps(_payload(tabs=[entry, dict(entry, name="y")]))

    with pytest.raises(SessionDecodeError):
        codec.decode(text)


def test_decode_ignores_unknown_keys(codec: SessionCodec) -> None:
    payload = _payload(window={"width": 800})
    payload["tabs"][0]["language"] = "python"

    session = codec.decode(json.dumps(payload))

    assert session.tab_ids() == ("a",)


def test_decode_keeps_dangling_active_id(codec: SessionCodec) -> None:
    session = codec.decode(json.dumps(_payload(active_tab_id="gone")))

    assert session.active_tab_id == "gone"


@pytest.mark.asyncio
async def test_missing_backing_file_loads_empty_body(codec: SessionCodec, storage: ScratchStorage, fs, docs_dir: Path) -> None:
    session = Session(
        tabs=[
            _scratch(storage, "a", 1, "kept"),
            Tab(id="p", name="gone.txt", path=docs_dir / "gone.txt"),
        ],
        active_tab_id="a",
        next_scratch_sequence=2,
    )
    await codec.save(session)
    del fs.files[storage.root / "new 1.txt"]

    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded.tab_ids() == ("a", "p")
    assert [tab.content for tab in loaded.tabs] == ["", ""]


# ----------------------------------------------------------------------
# end to end with the registry
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unsaved_edit_to_saved_file_is_lost_after_restart(
    registry: TabRegistry, codec: SessionCodec, storage: ScratchStorage, fs, docs_dir: Path
) -> None:
    scratch = await registry.create_tab()
    registry.update_content(scratch.id, "draft")
    await registry.save_active_as(docs_dir / "draft.txt")
    registry.update_content(scratch.id, "draft plus more")
    assert scratch.dirty

    await codec.save(registry.session)
    loaded = await _fresh_codec(codec, storage, fs).load()

    assert loaded.tabs[0].path == docs_dir / "draft.txt"
    assert loaded.tabs[0].content == "draft"
    assert not loaded.tabs[0].dirty


@pytest.mark.asyncio
@pytest.mark.parametrize("yields", [0, 1, 2, 3, 5, 8])
async def test_close_during_save_leaves_no_scratch_file(
    registry: TabRegistry, codec: SessionCodec, fs, yields: int
) -> None:
    first = await registry.create_tab()
    await registry.create_tab()
    registry.update_content(first.id, "A body")

    saving = asyncio.ensure_future(codec.save(registry.session))
    for _ in range(yields):
        await asyncio.sleep(0)
    await registry.close_tab(first.id)

    assert await saving is True
    assert first.scratch_path not in fs.files


@pytest.mark.asyncio
@pytest.mark.parametrize("yields", [0, 1, 2, 3, 5, 8])
async def test_save_as_during_save_leaves_no_scratch_file(
    registry: TabRegistry, codec: SessionCodec, fs, docs_dir: Path, yields: int
) -> None:
    tab = await registry.create_tab()
    scratch_path = tab.scratch_path
    registry.update_content(tab.id, "keep me")

    saving = asyncio.ensure_future(codec.save(registry.session))
    for _ in range(yields):
        await asyncio.sleep(0)
    await registry.save_active_as(docs_dir / "kept.txt")

    assert await saving is True
    assert scratch_path not in fs.files
    assert fs.files[docs_dir / "kept.txt"] == "keep me"


# ----------------------------------------------------------------------
# real disk
# ----------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    ["\ufeffpasted text", "\ufeff\ufeffdouble", "crlf\r\nlf\ncr\rend", "日本語 🎉"],
)
async def test_scratch_body_round_trips_on_disk(tmp_path: Path, content: str) -> None:
    local = LocalFileSystem()
    storage = ScratchStorage(tmp_path / "temp", local)
    session = Session(
        tabs=[_scratch(storage, "a", 1, content)],
        active_tab_id="a",
        next_scratch_sequence=2,
    )

    assert await SessionCodec(tmp_path / "session.json", storage=storage, file_system=local).save(session)
    loaded = await SessionCodec(tmp_path / "session.json", storage=storage, file_system=local).load()

    assert loaded.tabs[0].content == content
    assert loaded.tabs[0].saved_content == content
