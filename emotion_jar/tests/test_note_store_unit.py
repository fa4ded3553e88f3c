import json
import logging
import random

import pytest

from emotion_jar.internal_core.contracts import Note
from emotion_jar.internal_core.note_store import JsonNoteStore


def _note(note_id: str, *, quote: str | None = "Quote —— Someone", created_at: int = 1_700_000_000_000) -> Note:
    return Note(
        id=note_id,
        original_text=f"original {note_id}",
        transformed_text=f"transformed {note_id}",
        quote=quote,
        created_at=created_at,
    )


def test_load_missing_slot_yields_empty_store(tmp_path) -> None:
    store = JsonNoteStore(tmp_path / "emotional_jar_notes.json")
    assert store.load() == 0
    assert store.notes() == []
    assert store.is_empty()


def test_load_blank_slot_yields_empty_store(tmp_path) -> None:
    path = tmp_path / "emotional_jar_notes.json"
    path.write_text("  \n", encoding="utf-8")
    store = JsonNoteStore(path)
    assert store.load() == 0


def test_round_trip_preserves_fields_and_order(tmp_path) -> None:
    path = tmp_path / "emotional_jar_notes.json"
    store = JsonNoteStore(path)
    store.append(_note("a", created_at=1))
    store.append(_note("b", quote=None, created_at=2))
    store.append(_note("c", created_at=3))

    reloaded = JsonNoteStore(path)
    reloaded.load()

    assert reloaded.notes() == store.notes()
    assert [item.id for item in reloaded.notes()] == ["c", "b", "a"]
    assert reloaded.get("b").quote is None


def test_persisted_shape_uses_camel_case_and_omits_missing_quote(tmp_path) -> None:
    path = tmp_path / "emotional_jar_notes.json"
    store = JsonNoteStore(path)
    store.append(_note("with_quote"))
    store.append(_note("no_quote", quote=None))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert isinstance(payload, list)
    assert payload[0] == {
        "id": "no_quote",
        "originalText": "original no_quote",
        "transformedText": "transformed no_quote",
        "createdAt": 1_700_000_000_000,
    }
    assert payload[1]["quote"] == "Quote —— Someone"


def test_append_prepends_and_is_idempotent_by_id(tmp_path) -> None:
    store = JsonNoteStore(tmp_path / "notes.json")
    first = _note("same")
    assert store.append(first) is True
    assert store.append(_note("other")) is True
    assert store.append(first) is False
    assert store.append(_note("same", quote="different content, same id")) is False

    ids = [item.id for item in store.notes()]
    assert ids == ["other", "same"]
    assert ids.count("same") == 1


def test_remove_deletes_by_id_and_persists(tmp_path) -> None:
    path = tmp_path / "notes.json"
    store = JsonNoteStore(path)
    store.append(_note("a"))
    store.append(_note("b"))

    assert store.remove("a") is True
    assert store.remove("a") is False

    reloaded = JsonNoteStore(path)
    reloaded.load()
    assert [item.id for item in reloaded.notes()] == ["b"]


@pytest.mark.parametrize(
    "raw",
    [
        b"{not json",
        b'{"id": "a"}',
        b'[{"id": "a", "originalText": "x"}]',
        b'[{"id": "a", "originalText": "x", "transformedText": "y", "createdAt": "yesterday"}]',
        b'[{"id": "a", "originalText": "\xff\xfe"}]',
    ],
)
def test_unreadable_slot_fails_soft_and_is_moved_aside(tmp_path, caplog, raw: bytes) -> None:
    path = tmp_path / "emotional_jar_notes.json"
    path.write_bytes(raw)
    store = JsonNoteStore(path)

    with caplog.at_level(logging.WARNING, logger="emotion_jar.internal_core.note_store"):
        assert store.load() == 0

    assert store.notes() == []
    assert not path.exists()
    assert len(list(tmp_path.glob("emotional_jar_notes.json.*.corrupt"))) == 1
    assert "unreadable" in caplog.text

    # The jar keeps working after the soft failure.
    assert store.append(_note("fresh")) is True
    assert json.loads(path.read_text(encoding="utf-8"))[0]["id"] == "fresh"


def test_duplicate_ids_in_slot_keep_first_occurrence(tmp_path) -> None:
    path = tmp_path / "notes.json"
    rows = [
        _note("dup", quote="first").to_storage(),
        _note("dup", quote="second").to_storage(),
        _note("solo").to_storage(),
    ]
    path.write_text(json.dumps(rows, ensure_ascii=False), encoding="utf-8")

    store = JsonNoteStore(path)
    assert store.load() == 2
    assert store.get("dup").quote == "first"


def test_pick_random_returns_existing_note(tmp_path) -> None:
    store = JsonNoteStore(tmp_path / "notes.json", rng=random.Random(7))
    for idx in range(5):
        store.append(_note(f"n{idx}"))
    existing = {item.id for item in store.notes()}
    picked = {store.pick_random().id for _ in range(50)}
    assert picked <= existing
    assert len(picked) > 1


def test_pick_random_on_empty_store_raises() -> None:
    store = JsonNoteStore(None)
    with pytest.raises(LookupError):
        store.pick_random()


def test_failed_write_leaves_memory_unchanged(tmp_path, monkeypatch) -> None:
    store = JsonNoteStore(tmp_path / "notes.json")
    store.append(_note("kept"))

    def broken_write(notes) -> None:
        _ = notes
        raise OSError("disk full for test")

    monkeypatch.setattr(store, "_write_slot", broken_write)
    with pytest.raises(OSError, match="disk full"):
        store.append(_note("lost"))
    assert [item.id for item in store.notes()] == ["kept"]


def test_memory_only_store_never_touches_disk(tmp_path) -> None:
    store = JsonNoteStore(None)
    assert store.load() == 0
    assert store.append(_note("a")) is True
    store.persist()
    assert len(store) == 1
    assert list(tmp_path.iterdir()) == []


def test_note_is_immutable() -> None:
    note = _note("frozen")
    with pytest.raises(Exception):
        note.transformed_text = "changed"  # type: ignore[misc]
