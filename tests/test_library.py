"""Unit tests for the SQLite melody library."""

import json
import re

import pytest

from jianpuviz.document import Block, Document, LayoutSettings
from jianpuviz.errors import MissingTitleError, StorageError
from jianpuviz.library import (
    Library,
    MelodyRecord,
    MelodyStore,
    load_user_id,
    new_user_id,
    record_to_document,
)


@pytest.fixture
def store(tmp_path):
    melody_store = MelodyStore(tmp_path / "library.db")
    yield melody_store
    melody_store.close()


def _sample_document(title: str = "Jasmine", album: str = "Folk") -> Document:
    return Document(
        title=title,
        album=album,
        key_index=3,
        tempo_bpm=85,
        blocks=(Block("melody", "3 3 5 6"), Block("chords", "C Am")),
        settings=LayoutSettings(30, 10),
    )


def test_save_and_load_round_trip(store) -> None:
    library = Library(store, "user_alice0000")
    record_id = library.save(_sample_document())
    assert record_id is not None
    assert library.load(record_id) == _sample_document()


def test_stored_content_is_current_envelope(store) -> None:
    record_id = Library(store, "user_a").save(_sample_document())
    payload = json.loads(store.get(record_id).content)
    assert payload["settings"] == {"horizontalSpacing": 30, "verticalScale": 10}
    assert payload["blocks"][1] == {"type": "chords", "content": "C Am"}


def test_save_requires_title(store) -> None:
    with pytest.raises(MissingTitleError):
        Library(store, "user_a").save(_sample_document(title="   "))


def test_overwrite_declined_keeps_existing(store) -> None:
    library = Library(store, "user_a")
    record_id = library.save(_sample_document())
    changed = _sample_document().update_block(0, "1 1 1")

    assert library.save(changed, confirm_overwrite=lambda document: False) is None
    assert library.load(record_id).blocks[0].content == "3 3 5 6"


def test_overwrite_confirmed_updates_in_place(store) -> None:
    library = Library(store, "user_a")
    record_id = library.save(_sample_document())
    changed = _sample_document().update_block(0, "1 1 1")

    assert library.save(changed, confirm_overwrite=lambda document: True) == record_id
    assert library.load(record_id).blocks[0].content == "1 1 1"
    assert len(library.list_recent()) == 1


def test_same_title_in_another_album_is_a_new_melody(store) -> None:
    library = Library(store, "user_a")
    first = library.save(_sample_document(album="Folk"))
    second = library.save(_sample_document(album="Live"))
    assert first != second


def test_same_title_for_another_owner_is_a_new_melody(store) -> None:
    first = Library(store, "user_a").save(_sample_document())
    second = Library(store, "user_b").save(_sample_document())
    assert first != second


def test_save_in_progress_is_refused(store) -> None:
    library = Library(store, "user_a")
    library.is_saving = True
    assert library.save(_sample_document()) is None
    assert library.list_recent() == []


def test_list_recent_is_newest_first(store) -> None:
    library = Library(store, "user_a")
    ids = [library.save(_sample_document(title=f"Song {n}")) for n in range(3)]
    assert [record.id for record in library.list_recent()] == list(reversed(ids))
    assert len(library.list_recent(limit=2)) == 2


def test_load_missing_raises_key_error(store) -> None:
    with pytest.raises(KeyError):
        Library(store, "user_a").load(404)


def test_delete_only_own_melodies(store) -> None:
    record_id = Library(store, "user_a").save(_sample_document())
    assert not Library(store, "user_b").delete(record_id)
    assert Library(store, "user_a").delete(record_id)
    assert store.get(record_id) is None
    assert not Library(store, "user_a").delete(record_id)


def _record(content: str, key_index: int | None = None, bpm: int | None = None) -> MelodyRecord:
    return MelodyRecord(
        id=1,
        title="Old",
        album="",
        content=content,
        key_index=key_index,
        bpm=bpm,
        owner_id=None,
        created_at="2020-01-01T00:00:00.000",
    )


def test_record_without_key_or_tempo_gets_defaults() -> None:
    document = record_to_document(_record(json.dumps(["1 2 3"])))
    assert document.key_index == 0
    assert document.tempo_bpm == 60
    assert document.blocks == (Block("melody", "1 2 3"),)


def test_record_with_plain_text_content() -> None:
    document = record_to_document(_record("5 6 5 3", key_index=11, bpm=120))
    assert document.blocks == (Block("melody", "5 6 5 3"),)
    assert (document.key_index, document.tempo_bpm) == (11, 120)


def test_unopenable_database_raises_storage_error(tmp_path) -> None:
    with pytest.raises(StorageError):
        MelodyStore(tmp_path)


def test_new_user_id_format() -> None:
    assert re.fullmatch(r"user_[0-9a-z]{9}", new_user_id())


def test_user_id_is_stored_and_reused(tmp_path) -> None:
    first = load_user_id(tmp_path)
    assert (tmp_path / "user_id").read_text(encoding="utf-8") == first
    assert load_user_id(tmp_path) == first
