"""Unit tests for the document model and the persisted envelope codec."""

import json

import pytest

from jianpuviz.document import (
    Block,
    Document,
    LayoutSettings,
    decode_envelope,
    encode_envelope,
    parse_document,
)
from jianpuviz.notation_models import ParsedChords, ParsedMelody


def _sample_document() -> Document:
    return Document(
        title="Jasmine",
        blocks=(Block("melody", "3 3 5 6"), Block("chords", "C  Am"), Block("melody", "1' 1' 6")),
    )


def test_new_document_has_one_empty_melody_block() -> None:
    document = Document()
    assert document.title == "Untitled Melody"
    assert document.tempo_bpm == 100
    assert document.blocks == (Block("melody", ""),)
    assert document.settings == LayoutSettings(20, 20)


def test_edits_return_new_documents() -> None:
    original = Document()
    edited = original.update_block(0, "1 2 3")
    assert original.blocks[0].content == ""
    assert edited.blocks[0].content == "1 2 3"


def test_add_block() -> None:
    document = Document().add_block("chords", "G")
    assert [block.type for block in document.blocks] == ["melody", "chords"]
    assert document.blocks[1].content == "G"


def test_add_block_rejects_unknown_type() -> None:
    with pytest.raises(ValueError):
        Document().add_block("lyrics")  # type: ignore[arg-type]


def test_remove_block_keeps_the_last_block() -> None:
    document = Document()
    assert document.remove_block(0) is document
    assert len(_sample_document().remove_block(1).blocks) == 2


def test_move_block() -> None:
    moved = _sample_document().move_block(2, 0)
    assert [block.content for block in moved.blocks] == ["1' 1' 6", "3 3 5 6", "C  Am"]


def test_append_to_block_separates_with_one_space() -> None:
    document = Document().append_to_block(0, "5")
    assert document.blocks[0].content == "5"
    document = document.update_block(0, "1 2 ").append_to_block(0, "3")
    assert document.blocks[0].content == "1 2 3"


def test_parse_document_follows_block_types() -> None:
    parsed = parse_document(_sample_document())
    assert isinstance(parsed[0], ParsedMelody)
    assert isinstance(parsed[1], ParsedChords)
    assert [note.absolute_pitch for note in parsed[2].notes] == [72, 72, 69]


def test_parse_document_recomputes_on_key_change() -> None:
    document = Document().update_block(0, "1")
    assert parse_document(document)[0].notes[0].absolute_pitch == 60
    assert parse_document(document.set_key(1))[0].notes[0].absolute_pitch == 67


def test_encode_envelope_shape() -> None:
    document = _sample_document()
    payload = json.loads(encode_envelope(document.blocks, LayoutSettings(30, 15)))
    assert payload["blocks"][1] == {"type": "chords", "content": "C  Am"}
    assert payload["settings"] == {"horizontalSpacing": 30, "verticalScale": 15}


def test_decode_current_envelope() -> None:
    document = _sample_document()
    decoded = decode_envelope(encode_envelope(document.blocks, LayoutSettings(30, 0)))
    assert decoded.blocks == document.blocks
    assert decoded.settings == LayoutSettings(30, 0)


def test_decode_mixed_blocks_with_kerning() -> None:
    raw = json.dumps(
        {
            "blocks": ["1 2 3", {"type": "chords", "content": "Am"}],
            "settings": {"kerning": 35, "verticalScale": 10},
        }
    )
    decoded = decode_envelope(raw)
    assert decoded.blocks == (Block("melody", "1 2 3"), Block("chords", "Am"))
    assert decoded.settings == LayoutSettings(35, 10)


def test_decode_mixed_blocks_without_settings_uses_defaults() -> None:
    decoded = decode_envelope(json.dumps({"blocks": [{"type": "melody", "content": "5"}]}))
    assert decoded.blocks == (Block("melody", "5"),)
    assert decoded.settings == LayoutSettings()


def test_decode_string_array() -> None:
    decoded = decode_envelope(json.dumps(["1 2 3", "5 6"]))
    assert decoded.blocks == (Block("melody", "1 2 3"), Block("melody", "5 6"))
    assert decoded.settings == LayoutSettings()


def test_decode_bare_mixed_block_array() -> None:
    decoded = decode_envelope(json.dumps(["1 2 3", {"type": "chords", "content": "C G"}]))
    assert decoded.blocks == (Block("melody", "1 2 3"), Block("chords", "C G"))
    assert decoded.settings == LayoutSettings()


def test_envelope_keeps_key_and_tempo_when_given() -> None:
    raw = encode_envelope((Block("melody", "1 2"),), LayoutSettings(), key_index=3, tempo_bpm=80)
    payload = json.loads(raw)
    assert (payload["keyIndex"], payload["tempoBPM"]) == (3, 80)

    decoded = decode_envelope(raw)
    assert (decoded.key_index, decoded.tempo_bpm) == (3, 80)


def test_envelope_without_key_and_tempo_decodes_to_none() -> None:
    decoded = decode_envelope(encode_envelope((Block("melody", "1"),), LayoutSettings()))
    assert decoded.key_index is None
    assert decoded.tempo_bpm is None


def test_decode_plain_text_becomes_one_block() -> None:
    decoded = decode_envelope("1 2 3 | 5-")
    assert decoded.blocks == (Block("melody", "1 2 3 | 5-"),)


def test_decode_unknown_json_shape_keeps_raw_text() -> None:
    assert decode_envelope("123").blocks == (Block("melody", "123"),)
    assert decode_envelope('{"notes": []}').blocks == (Block("melody", '{"notes": []}'),)


def test_decode_empty_blocks_gives_default_block() -> None:
    raw = json.dumps({"blocks": [], "settings": {"horizontalSpacing": 20, "verticalScale": 20}})
    assert decode_envelope(raw).blocks == (Block(),)
