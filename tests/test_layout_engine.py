"""Unit tests for the layout engine."""

import pytest

from jianpuviz.document import Block, LayoutSettings, parse_block
from jianpuviz.layout_engine import (
    Canvas,
    Circle,
    Line,
    TextGlyph,
    compute_canvas,
    layout_block,
    layout_chords,
    layout_melody,
    shares_beam,
    split_label,
)
from jianpuviz.notation_parser import parse_chords

SETTINGS = LayoutSettings(horizontal_spacing=20, vertical_scale=20)


def _melody(text: str, key_index: int = 0):
    return parse_block(Block("melody", text), key_index)


def _lines(drawing) -> list[Line]:
    return [p for p in drawing.primitives if isinstance(p, Line)]


def _glyphs(drawing) -> list[TextGlyph]:
    return [p for p in drawing.primitives if isinstance(p, TextGlyph)]


def test_empty_block_gets_default_canvas() -> None:
    drawing = layout_melody(_melody(""), SETTINGS)
    assert drawing.canvas == Canvas(width=100, height=200, baseline_y=100)
    assert drawing.primitives == []


def test_bars_only_block_gets_default_canvas() -> None:
    assert compute_canvas(_melody("| :||").events, 20, 20) == Canvas(100, 200, 100)


def test_single_note_canvas_and_position() -> None:
    drawing = layout_melody(_melody("1"), SETTINGS)
    assert drawing.canvas == Canvas(width=100, height=60, baseline_y=30)
    assert drawing.primitives == [TextGlyph(x=20, y=30, text="C")]


def test_canvas_spans_pitch_range() -> None:
    drawing = layout_melody(_melody("1 2 3 4 5 6 7"), SETTINGS)
    assert drawing.canvas == Canvas(width=160, height=180, baseline_y=150)
    glyphs = _glyphs(drawing)
    assert (glyphs[0].x, glyphs[0].y) == (20, 150)
    assert (glyphs[-1].x, glyphs[-1].y) == (140, 30)


def test_higher_notes_are_drawn_higher() -> None:
    glyphs = _glyphs(layout_melody(_melody("1, 1 1'"), SETTINGS))
    assert glyphs[0].y > glyphs[1].y > glyphs[2].y


def test_width_never_shrinks_as_notes_are_added() -> None:
    widths = [compute_canvas(_melody(" ".join(["1"] * n)).events, 20, 20).width for n in range(12)]
    assert widths == sorted(widths)


def test_vertical_scale_zero_flattens_canvas() -> None:
    canvas = compute_canvas(_melody("1 5 1'").events, 20, 0)
    assert canvas.height == 60
    assert canvas.baseline_y == 30


def test_spacing_changes_width() -> None:
    canvas = compute_canvas(_melody("1 2 3 4 5 6 7").events, 40, 20)
    assert canvas.width == 280


def test_accidental_glyph_is_raised_to_the_right() -> None:
    glyphs = _glyphs(layout_melody(_melody("4#"), SETTINGS))
    base, accidental = glyphs
    assert base.text == "F"
    assert accidental.text == "#"
    assert (accidental.x, accidental.y) == (base.x + 10, base.y - 8)
    assert accidental.font_size == 14


def test_dot_is_drawn_beside_note() -> None:
    drawing = layout_melody(_melody("5."), SETTINGS)
    circles = [p for p in drawing.primitives if isinstance(p, Circle)]
    assert circles == [Circle(cx=34, cy=30)]


def test_extension_dashes() -> None:
    dashes = [g for g in _glyphs(layout_melody(_melody("1--"), SETTINGS)) if g.text == "-"]
    assert [d.x for d in dashes] == [44, 64]


def test_beamed_pair_draws_connector() -> None:
    lines = _lines(layout_melody(_melody("1_ 1_"), SETTINGS))
    assert len(lines) == 3
    connector = lines[1]
    assert (connector.x1, connector.x2) == (28, 32)
    assert connector.y1 == connector.y2 == 30 + 14


def test_mismatched_beam_levels_are_not_connected() -> None:
    lines = _lines(layout_melody(_melody("1_ 1__"), SETTINGS))
    assert len(lines) == 3
    assert all(line.x2 - line.x1 == 16 for line in lines)


def test_sixteenth_draws_two_beam_tiers() -> None:
    lines = _lines(layout_melody(_melody("1="), SETTINGS))
    assert sorted(line.y1 for line in lines) == [30 + 14, 30 + 20]


def test_shares_beam() -> None:
    notes = _melody("1_ 2_ 3__ 4").notes
    assert shares_beam(notes[0], notes[1])
    assert not shares_beam(notes[1], notes[2])
    assert not shares_beam(notes[3], None)


def test_split_label() -> None:
    assert split_label("F#") == ("F", "#")
    assert split_label("5") == ("5", "")


def test_chords_layout() -> None:
    drawing = layout_chords(parse_chords("Am"), SETTINGS)
    assert drawing.canvas == Canvas(width=100, height=100, baseline_y=60)
    glyphs = _glyphs(drawing)
    assert [(g.x, g.y, g.text) for g in glyphs] == [(20, 60, "A"), (40, 60, "m")]
    assert all(g.font_family == "monospace" and g.font_weight == "bold" for g in glyphs)


def test_long_chords_line_widens_canvas() -> None:
    drawing = layout_chords(parse_chords("C G Am F"), SETTINGS)
    assert drawing.canvas.width == 8 * 20 + 40


@pytest.mark.parametrize("block_type", ["melody", "chords"])
def test_layout_block_dispatches_on_type(block_type: str) -> None:
    parsed = parse_block(Block(block_type, "C"), 0)  # type: ignore[arg-type]
    height = layout_block(parsed, SETTINGS).canvas.height
    assert height == (100 if block_type == "chords" else 200)
