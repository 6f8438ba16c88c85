"""LayoutEngine: maps parsed blocks to canvas geometry and draw primitives."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from jianpuviz.document import LayoutSettings
from jianpuviz.notation_models import NoteEvent, NotationToken, ParsedChords, ParsedMelody

# ── Geometry constants (pixels) ─────────────────────────────────────────────
PADDING_X = 40
PADDING_Y = 60
NOTE_OFFSET_X = 20        # x of the first note
MIN_WIDTH = 100
DEFAULT_HEIGHT = 200
DEFAULT_BASELINE_Y = 100

CHORD_CANVAS_HEIGHT = 100
CHORD_BASELINE_Y = 60

NOTE_FONT_SIZE = 24
ACCIDENTAL_FONT_SIZE = 14
CHORD_FONT_SIZE = 24

ACCIDENTAL_OFFSET = (10, -8)
DOT_OFFSET_X = 14
DOT_RADIUS = 2.5
DASH_OFFSET_X = 24
DASH_SPACING = 20
BEAM_HALF_WIDTH = 8
BEAM_STROKE = 2
# Vertical distance below the glyph centre of each beam tier
BEAM_OFFSETS_Y = {1: 14, 2: 20}


# ── Draw primitives ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TextGlyph:
    x: float
    y: float
    text: str
    font_size: int = NOTE_FONT_SIZE
    font_weight: str = "500"
    font_family: str = "sans-serif"
    anchor: str = "middle"
    centered: bool = True


@dataclass(frozen=True)
class Line:
    x1: float
    y1: float
    x2: float
    y2: float
    stroke_width: float = BEAM_STROKE


@dataclass(frozen=True)
class Circle:
    cx: float
    cy: float
    r: float = DOT_RADIUS


DrawPrimitive = Union[TextGlyph, Line, Circle]


@dataclass(frozen=True)
class Canvas:
    width: float
    height: float
    baseline_y: float


@dataclass
class Drawing:
    """A canvas plus the primitives to paint on it, in paint order."""

    canvas: Canvas
    primitives: list[DrawPrimitive] = field(default_factory=list)


# ── Geometry ────────────────────────────────────────────────────────────────

def _note_events(events: list[NotationToken]) -> list[NoteEvent]:
    return [event for event in events if isinstance(event, NoteEvent)]


def compute_canvas(events: list[NotationToken], horizontal_spacing: float, vertical_scale: float) -> Canvas:
    """
    Size the canvas for a melody block.

    Width grows with the number of notes; height follows the spread of
    ``pitch_index`` (diatonic steps, so a sharp never makes the canvas
    taller). A block without notes gets the fixed default canvas.
    """
    notes = _note_events(events)
    if not notes:
        return Canvas(width=MIN_WIDTH, height=DEFAULT_HEIGHT, baseline_y=DEFAULT_BASELINE_Y)

    pitches = [note.pitch_index for note in notes]
    min_pitch = min(pitches)
    max_pitch = max(pitches)
    width = max(MIN_WIDTH, (len(notes) - 1) * horizontal_spacing + PADDING_X)
    height = (max_pitch - min_pitch) * vertical_scale + PADDING_Y
    baseline_y = max_pitch * vertical_scale + PADDING_Y / 2
    return Canvas(width=width, height=height, baseline_y=baseline_y)


def position_of(
    index: int,
    event: NoteEvent,
    baseline_y: float,
    horizontal_spacing: float,
    vertical_scale: float,
) -> tuple[float, float]:
    """Return the (x, y) centre of the *index*-th note; higher notes get smaller y."""
    x = NOTE_OFFSET_X + index * horizontal_spacing
    y = baseline_y - event.pitch_index * vertical_scale
    return x, y


def shares_beam(current: NoteEvent, following: NoteEvent | None) -> bool:
    """True when a beam connects *current* to the note after it."""
    if following is None:
        return False
    level = current.render_flags.beam_level
    return level >= 1 and following.render_flags.beam_level == level


def split_label(label: str) -> tuple[str, str]:
    """Split a display label into its base glyph and accidental suffix (``"F#"`` → ``("F", "#")``)."""
    return label[:1], label[1:]


# ── Primitive emission ──────────────────────────────────────────────────────

class MelodyLayout:
    """
    Turns a parsed melody block into draw primitives.

    Each note draws, relative to its centre (x, y):

    - the degree label, and its accidental raised to the upper right;
    - a dot at (x + 14, y) when dotted;
    - one dash per extension at x + 24, x + 44, ...;
    - an underline stub per beam tier at y + 14 and y + 20;
    - for every tier, a connector to the next note when both notes have the
      same beam level (a local pairwise rule, no beam grouping).
    """

    def __init__(self, settings: LayoutSettings) -> None:
        self.settings = settings

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _position(self, index: int, note: NoteEvent, canvas: Canvas) -> tuple[float, float]:
        return position_of(
            index,
            note,
            canvas.baseline_y,
            self.settings.horizontal_spacing,
            self.settings.vertical_scale,
        )

    def _note_primitives(
        self,
        note: NoteEvent,
        x: float,
        y: float,
        following: NoteEvent | None,
        next_position: tuple[float, float] | None,
    ) -> list[DrawPrimitive]:
        base, accidental = split_label(note.display_label)
        flags = note.render_flags
        primitives: list[DrawPrimitive] = [TextGlyph(x=x, y=y, text=base)]

        if accidental:
            dx, dy = ACCIDENTAL_OFFSET
            primitives.append(
                TextGlyph(
                    x=x + dx,
                    y=y + dy,
                    text=accidental,
                    font_size=ACCIDENTAL_FONT_SIZE,
                    font_weight="bold",
                    anchor="start",
                    centered=False,
                )
            )

        if flags.dotted:
            primitives.append(Circle(cx=x + DOT_OFFSET_X, cy=y))

        for dash in range(flags.extension_count):
            primitives.append(
                TextGlyph(x=x + DASH_OFFSET_X + dash * DASH_SPACING, y=y, text="-", font_weight="normal")
            )

        beamed = shares_beam(note, following)
        for level in range(1, flags.beam_level + 1):
            offset = BEAM_OFFSETS_Y[level]
            primitives.append(Line(x - BEAM_HALF_WIDTH, y + offset, x + BEAM_HALF_WIDTH, y + offset))
            if beamed and next_position is not None:
                next_x, next_y = next_position
                primitives.append(
                    Line(x + BEAM_HALF_WIDTH, y + offset, next_x - BEAM_HALF_WIDTH, next_y + offset)
                )

        return primitives

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def layout(self, parsed: ParsedMelody) -> Drawing:
        canvas = compute_canvas(parsed.events, self.settings.horizontal_spacing, self.settings.vertical_scale)
        notes = parsed.notes
        positions = [self._position(index, note, canvas) for index, note in enumerate(notes)]

        drawing = Drawing(canvas=canvas)
        for index, note in enumerate(notes):
            x, y = positions[index]
            following = notes[index + 1] if index + 1 < len(notes) else None
            next_position = positions[index + 1] if following is not None else None
            drawing.primitives.extend(self._note_primitives(note, x, y, following, next_position))
        return drawing


def layout_melody(parsed: ParsedMelody, settings: LayoutSettings) -> Drawing:
    return MelodyLayout(settings).layout(parsed)


def layout_chords(parsed: ParsedChords, settings: LayoutSettings) -> Drawing:
    """Lay chord text out as one bold monospace glyph per character on a fixed-height strip."""
    spacing = settings.horizontal_spacing
    canvas = Canvas(
        width=max(MIN_WIDTH, len(parsed.chars) * spacing + PADDING_X),
        height=CHORD_CANVAS_HEIGHT,
        baseline_y=CHORD_BASELINE_Y,
    )
    glyphs: list[DrawPrimitive] = [
        TextGlyph(
            x=NOTE_OFFSET_X + index * spacing,
            y=CHORD_BASELINE_Y,
            text=char,
            font_size=CHORD_FONT_SIZE,
            font_weight="bold",
            font_family="monospace",
            centered=False,
        )
        for index, char in enumerate(parsed.chars)
    ]
    return Drawing(canvas=canvas, primitives=glyphs)


def layout_block(parsed: ParsedMelody | ParsedChords, settings: LayoutSettings) -> Drawing:
    if isinstance(parsed, ParsedChords):
        return layout_chords(parsed, settings)
    return layout_melody(parsed, settings)
