"""Data models for parsed notation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple, Union


@dataclass(frozen=True)
class RenderFlags:
    """Glyph decorations of a note: beam underlines, dot and extension dashes."""

    beam_level: int = 0
    dotted: bool = False
    extension_count: int = 0


@dataclass(frozen=True)
class BarEvent:
    """A barline, repeat sign or bracketed structure marker, kept for display only."""

    marker: str


@dataclass(frozen=True)
class NoteEvent:
    """
    A single parsed note.

    Attributes:
        degree:         Scale degree 1–7.
        accidental:     -1 flat, 0 natural, +1 sharp.
        octave_offset:  Octaves above (+) or below (-) the reference octave.
        duration:       Length in quarter notes.
        pitch_index:    Diatonic staff position (octave_offset * 7 + degree - 1).
        absolute_pitch: MIDI note number.
        display_label:  Degree label in the current key, with ``#``/``b`` suffix.
        source_text:    The token as written.
        render_flags:   Glyph decorations.
    """

    degree: int
    accidental: int
    octave_offset: int
    duration: float
    pitch_index: int
    absolute_pitch: int
    display_label: str
    source_text: str
    render_flags: RenderFlags = field(default_factory=RenderFlags)


NotationToken = Union[BarEvent, NoteEvent]


class ParseResult(NamedTuple):
    """Events of one melody block and the sum of their note durations."""

    events: list[NotationToken]
    total_duration: float

    @property
    def notes(self) -> list[NoteEvent]:
        return [event for event in self.events if isinstance(event, NoteEvent)]


@dataclass(frozen=True)
class ParsedMelody:
    """Derived view of a melody block."""

    events: list[NotationToken]
    total_duration: float
    source: str

    @property
    def notes(self) -> list[NoteEvent]:
        return [event for event in self.events if isinstance(event, NoteEvent)]


@dataclass(frozen=True)
class ParsedChords:
    """Derived view of a chords block: one opaque glyph per character."""

    chars: list[str]
    source: str


ParsedBlock = Union[ParsedMelody, ParsedChords]
