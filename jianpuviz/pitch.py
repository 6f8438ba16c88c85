"""PitchResolver: converts between scale degrees and absolute (MIDI) pitch."""

from __future__ import annotations

import math
from typing import Final, NamedTuple

from jianpuviz.scales import Key

# ── Pitch constants ─────────────────────────────────────────────────────────
SEMITONES_PER_OCTAVE = 12
DEGREES_PER_OCTAVE = 7
REFERENCE_OCTAVE = 4      # degree 1 with no octave marks sounds in octave 4
A4_MIDI = 69
A4_FREQUENCY = 440.0

#: Major-scale interval of each degree above the tonic (degree 1 first)
SEMITONE_OFFSETS: Final[tuple[int, ...]] = (0, 2, 4, 5, 7, 9, 11)

#: Semitone above the tonic → scale degree; the five missing residues are chromatic
DEGREE_BY_SEMITONE: Final[dict[int, int]] = {
    semitone: degree for degree, semitone in enumerate(SEMITONE_OFFSETS, start=1)
}

HIGH_OCTAVE_MARK = "'"
LOW_OCTAVE_MARK = ","


class PitchFragment(NamedTuple):
    """Scale-degree spelling of an absolute pitch."""

    degree: int
    accidental: int
    octave_offset: int


def pitch_class_to_midi(pitch_class: int, octave: int) -> int:
    """
    Convert a pitch class (0-11) and a scientific octave number to MIDI.

    MIDI octave numbering: C-1 = 0, C0 = 12, ... C4 (Middle C) = 60.
    """
    return (octave + 1) * SEMITONES_PER_OCTAVE + pitch_class


def tonic_midi(key: Key) -> int:
    """MIDI note of degree 1 with no octave marks in *key*."""
    return pitch_class_to_midi(key.root_semitone, REFERENCE_OCTAVE)


def diatonic_offset(degree: int) -> int:
    """Staff steps of *degree* above the tonic (1 → 0 … 7 → 6)."""
    return degree - 1


def to_absolute_pitch(key: Key, degree: int, accidental: int = 0, octave_offset: int = 0) -> int:
    """
    Resolve a scale degree to an absolute MIDI pitch in *key*.

    Args:
        key:           Key the degree is read in.
        degree:        Scale degree 1–7.
        accidental:    Semitone alteration (-1 flat, +1 sharp).
        octave_offset: Octaves above (+) or below (-) the reference octave.
    """
    return (
        tonic_midi(key)
        + SEMITONE_OFFSETS[degree - 1]
        + SEMITONES_PER_OCTAVE * octave_offset
        + accidental
    )


def from_absolute_pitch(key: Key, absolute_pitch: int) -> PitchFragment | None:
    """
    Spell an absolute MIDI pitch as a scale degree of *key*.

    Floor division and the non-negative remainder keep pitches below the
    tonic in the right octave (one semitone below the tonic is degree 7,
    octave -1).

    Returns:
        The degree spelling with accidental 0, or ``None`` when the pitch
        falls on one of the five chromatic residues of the scale. Callers
        decide whether to approximate or drop it.
    """
    relative = absolute_pitch - tonic_midi(key)
    octave_offset = relative // SEMITONES_PER_OCTAVE
    semitone_in_scale = relative % SEMITONES_PER_OCTAVE

    degree = DEGREE_BY_SEMITONE.get(semitone_in_scale)
    if degree is None:
        return None
    return PitchFragment(degree=degree, accidental=0, octave_offset=octave_offset)


def octave_marks(octave_offset: int) -> str:
    """Return the octave marker glyphs for *octave_offset* (``'`` up, ``,`` down)."""
    if octave_offset > 0:
        return HIGH_OCTAVE_MARK * octave_offset
    if octave_offset < 0:
        return LOW_OCTAVE_MARK * -octave_offset
    return ""


def format_degree_token(degree: int | str, octave_offset: int = 0, suffix: str = "") -> str:
    """Build a notation token such as ``5,`` or ``1''_``."""
    return f"{degree}{octave_marks(octave_offset)}{suffix}"


def frequency_to_midi(frequency: float) -> int:
    """Round a frequency in Hz to the nearest MIDI note number."""
    return int(round(A4_MIDI + SEMITONES_PER_OCTAVE * math.log2(frequency / A4_FREQUENCY)))


def midi_to_frequency(midi: int) -> float:
    """Equal-tempered frequency in Hz of a MIDI note number."""
    return A4_FREQUENCY * 2.0 ** ((midi - A4_MIDI) / SEMITONES_PER_OCTAVE)


# Chromatic pitch class names (index 0 = C)
NOTE_NAMES: Final[tuple[str, ...]] = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")


def midi_note_name(midi: int) -> str:
    """Scientific pitch name of a MIDI note, e.g. 60 → ``C4``."""
    octave, pitch_class = divmod(midi, SEMITONES_PER_OCTAVE)
    return f"{NOTE_NAMES[pitch_class]}{octave - 1}"
