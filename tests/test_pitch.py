"""Unit tests for degree ↔ absolute pitch conversion."""

import pytest

from jianpuviz.pitch import (
    PitchFragment,
    format_degree_token,
    frequency_to_midi,
    from_absolute_pitch,
    midi_note_name,
    midi_to_frequency,
    octave_marks,
    to_absolute_pitch,
    tonic_midi,
)
from jianpuviz.scales import KEYS, NUMBERS_ONLY_INDEX, key_at

C_MAJOR = key_at(0)
G_MAJOR = key_at(1)


def test_tonic_sits_in_octave_four() -> None:
    assert tonic_midi(C_MAJOR) == 60
    assert tonic_midi(G_MAJOR) == 67
    assert tonic_midi(KEYS[NUMBERS_ONLY_INDEX]) == 60


@pytest.mark.parametrize(
    "degree, accidental, octave, expected",
    [
        (1, 0, 0, 60),
        (3, 0, 0, 64),
        (7, 0, 0, 71),
        (4, 1, 0, 66),
        (7, -1, 0, 70),
        (1, 0, 1, 72),
        (5, 0, -1, 55),
        (1, 0, -2, 36),
    ],
)
def test_to_absolute_pitch_in_c(degree: int, accidental: int, octave: int, expected: int) -> None:
    assert to_absolute_pitch(C_MAJOR, degree, accidental, octave) == expected


def test_to_absolute_pitch_follows_key_root() -> None:
    assert to_absolute_pitch(G_MAJOR, 1) == 67
    assert to_absolute_pitch(G_MAJOR, 7) == 78


def test_from_absolute_pitch_spells_diatonic_pitches() -> None:
    assert from_absolute_pitch(C_MAJOR, 64) == PitchFragment(3, 0, 0)
    assert from_absolute_pitch(C_MAJOR, 84) == PitchFragment(1, 0, 2)


def test_from_absolute_pitch_below_tonic_uses_floor_octave() -> None:
    assert from_absolute_pitch(C_MAJOR, 59) == PitchFragment(7, 0, -1)
    assert from_absolute_pitch(G_MAJOR, 66) == PitchFragment(7, 0, -1)
    assert from_absolute_pitch(C_MAJOR, 43) == PitchFragment(5, 0, -2)


@pytest.mark.parametrize("midi", [61, 63, 66, 68, 70, 49])
def test_from_absolute_pitch_chromatic_is_none(midi: int) -> None:
    assert from_absolute_pitch(C_MAJOR, midi) is None


@pytest.mark.parametrize("key_index", [0, 3, 7, 12])
def test_degree_survives_a_trip_through_absolute_pitch(key_index: int) -> None:
    key = key_at(key_index)
    for octave in (-2, -1, 0, 1, 2):
        for degree in range(1, 8):
            midi = to_absolute_pitch(key, degree, 0, octave)
            assert from_absolute_pitch(key, midi) == PitchFragment(degree, 0, octave)


def test_octave_marks() -> None:
    assert octave_marks(0) == ""
    assert octave_marks(2) == "''"
    assert octave_marks(-1) == ","


def test_format_degree_token() -> None:
    assert format_degree_token(5, -1, "_") == "5,_"
    assert format_degree_token("2#", 1) == "2#'"


def test_frequency_conversions() -> None:
    assert frequency_to_midi(440.0) == 69
    assert frequency_to_midi(261.63) == 60
    assert frequency_to_midi(450.0) == 69
    assert midi_to_frequency(69) == pytest.approx(440.0)
    assert midi_to_frequency(81) == pytest.approx(880.0)


def test_midi_note_name() -> None:
    assert midi_note_name(60) == "C4"
    assert midi_note_name(61) == "C#4"
    assert midi_note_name(21) == "A0"
