"""ScoreImporter: converts MusicXML / MIDI scores into Jianpu notation text."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Any, Final, Union

from jianpuviz.errors import ScoreReadError
from jianpuviz.pitch import SEMITONES_PER_OCTAVE, format_degree_token, from_absolute_pitch, tonic_midi
from jianpuviz.scales import DEFAULT_KEY_INDEX, index_of_fifths, key_at

logger = logging.getLogger(__name__)

REST_TOKEN = "0"
PLACEHOLDER_TOKEN = "?"
NO_NOTES_REASON = "no notes found"

MUSICXML_SUFFIXES: Final[set[str]] = {".xml", ".musicxml", ".mxl"}
MIDI_SUFFIXES: Final[set[str]] = {".mid", ".midi"}


# ── Neutral source model ────────────────────────────────────────────────────

@dataclass(frozen=True)
class SourceNote:
    """
    A sounding note of a source voice.

    Attributes:
        pitch:           MIDI note number, or None when the source pitch was unreadable.
        start:           Onset in quarter notes from the start of the score.
        duration:        Length in quarter notes.
        is_chord_member: True for the second and later notes of a simultaneous chord.
    """

    pitch: int | None
    start: float
    duration: float
    is_chord_member: bool = False


@dataclass(frozen=True)
class SourceRest:
    duration: float


SourceEvent = Union[SourceNote, SourceRest]


@dataclass(frozen=True)
class SourceVoice:
    name: str
    events: list[SourceEvent] = field(default_factory=list)

    @property
    def sounding_count(self) -> int:
        return sum(1 for event in self.events if isinstance(event, SourceNote))


@dataclass(frozen=True)
class SourceScore:
    """Encoding-agnostic score: an optional key signature and ordered voices."""

    fifths: int | None
    voices: list[SourceVoice] = field(default_factory=list)


@dataclass(frozen=True)
class ImportResult:
    text: str
    detected_key_index: int


@dataclass(frozen=True)
class ImportFailure:
    reason: str


# ── Conversion ──────────────────────────────────────────────────────────────

class ScoreImporter:
    """
    Converts a :class:`SourceScore` into one melody line of notation text.

    Only the voice with the most sounding notes is kept (the first one on a
    tie), and inside it only the first note of each chord. Pitches are spelled
    against the detected (or forced) key; chromatic pitches the scale cannot
    spell are approximated by sharpening the degree below, so an import never
    loses a note. Durations snap to the nearest notation bucket.
    """

    # Minimum quantised length (quarter notes) → duration suffix, longest first
    _DURATION_SUFFIXES: Final[list[tuple[float, str]]] = [
        (4.0, "---"),
        (3.0, "--"),
        (2.0, "-"),
        (1.5, "."),
        (1.0, ""),
        (0.75, "_."),
        (0.5, "_"),
        (0.25, "="),
    ]

    # Semitone residue above the tonic → sharpened lower neighbour
    _CHROMATIC_APPROXIMATIONS: Final[dict[int, str]] = {
        1: "1#",
        3: "2#",
        6: "4#",
        8: "5#",
        10: "6#",
    }

    def __init__(self, forced_key_index: int | None = None) -> None:
        if forced_key_index is not None:
            key_at(forced_key_index)
        self.forced_key_index = forced_key_index

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _detect_key(self, score: SourceScore) -> int:
        if self.forced_key_index is not None:
            return self.forced_key_index
        if score.fifths is None:
            return DEFAULT_KEY_INDEX
        return index_of_fifths(score.fifths)

    def _select_voice(self, score: SourceScore) -> SourceVoice | None:
        best: SourceVoice | None = None
        for voice in score.voices:
            if voice.sounding_count > (best.sounding_count if best else 0):
                best = voice
        return best

    def _duration_suffix(self, duration: float) -> str:
        quantized = round(duration * 4) / 4
        for threshold, suffix in self._DURATION_SUFFIXES:
            if quantized >= threshold:
                return suffix
        return ""

    def _note_token(self, note: SourceNote, key_index: int) -> str:
        suffix = self._duration_suffix(note.duration)
        if note.pitch is None:
            logger.warning("Note at beat %.2f has no readable pitch; writing placeholder", note.start)
            return PLACEHOLDER_TOKEN + suffix

        key = key_at(key_index)
        fragment = from_absolute_pitch(key, note.pitch)
        if fragment is not None:
            return format_degree_token(fragment.degree, fragment.octave_offset, suffix)

        relative = note.pitch - tonic_midi(key)
        octave_offset = relative // SEMITONES_PER_OCTAVE
        degree = self._CHROMATIC_APPROXIMATIONS[relative % SEMITONES_PER_OCTAVE]
        logger.debug("Approximated chromatic pitch %d as %s", note.pitch, degree)
        return format_degree_token(degree, octave_offset, suffix)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def convert(self, score: SourceScore) -> ImportResult | ImportFailure:
        """Convert *score*; never raises for malformed individual notes."""
        key_index = self._detect_key(score)
        voice = self._select_voice(score)
        if voice is None:
            return ImportFailure(reason=NO_NOTES_REASON)

        tokens: list[str] = []
        for event in voice.events:
            if isinstance(event, SourceRest):
                tokens.append(REST_TOKEN + self._duration_suffix(event.duration))
            elif not event.is_chord_member:
                tokens.append(self._note_token(event, key_index))

        return ImportResult(text=" ".join(tokens), detected_key_index=key_index)


def import_score(source: SourceScore, forced_key_index: int | None = None) -> ImportResult | ImportFailure:
    """Convert an already decoded source score into notation text."""
    return ScoreImporter(forced_key_index).convert(source)


# ── Readers (music21) ───────────────────────────────────────────────────────

def _quarter_length(element: Any) -> float:
    return float(Fraction(element.duration.quarterLength))


def _fifths_of(stream: Any) -> int | None:
    for signature in stream.recurse().getElementsByClass("KeySignature"):
        sharps = getattr(signature, "sharps", None)
        if isinstance(sharps, int):
            return sharps
    return None


def _voice_from_part(part: Any, name: str) -> SourceVoice:
    events: list[SourceEvent] = []
    for element in part.flatten().notesAndRests:
        duration = _quarter_length(element)
        start = float(Fraction(element.offset))
        if element.isRest:
            events.append(SourceRest(duration=duration))
            continue

        pitches = list(element.pitches)
        if not pitches:
            events.append(SourceNote(pitch=None, start=start, duration=duration))
            continue
        for position, pitch in enumerate(pitches):
            midi = getattr(pitch, "midi", None)
            events.append(
                SourceNote(
                    pitch=midi if isinstance(midi, int) else None,
                    start=start,
                    duration=duration,
                    is_chord_member=position > 0,
                )
            )
    return SourceVoice(name=name, events=events)


def score_from_music21(score: Any, first_part_only: bool = False) -> SourceScore:
    """Build a :class:`SourceScore` from a parsed music21 stream."""
    parts = list(getattr(score, "parts", [])) or [score]
    if first_part_only:
        parts = parts[:1]
    voices = [
        _voice_from_part(part, getattr(part, "partName", None) or f"Part {index + 1}")
        for index, part in enumerate(parts)
    ]
    return SourceScore(fifths=_fifths_of(score), voices=voices)


def read_musicxml_text(text: str) -> SourceScore:
    """
    Decode MusicXML text; only the first part is kept as the melody.

    Raises:
        ScoreReadError: If music21 cannot parse the document.
    """
    from music21 import converter

    try:
        score = converter.parse(text, format="musicxml")
    except Exception as exc:
        raise ScoreReadError(f"Could not read MusicXML: {exc}") from exc
    return score_from_music21(score, first_part_only=True)


def read_score_file(path: str | Path) -> SourceScore:
    """
    Decode a MusicXML (first part) or MIDI (every track) file.

    Raises:
        ScoreReadError: If the suffix is unsupported or the file cannot be parsed.
    """
    from music21 import converter

    score_path = Path(path)
    suffix = score_path.suffix.lower()
    if suffix in MUSICXML_SUFFIXES:
        file_format, first_part_only = "musicxml", True
    elif suffix in MIDI_SUFFIXES:
        file_format, first_part_only = "midi", False
    else:
        supported = ", ".join(sorted(MUSICXML_SUFFIXES | MIDI_SUFFIXES))
        raise ScoreReadError(f"Unsupported score file '{score_path.name}'. Use one of: {supported}.")

    try:
        score = converter.parse(str(score_path), format=file_format)
    except Exception as exc:
        raise ScoreReadError(f"Could not read {score_path.name}: {exc}") from exc
    return score_from_music21(score, first_part_only=first_part_only)
