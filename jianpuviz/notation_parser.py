"""NotationParser: tokenizes Jianpu text into note and bar events."""

from __future__ import annotations

import logging
import re
from typing import Final

from jianpuviz.notation_models import (
    BarEvent,
    NotationToken,
    NoteEvent,
    ParsedChords,
    ParseResult,
    RenderFlags,
)
from jianpuviz.pitch import DEGREES_PER_OCTAVE, diatonic_offset, to_absolute_pitch
from jianpuviz.scales import Key

logger = logging.getLogger(__name__)

# Ordered alternation: bar glyph runs, bracketed structure groups, notes.
# Characters matching none of them are free-form annotation and are skipped.
TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"""
    (?P<bar>[|:]+)
    | (?P<group>\[[^\]]+\])
    | (?P<note>[1-7][b\#n'",._=\-]*)
    """,
    re.VERBOSE,
)

FLAT = "b"
SHARP = "#"
NATURAL = "n"
HIGH_OCTAVE = "'"
DOUBLE_HIGH_OCTAVE = '"'
LOW_OCTAVE = ","
DOT = "."
HALVE = "_"
SIXTEENTH = "="
EXTEND = "-"

BASE_DURATION = 1.0
SIXTEENTH_DURATION = 0.25
DOT_FACTOR = 1.5
MAX_BEAM_LEVEL = 2


class NotationParser:
    """
    Parses Jianpu melody text against a key.

    Grammar
    -------
    A token is one of, tried in order at each position:

    1. A run of ``|`` / ``:`` glyphs (barlines, repeat signs) → BarEvent.
    2. A ``[ ... ]`` group (section labels, volta brackets) → BarEvent.
    3. A digit 1–7 followed by modifiers → NoteEvent.

    Note modifiers
    --------------
    ``#`` / ``b``  sharp / flat (``n`` natural overrides both)
    ``'`` / ``"``  one / two octaves up, ``,`` one octave down
    ``_``          halve the duration (repeatable)
    ``=``          sixteenth note, overrides any ``_``
    ``-``          add one beat (after halving)
    ``.``          multiply the total by 1.5 (applied last)

    The duration order is fixed: saved documents depend on it. A token
    mixing halving and extension such as ``1_-`` is 0.5 + 1 = 1.5 beats.
    """

    def __init__(self, key: Key) -> None:
        self.key = key

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _accidental(self, modifiers: str) -> int:
        if NATURAL in modifiers:
            return 0
        return modifiers.count(SHARP) - modifiers.count(FLAT)

    def _octave(self, modifiers: str) -> int:
        return (
            modifiers.count(HIGH_OCTAVE)
            + 2 * modifiers.count(DOUBLE_HIGH_OCTAVE)
            - modifiers.count(LOW_OCTAVE)
        )

    def _duration(self, modifiers: str) -> float:
        halvings = modifiers.count(HALVE)
        duration = BASE_DURATION
        if SIXTEENTH in modifiers:
            duration = SIXTEENTH_DURATION
        elif halvings:
            duration = 0.5 ** halvings
        duration += modifiers.count(EXTEND)
        if DOT in modifiers:
            duration *= DOT_FACTOR
        return duration

    def _render_flags(self, modifiers: str) -> RenderFlags:
        if SIXTEENTH in modifiers:
            beam_level = MAX_BEAM_LEVEL
        else:
            beam_level = min(modifiers.count(HALVE), MAX_BEAM_LEVEL)
        return RenderFlags(
            beam_level=beam_level,
            dotted=DOT in modifiers,
            extension_count=modifiers.count(EXTEND),
        )

    def _display_label(self, degree: int, accidental: int) -> str:
        label = self.key.label_for(degree)
        if accidental == 1:
            return label + SHARP
        if accidental == -1:
            return label + FLAT
        return label

    def _note(self, token: str) -> NoteEvent:
        degree = int(token[0])
        modifiers = token[1:]
        accidental = self._accidental(modifiers)
        octave_offset = self._octave(modifiers)

        return NoteEvent(
            degree=degree,
            accidental=accidental,
            octave_offset=octave_offset,
            duration=self._duration(modifiers),
            pitch_index=octave_offset * DEGREES_PER_OCTAVE + diatonic_offset(degree),
            absolute_pitch=to_absolute_pitch(self.key, degree, accidental, octave_offset),
            display_label=self._display_label(degree, accidental),
            source_text=token,
            render_flags=self._render_flags(modifiers),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(self, text: str) -> ParseResult:
        """
        Tokenize *text* and return its events with their total duration.

        Never raises for any input string: unrecognised characters are
        skipped, so nonsense input yields an empty or partial event list.
        """
        events: list[NotationToken] = []
        total_duration = 0.0
        position = 0

        for match in TOKEN_PATTERN.finditer(text):
            skipped = text[position:match.start()].strip()
            if skipped:
                logger.debug("Skipped unparsed text %r", skipped)
            position = match.end()

            if match.lastgroup == "note":
                note = self._note(match.group())
                total_duration += note.duration
                events.append(note)
            else:
                events.append(BarEvent(marker=match.group()))

        if text[position:].strip():
            logger.debug("Skipped unparsed text %r", text[position:].strip())
        return ParseResult(events=events, total_duration=total_duration)


def parse(text: str, key: Key) -> ParseResult:
    """Parse a melody block in *key*."""
    return NotationParser(key).parse(text)


def parse_chords(text: str) -> ParsedChords:
    """Split a chords block into opaque glyphs; no pitch or duration semantics."""
    return ParsedChords(chars=list(text), source=text)
