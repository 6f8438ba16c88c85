"""Playback scheduling: turns parsed blocks into timed tones for a synthesizer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final, Protocol

from jianpuviz.notation_models import ParsedBlock, ParsedMelody
from jianpuviz.pitch import midi_to_frequency, to_absolute_pitch
from jianpuviz.scales import Key

logger = logging.getLogger(__name__)

TEMPO_CHOICES: Final[tuple[int, ...]] = tuple(range(60, 145, 5))
NOTE_GATE = 0.9           # fraction of a note's length that sounds
RELEASE_TAIL = 0.5        # seconds allowed for the last release

# I – IV – I cadence played before live capture: (degrees, start, length) in seconds
REFERENCE_CADENCE: Final[tuple[tuple[tuple[int, ...], float, float], ...]] = (
    ((1, 3, 5), 0.0, 0.8),
    ((4, 6, 8), 1.0, 0.8),
    ((1, 3, 5), 2.0, 1.5),
)


@dataclass(frozen=True)
class ScheduledTone:
    """A tone to sound *start* seconds after playback begins."""

    midi: int
    start: float
    duration: float
    velocity: int = 80

    @property
    def frequency(self) -> float:
        return midi_to_frequency(self.midi)


class ToneScheduler(Protocol):
    """Synthesizer transport that plays tones at scheduled times."""

    def schedule(self, tone: ScheduledTone) -> None: ...

    def cancel_all(self) -> None: ...


def seconds_per_beat(bpm: float) -> float:
    return 60.0 / bpm


def schedule_document(parsed_blocks: list[ParsedBlock], bpm: float) -> list[ScheduledTone]:
    """
    Lay the melody blocks end to end on a timeline.

    Each block starts when the previous one's total duration has elapsed;
    chord blocks are silent and take no time.
    """
    beat = seconds_per_beat(bpm)
    tones: list[ScheduledTone] = []
    block_start = 0.0

    for parsed in parsed_blocks:
        if not isinstance(parsed, ParsedMelody):
            continue
        offset = 0.0
        for note in parsed.notes:
            length = note.duration * beat
            tones.append(
                ScheduledTone(
                    midi=note.absolute_pitch,
                    start=block_start + offset,
                    duration=length * NOTE_GATE,
                )
            )
            offset += length
        block_start += parsed.total_duration * beat

    return tones


def playback_length(tones: list[ScheduledTone]) -> float:
    """Seconds until the last tone has finished releasing."""
    if not tones:
        return 0.0
    return max(tone.start + tone.duration for tone in tones) + RELEASE_TAIL


def _degree_pitch(key: Key, degree: int) -> int:
    octave, step = divmod(degree - 1, 7)
    return to_absolute_pitch(key, step + 1, 0, octave)


def reference_cadence(key: Key) -> list[ScheduledTone]:
    """The I – IV – I chords of *key*, used to tune the singer in before capture."""
    return [
        ScheduledTone(midi=_degree_pitch(key, degree), start=start, duration=length)
        for degrees, start, length in REFERENCE_CADENCE
        for degree in degrees
    ]


class PlaybackSession:
    """
    One run of the scheduler over a list of tones.

    ``stop()`` cancels everything still scheduled; calling it again, or on a
    session that never started, does nothing.
    """

    def __init__(self, scheduler: ToneScheduler, tones: list[ScheduledTone]) -> None:
        self.scheduler = scheduler
        self.tones = tones
        self.is_active = False

    def start(self) -> None:
        if self.is_active:
            return
        self.is_active = True
        for tone in self.tones:
            self.scheduler.schedule(tone)
        logger.info("Scheduled %d tone(s) over %.1f s", len(self.tones), playback_length(self.tones))

    def stop(self) -> None:
        if not self.is_active:
            return
        self.is_active = False
        self.scheduler.cancel_all()
