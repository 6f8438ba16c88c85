"""Live capture: turns detected pitch into Jianpu tokens appended to a block."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Protocol

import librosa
import numpy as np

from jianpuviz.errors import CaptureDeviceError
from jianpuviz.pitch import format_degree_token, frequency_to_midi, from_absolute_pitch, midi_note_name
from jianpuviz.scales import DEFAULT_KEY_INDEX, Key, key_or_default

logger = logging.getLogger(__name__)

MIN_CLARITY = 0.8
MIN_FREQUENCY = 60.0      # Hz, exclusive
MAX_FREQUENCY = 2000.0    # Hz, exclusive
STABILITY_WINDOW = 0.3    # seconds a pitch must hold before it counts
REFRACTORY_PERIOD = 0.5   # seconds before the same pitch may count again
FRAME_INTERVAL = 1 / 60   # one detection per rendered frame


@dataclass(frozen=True)
class PitchFrame:
    """One pitch detection: *time* in seconds, *frequency* in Hz, *clarity* in [0, 1]."""

    time: float
    frequency: float
    clarity: float


@dataclass
class SessionCell:
    """
    Shared state read by the capture loop on every iteration.

    The session controller writes it whenever the target block or the key
    changes, so a loop that outlives those changes never acts on stale values.
    """

    recording_block: int | None = None
    key_index: int = DEFAULT_KEY_INDEX
    detected_label: str = ""


class PitchSource(Protocol):
    """An audio input that yields pitch detections until closed."""

    def frames(self) -> Iterable[PitchFrame]: ...

    def close(self) -> None: ...


class StablePitchFilter:
    """
    Debounces raw pitch detections into committed notes.

    A detection counts only when its clarity is above ``min_clarity`` and its
    frequency lies strictly inside (``min_frequency``, ``max_frequency``).
    Anything else resets the filter. A rounded MIDI pitch must then be seen
    continuously for longer than ``stability_window`` seconds to be
    committed. Once committed, the pitch is not committed again while it is
    still sounding, nor within ``refractory_period`` seconds of the commit,
    so one sustained tone yields exactly one note.
    """

    def __init__(
        self,
        min_clarity: float = MIN_CLARITY,
        min_frequency: float = MIN_FREQUENCY,
        max_frequency: float = MAX_FREQUENCY,
        stability_window: float = STABILITY_WINDOW,
        refractory_period: float = REFRACTORY_PERIOD,
    ) -> None:
        self.min_clarity = min_clarity
        self.min_frequency = min_frequency
        self.max_frequency = max_frequency
        self.stability_window = stability_window
        self.refractory_period = refractory_period
        self.reset()

    def reset(self) -> None:
        self._candidate: int | None = None
        self._candidate_since = 0.0
        self._held: int | None = None
        self._last_committed: int | None = None
        self._refractory_until = 0.0

    def is_plausible(self, frame: PitchFrame) -> bool:
        return (
            frame.clarity > self.min_clarity
            and self.min_frequency < frame.frequency < self.max_frequency
        )

    def process(self, frame: PitchFrame) -> int | None:
        """Feed one detection; return the MIDI pitch when a note is committed."""
        if not self.is_plausible(frame):
            self._candidate = None
            self._held = None
            return None

        midi = frequency_to_midi(frame.frequency)
        if midi == self._held:
            return None
        self._held = None

        if midi == self._last_committed and frame.time < self._refractory_until:
            self._candidate = None
            return None

        if midi != self._candidate:
            self._candidate = midi
            self._candidate_since = frame.time
            return None

        if frame.time - self._candidate_since > self.stability_window:
            self._candidate = None
            self._held = midi
            self._last_committed = midi
            self._refractory_until = frame.time + self.refractory_period
            return midi
        return None


def capture_token(key: Key, midi: int) -> str | None:
    """
    Spell a captured pitch as a notation token, or ``None`` when it is chromatic.

    Live capture drops chromatic pitches instead of approximating them: an
    uncertain sung note is better ignored than auto-corrected.
    """
    fragment = from_absolute_pitch(key, midi)
    if fragment is None:
        return None
    return format_degree_token(fragment.degree, fragment.octave_offset)


# ── Pitch detection (librosa) ───────────────────────────────────────────────

class PitchDetector:
    """
    Estimates fundamental frequency and clarity with librosa's pYIN.

    ``clarity`` is pYIN's voicing probability; unvoiced frames report a
    frequency of 0.0 so the filter rejects them.
    """

    def __init__(
        self,
        sample_rate: int = 22050,
        frame_length: int = 2048,
        hop_length: int = 512,
        fmin: float = MIN_FREQUENCY,
        fmax: float = MAX_FREQUENCY,
    ) -> None:
        self.sample_rate = sample_rate
        self.frame_length = frame_length
        self.hop_length = hop_length
        self.fmin = fmin
        self.fmax = fmax

    def _pyin(self, y: np.ndarray, center: bool) -> tuple[np.ndarray, np.ndarray]:
        f0, _voiced_flag, voiced_prob = librosa.pyin(
            y,
            fmin=self.fmin,
            fmax=self.fmax,
            sr=self.sample_rate,
            frame_length=self.frame_length,
            hop_length=self.hop_length,
            center=center,
        )
        return np.nan_to_num(f0, nan=0.0), voiced_prob

    def find_pitch(self, buffer: np.ndarray) -> tuple[float, float]:
        """
        Detect the pitch of one input buffer.

        Returns:
            (frequency_hz, clarity); (0.0, 0.0) for buffers shorter than a frame.
        """
        if len(buffer) < self.frame_length:
            return 0.0, 0.0
        f0, voiced_prob = self._pyin(np.asarray(buffer, dtype=np.float32), center=False)
        voiced = f0 > 0
        if not voiced.any():
            return 0.0, float(np.max(voiced_prob, initial=0.0))
        return float(np.median(f0[voiced])), float(np.mean(voiced_prob[voiced]))

    def track(self, y: np.ndarray) -> list[PitchFrame]:
        """Detect pitch across a whole signal, one frame per hop."""
        f0, voiced_prob = self._pyin(y, center=True)
        times = librosa.times_like(f0, sr=self.sample_rate, hop_length=self.hop_length)
        return [
            PitchFrame(time=float(t), frequency=float(hz), clarity=float(p))
            for t, hz, p in zip(times, f0, voiced_prob)
        ]


class FilePitchSource:
    """Replays a recorded audio file as a stream of pitch detections."""

    def __init__(self, audio_path: str | Path, detector: PitchDetector | None = None) -> None:
        self.audio_path = Path(audio_path)
        self.detector = detector or PitchDetector()
        self._closed = False

    def frames(self) -> Iterator[PitchFrame]:
        """
        Raises:
            CaptureDeviceError: If the file cannot be decoded.
        """
        try:
            y, _sr = librosa.load(self.audio_path, sr=self.detector.sample_rate, mono=True)
        except Exception as exc:
            raise CaptureDeviceError(f"Could not read audio from '{self.audio_path}': {exc}") from exc

        for frame in self.detector.track(y):
            if self._closed:
                return
            yield frame

    def close(self) -> None:
        self._closed = True


class BufferPitchSource:
    """
    Runs the detector over raw input buffers, one buffer per rendered frame.

    *buffers* is whatever the audio device collaborator yields; it is closed
    with the source when it has a ``close()`` method.
    """

    def __init__(
        self,
        buffers: Iterable[np.ndarray],
        detector: PitchDetector | None = None,
        frame_interval: float = FRAME_INTERVAL,
    ) -> None:
        self.buffers = buffers
        self.detector = detector or PitchDetector()
        self.frame_interval = frame_interval
        self._closed = False

    def frames(self) -> Iterator[PitchFrame]:
        for index, buffer in enumerate(self.buffers):
            if self._closed:
                return
            frequency, clarity = self.detector.find_pitch(buffer)
            yield PitchFrame(time=index * self.frame_interval, frequency=frequency, clarity=clarity)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self.buffers, "close", None)
        if callable(close):
            close()


# ── Capture loop ────────────────────────────────────────────────────────────

class CaptureSession:
    """
    Polls a pitch source and appends committed notes to the target block.

    The loop re-checks its liveness flag before every iteration and reads the
    target block and key from the shared :class:`SessionCell`, never from
    values captured when it started. ``stop()`` is idempotent.
    """

    def __init__(
        self,
        source: PitchSource,
        cell: SessionCell,
        on_commit: Callable[[int, str], None],
        pitch_filter: StablePitchFilter | None = None,
    ) -> None:
        self.source = source
        self.cell = cell
        self.on_commit = on_commit
        self.pitch_filter = pitch_filter or StablePitchFilter()
        self.is_active = False
        self.committed: list[str] = []

    def start(self) -> None:
        self.is_active = True

    def stop(self) -> None:
        if not self.is_active:
            return
        self.is_active = False
        self.source.close()

    def run(self) -> list[str]:
        """Consume the source until it ends or the session is stopped; return the committed tokens."""
        self.start()
        try:
            frames = iter(self.source.frames())
            while self.is_active:
                target = self.cell.recording_block
                if target is None:
                    break
                frame = next(frames, None)
                if frame is None:
                    break

                if self.pitch_filter.is_plausible(frame):
                    self.cell.detected_label = midi_note_name(frequency_to_midi(frame.frequency))

                midi = self.pitch_filter.process(frame)
                if midi is None:
                    continue

                label = midi_note_name(midi)
                token = capture_token(key_or_default(self.cell.key_index), midi)
                if token is None:
                    logger.debug("Ignored chromatic pitch %s", label)
                    continue

                logger.info("Captured %s as %s into block %d", label, token, target)
                self.committed.append(token)
                self.on_commit(target, token)
        finally:
            self.stop()
        return self.committed
