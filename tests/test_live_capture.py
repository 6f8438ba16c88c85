"""Unit tests for live capture: debouncing, spelling and the capture loop."""

import numpy as np
import pytest

from jianpuviz.errors import CaptureDeviceError
from jianpuviz.live_capture import (
    BufferPitchSource,
    CaptureSession,
    FilePitchSource,
    PitchDetector,
    PitchFrame,
    SessionCell,
    StablePitchFilter,
    capture_token,
)
from jianpuviz.pitch import midi_to_frequency
from jianpuviz.scales import key_at

STEP = 1 / 60


def _tone(midi: int, start: float, seconds: float, clarity: float = 0.95) -> list[PitchFrame]:
    count = int(round(seconds / STEP))
    return [PitchFrame(time=start + i * STEP, frequency=midi_to_frequency(midi), clarity=clarity) for i in range(count)]


def _silence(start: float, seconds: float) -> list[PitchFrame]:
    count = int(round(seconds / STEP))
    return [PitchFrame(time=start + i * STEP, frequency=0.0, clarity=0.0) for i in range(count)]


def _commits(frames: list[PitchFrame]) -> list[int]:
    pitch_filter = StablePitchFilter()
    return [midi for midi in map(pitch_filter.process, frames) if midi is not None]


class _FakeSource:
    def __init__(self, frames) -> None:
        self._frames = frames
        self.closed = 0

    def frames(self):
        return iter(self._frames)

    def close(self) -> None:
        self.closed += 1


def test_sustained_tone_commits_exactly_once() -> None:
    assert _commits(_tone(60, 0.0, 2.0)) == [60]


def test_short_tone_is_ignored() -> None:
    assert _commits(_tone(60, 0.0, 0.25)) == []


def test_unclear_detections_are_ignored() -> None:
    assert _commits(_tone(60, 0.0, 1.0, clarity=0.8)) == []


@pytest.mark.parametrize("frequency", [50.0, 60.0, 2000.0, 2500.0])
def test_out_of_range_frequencies_are_ignored(frequency: float) -> None:
    frames = [PitchFrame(time=i * STEP, frequency=frequency, clarity=0.99) for i in range(60)]
    assert _commits(frames) == []


def test_changing_pitch_commits_each_note() -> None:
    frames = _tone(60, 0.0, 0.5) + _tone(62, 0.5, 0.5) + _tone(64, 1.0, 0.5)
    assert _commits(frames) == [60, 62, 64]


def test_repeated_note_after_refractory_period_commits_again() -> None:
    frames = _tone(60, 0.0, 0.5) + _silence(0.5, 0.1) + _tone(60, 0.6, 0.9)
    assert _commits(frames) == [60, 60]


def test_repeated_note_inside_refractory_period_is_ignored() -> None:
    frames = _tone(60, 0.0, 0.4) + _silence(0.4, 0.05) + _tone(60, 0.45, 0.3)
    assert _commits(frames) == [60]


def test_interruption_before_commit_restarts_stability_window() -> None:
    frames = _tone(60, 0.0, 0.2) + _silence(0.2, 0.05) + _tone(60, 0.25, 0.2)
    assert _commits(frames) == []


def test_capture_token_spells_diatonic_pitches() -> None:
    assert capture_token(key_at(0), 62) == "2"
    assert capture_token(key_at(0), 48) == "1,"
    assert capture_token(key_at(0), 79) == "5'"
    assert capture_token(key_at(1), 66) == "7,"


def test_capture_token_drops_chromatic_pitches() -> None:
    assert capture_token(key_at(0), 61) is None


def test_capture_session_appends_committed_tokens() -> None:
    cell = SessionCell(recording_block=2)
    committed: list[tuple[int, str]] = []
    source = _FakeSource(_tone(60, 0.0, 0.5) + _tone(67, 0.5, 0.5))

    session = CaptureSession(source, cell, lambda index, token: committed.append((index, token)))
    tokens = session.run()

    assert tokens == ["1", "5"]
    assert committed == [(2, "1"), (2, "5")]
    assert cell.detected_label == "G4"
    assert source.closed == 1
    assert not session.is_active


def test_capture_session_stop_is_idempotent() -> None:
    source = _FakeSource([])
    session = CaptureSession(source, SessionCell(recording_block=0), lambda index, token: None)
    session.run()
    session.stop()
    session.stop()
    assert source.closed == 1


def test_capture_session_without_target_does_nothing() -> None:
    committed: list[str] = []
    session = CaptureSession(_FakeSource(_tone(60, 0.0, 1.0)), SessionCell(), lambda i, t: committed.append(t))
    assert session.run() == []
    assert committed == []


def test_capture_session_reads_key_from_cell_on_every_note() -> None:
    cell = SessionCell(recording_block=0, key_index=0)

    def on_commit(index: int, token: str) -> None:
        cell.key_index = 1

    session = CaptureSession(_FakeSource(_tone(60, 0.0, 0.5) + _tone(67, 0.5, 0.5)), cell, on_commit)
    assert session.run() == ["1", "1"]


def test_capture_session_stops_when_asked_from_callback() -> None:
    cell = SessionCell(recording_block=0)
    sessions: list[CaptureSession] = []

    def on_commit(index: int, token: str) -> None:
        sessions[0].stop()

    session = CaptureSession(_FakeSource(_tone(60, 0.0, 0.5) + _tone(62, 0.5, 0.5)), cell, on_commit)
    sessions.append(session)
    assert session.run() == ["1"]


def test_capture_session_skips_chromatic_notes() -> None:
    cell = SessionCell(recording_block=0)
    session = CaptureSession(_FakeSource(_tone(61, 0.0, 0.5)), cell, lambda i, t: None)
    assert session.run() == []
    assert cell.detected_label == "C#4"


def test_detected_label_follows_pitches_that_never_settle() -> None:
    cell = SessionCell(recording_block=0)
    session = CaptureSession(_FakeSource(_tone(64, 0.0, 0.1)), cell, lambda i, t: None)
    assert session.run() == []
    assert cell.detected_label == "E4"


def test_buffer_source_runs_detector_per_buffer() -> None:
    class _FixedDetector:
        def find_pitch(self, buffer):
            return 440.0, 0.9

    def buffers():
        for _ in range(3):
            yield np.zeros(16)

    source = BufferPitchSource(buffers(), detector=_FixedDetector(), frame_interval=0.5)  # type: ignore[arg-type]
    frames = list(source.frames())
    assert [frame.time for frame in frames] == [0.0, 0.5, 1.0]
    assert all(frame.frequency == 440.0 for frame in frames)
    source.close()
    source.close()


def test_find_pitch_needs_a_full_frame() -> None:
    assert PitchDetector(frame_length=2048).find_pitch(np.zeros(100)) == (0.0, 0.0)


def test_file_source_reports_unreadable_audio(tmp_path) -> None:
    source = FilePitchSource(tmp_path / "missing.wav")
    with pytest.raises(CaptureDeviceError):
        list(source.frames())


# ---------------------------------------------------------------------------
# Integration tests — run librosa's pYIN on a synthetic signal.
# ---------------------------------------------------------------------------

@pytest.mark.integration
def test_detector_tracks_a_sine_wave() -> None:
    detector = PitchDetector()
    t = np.arange(detector.sample_rate) / detector.sample_rate
    y = 0.5 * np.sin(2 * np.pi * 440.0 * t).astype(np.float32)
    voiced = [frame.frequency for frame in detector.track(y) if frame.frequency > 0]
    assert voiced
    assert float(np.median(voiced)) == pytest.approx(440.0, rel=0.02)
