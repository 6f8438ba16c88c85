"""MidiExporter: writes scheduled playback tones to a Standard MIDI File."""

from midiutil import MIDIFile

from jianpuviz.playback import ScheduledTone, seconds_per_beat

# In midiutil Format 1 MIDI, track 0 is the conductor/tempo track.
# Note data written to track 0 is ignored by most players and notation apps.
TRACK_CONDUCTOR = 0  # Tempo and time signature only, never receives notes
TRACK_MELODY = 1

CHANNEL_MELODY = 0
PROGRAM_PIANO = 0    # General MIDI: Acoustic Grand Piano


class MidiExporter:
    """
    Writes a melody timeline as a two-track MIDI file.

    Track layout (Format 1)
    -----------------------
    Track 0: conductor track (tempo and 4/4 time signature, no notes)

    Track 1: "Melody": every scheduled tone, in order.

    Timing
    ------
    Tone start times and durations are in seconds (see
    ``playback.schedule_document``) and are converted back to beats with
    ``beats = seconds / seconds_per_beat(tempo)``, so the file plays at the
    document's tempo.
    """

    DEFAULT_TEMPO = 100
    DEFAULT_VELOCITY = 80

    def __init__(self, tempo: int = DEFAULT_TEMPO, velocity: int = DEFAULT_VELOCITY) -> None:
        """
        Args:
            tempo:    Playback tempo in beats per minute.
            velocity: MIDI note-on velocity.
        """
        self.tempo = tempo
        self.velocity = velocity

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _seconds_to_beats(self, seconds: float) -> float:
        return seconds / seconds_per_beat(self.tempo)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, tones: list[ScheduledTone], track_name: str = "Melody") -> MIDIFile:
        midi = MIDIFile(numTracks=2, removeDuplicates=False, deinterleave=False)

        midi.addTempo(TRACK_CONDUCTOR, 0, self.tempo)
        midi.addTimeSignature(TRACK_CONDUCTOR, 0, 4, 2, 24)

        midi.addTrackName(TRACK_MELODY, 0, track_name)
        midi.addProgramChange(TRACK_MELODY, CHANNEL_MELODY, 0, PROGRAM_PIANO)

        for tone in tones:
            midi.addNote(
                track=TRACK_MELODY,
                channel=CHANNEL_MELODY,
                pitch=max(0, min(127, tone.midi)),
                time=self._seconds_to_beats(tone.start),
                duration=self._seconds_to_beats(tone.duration),
                volume=self.velocity,
            )
        return midi

    def export(self, tones: list[ScheduledTone], output_path: str, track_name: str = "Melody") -> None:
        """
        Render tones to a Standard MIDI File.

        Raises:
            OSError: If the output file cannot be opened for writing.
        """
        midi = self.build(tones, track_name=track_name)
        with open(output_path, "wb") as f:
            midi.writeFile(f)
