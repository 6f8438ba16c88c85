"""SessionController: application state, derived views and the active audio session."""

from __future__ import annotations

import logging

from jianpuviz.document import BlockType, Document, LayoutSettings, parse_document
from jianpuviz.errors import CaptureDeviceError
from jianpuviz.layout_engine import Drawing, layout_block
from jianpuviz.live_capture import CaptureSession, PitchSource, SessionCell
from jianpuviz.notation_models import ParsedBlock
from jianpuviz.playback import PlaybackSession, ToneScheduler, reference_cadence, schedule_document
from jianpuviz.scales import key_at, key_or_default
from jianpuviz.score_importer import ImportFailure, ImportResult, SourceScore, import_score

logger = logging.getLogger(__name__)


class SessionController:
    """
    Holds the document being edited and at most one audio session.

    Every edit replaces the document and regenerates ``parsed_blocks`` from
    scratch; derived data is never patched in place. The shared ``cell`` is
    rewritten on each edit that the capture loop depends on.

    Starting a capture or a playback first tears down whichever session is
    running. Stopping a session that is not running does nothing.
    """

    def __init__(self, document: Document | None = None, scheduler: ToneScheduler | None = None) -> None:
        self.scheduler = scheduler
        self.cell = SessionCell()
        self.status = ""
        self.capture_error: str | None = None
        self._capture: CaptureSession | None = None
        self._playback: PlaybackSession | None = None
        self._cadence: PlaybackSession | None = None
        self.document = Document()
        self.parsed_blocks: list[ParsedBlock] = []
        self._commit(document or Document())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _commit(self, document: Document) -> None:
        self.document = document
        self.cell.key_index = document.key_index
        self.parsed_blocks = parse_document(document)

    def _append_captured(self, index: int, token: str) -> None:
        if index >= len(self.document.blocks):
            logger.warning("Capture target block %d no longer exists; dropped %s", index, token)
            return
        self._commit(self.document.append_to_block(index, token))

    # ------------------------------------------------------------------
    # Document edits
    # ------------------------------------------------------------------

    def load_document(self, document: Document) -> None:
        self.stop_capture()
        self._commit(document)

    def update_block(self, index: int, content: str) -> None:
        self._commit(self.document.update_block(index, content))

    def add_block(self, block_type: BlockType = "melody") -> None:
        self._commit(self.document.add_block(block_type))

    def remove_block(self, index: int) -> None:
        if self.cell.recording_block is not None:
            self.stop_capture()
        self._commit(self.document.remove_block(index))

    def move_block(self, index: int, new_index: int) -> None:
        self._commit(self.document.move_block(index, new_index))

    def set_key(self, key_index: int) -> None:
        """
        Raises:
            OutOfRangeKey: If *key_index* is not in the catalog.
        """
        key_at(key_index)
        self._commit(self.document.set_key(key_index))

    def set_settings(self, settings: LayoutSettings) -> None:
        self._commit(self.document.set_settings(settings))

    def drawings(self) -> list[Drawing]:
        return [layout_block(parsed, self.document.settings) for parsed in self.parsed_blocks]

    def import_score(self, source: SourceScore, force_key: bool = False) -> ImportResult | ImportFailure:
        """Append an imported melody as a new block and switch to its key."""
        forced = self.document.key_index if force_key else None
        result = import_score(source, forced_key_index=forced)
        if isinstance(result, ImportFailure):
            self.status = f"Failed to import score: {result.reason}"
            return result
        document = self.document.add_block("melody", result.text).set_key(result.detected_key_index)
        self._commit(document)
        return result

    # ------------------------------------------------------------------
    # Live capture
    # ------------------------------------------------------------------

    @property
    def recording_block(self) -> int | None:
        return self.cell.recording_block

    def start_capture(
        self,
        index: int,
        source: PitchSource,
        play_reference: bool = False,
    ) -> CaptureSession | None:
        """
        Begin recording into block *index*.

        Asking again for the block already being recorded toggles recording
        off and returns ``None``.

        Raises:
            ValueError: If the block is a chords block.
        """
        if self.cell.recording_block is not None:
            was_same = self.cell.recording_block == index
            self.stop_capture()
            if was_same:
                return None

        if self.document.blocks[index].type != "melody":
            raise ValueError("Only melody sections can be recorded.")

        self.stop_playback()
        self._stop_cadence()
        if play_reference and self.scheduler is not None:
            self._cadence = PlaybackSession(self.scheduler, reference_cadence(key_or_default(self.document.key_index)))
            self._cadence.start()

        self.cell.recording_block = index
        self.cell.detected_label = ""
        self.capture_error = None
        self._capture = CaptureSession(source, self.cell, self._append_captured)
        self.status = "Listening..."
        return self._capture

    def run_capture(self) -> list[str]:
        """
        Drive the active capture session until its source ends or it is stopped.

        Device failures are reported through ``status`` and roll the
        recording state back instead of propagating.
        """
        if self._capture is None:
            return []
        session = self._capture
        try:
            return session.run()
        except CaptureDeviceError as exc:
            logger.error("Capture failed: %s", exc)
            self.capture_error = str(exc)
            self.status = f"Microphone error: {exc}"
            return list(session.committed)
        finally:
            if self._capture is session:
                self._clear_capture()

    def _clear_capture(self) -> None:
        self.cell.recording_block = None
        self.cell.detected_label = ""
        self._capture = None

    def _stop_cadence(self) -> None:
        cadence = self._cadence
        self._cadence = None
        if cadence is not None:
            cadence.stop()

    def stop_capture(self) -> None:
        """Stop recording and silence the reference cadence if it is still sounding."""
        session = self._capture
        self._clear_capture()
        self._stop_cadence()
        if session is not None:
            session.stop()

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        return self._playback is not None and self._playback.is_active

    def start_playback(self) -> PlaybackSession:
        """
        Schedule the whole document at its tempo.

        Raises:
            ValueError: If no tone scheduler was configured.
        """
        if self.scheduler is None:
            raise ValueError("No tone scheduler configured.")
        self.stop_capture()
        self.stop_playback()

        tones = schedule_document(self.parsed_blocks, self.document.tempo_bpm)
        self._playback = PlaybackSession(self.scheduler, tones)
        self._playback.start()
        return self._playback

    def stop_playback(self) -> None:
        session = self._playback
        self._playback = None
        if session is not None:
            session.stop()
