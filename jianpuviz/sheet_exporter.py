"""SheetExporter: writes a document's sections as SVG files or an HTML sheet."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Final

from jianpuviz.document import Document, parse_document
from jianpuviz.layout_engine import Drawing, layout_block
from jianpuviz.notation_models import ParsedMelody
from jianpuviz.svg_renderers import (
    JianpuHtmlRenderer,
    SheetRenderer,
    SvgRenderer,
    VerovioStaffRenderer,
)

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS: Final[set[str]] = {"svg", "html", "staff-html"}

# Catalog index → key signature fifths (inverse of scales.FIFTHS_TO_INDEX)
KEY_FIFTHS: Final[tuple[int, ...]] = (0, 1, 2, 3, 4, 5, 6, -5, -4, -3, -2, -1, 0)


def normalize_filename(text: str) -> str:
    """Strip characters unsafe in filenames and collapse whitespace to underscores."""
    if not text:
        return ""
    sanitized = re.sub(r"[^a-zA-Z0-9\s_-]", "", text.strip())
    return re.sub(r"\s+", "_", sanitized)


def section_filename(title: str, album: str, index: int) -> str:
    """
    Name of the SVG file for section *index* (0-based).

    ``Album_Title_Section_1.svg``, or ``Title_Section_1.svg`` without an album.
    """
    norm_title = normalize_filename(title) or "Untitled"
    norm_album = normalize_filename(album)
    stem = f"{norm_title}_Section_{index + 1}"
    if norm_album:
        stem = f"{norm_album}_{stem}"
    return f"{stem}.svg"


class SheetExporter:
    """
    Render a document into one of the supported sheet formats.

    Supported formats:
    - ``svg``: one SVG file per section, written into a directory.
    - ``html``: every section as inline SVG in a self-contained HTML file.
    - ``staff-html``: melody sections converted to MusicXML with music21 and
      engraved as staff notation by verovio.
    """

    def __init__(self, output_format: str = "html") -> None:
        normalized = output_format.strip().lower()
        if normalized not in SUPPORTED_FORMATS:
            supported = ", ".join(sorted(SUPPORTED_FORMATS))
            raise ValueError(f"Unsupported output format '{output_format}'. Use one of: {supported}.")
        self.output_format = normalized

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_renderer(self, document: Document) -> SheetRenderer:
        if self.output_format == "staff-html":
            return VerovioStaffRenderer()
        return JianpuHtmlRenderer(subtitle=document.album)

    def _drawings(self, document: Document) -> list[Drawing]:
        return [layout_block(parsed, document.settings) for parsed in parse_document(document)]

    def _document_to_score(self, document: Document) -> Any:
        from music21 import key, metadata, note, stream, tempo

        score = stream.Score()
        score.metadata = metadata.Metadata()
        score.metadata.title = document.title
        if document.album:
            score.metadata.movementName = document.album

        part = stream.Part()
        part.append(tempo.MetronomeMark(number=document.tempo_bpm))
        fifths = KEY_FIFTHS[document.key_index] if 0 <= document.key_index < len(KEY_FIFTHS) else 0
        part.append(key.KeySignature(fifths))

        for parsed in parse_document(document):
            if not isinstance(parsed, ParsedMelody):
                logger.debug("Chords section has no staff rendering; skipped")
                continue
            for event in parsed.notes:
                part.append(note.Note(event.absolute_pitch, quarterLength=event.duration))

        score.insert(0, part)
        return score

    def _score_to_musicxml_bytes(self, score: Any) -> bytes:
        from music21.musicxml.m21ToXml import GeneralObjectExporter

        exporter = GeneralObjectExporter(score)
        return exporter.parse()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def render(self, document: Document) -> str:
        """Render *document* in the HTML formats and return the page content."""
        if self.output_format == "svg":
            raise ValueError("The svg format writes one file per section; use export().")

        renderer = self._build_renderer(document)
        if self.output_format == "staff-html":
            return renderer.render(
                title=document.title,
                musicxml_bytes=self._score_to_musicxml_bytes(self._document_to_score(document)),
            )
        return renderer.render(title=document.title, drawings=self._drawings(document))

    def export(self, document: Document, output_path: str | Path) -> list[Path]:
        """
        Write *document* to disk and return the written paths.

        For ``svg`` *output_path* is a directory (created if missing);
        otherwise it is the destination file.

        Raises:
            ValueError: If rendering fails.
            OSError: If an output file cannot be written.
        """
        target = Path(output_path)
        if self.output_format == "svg":
            target.mkdir(parents=True, exist_ok=True)
            svg_renderer = SvgRenderer()
            written: list[Path] = []
            for index, drawing in enumerate(self._drawings(document)):
                path = target / section_filename(document.title, document.album, index)
                path.write_text(svg_renderer.render(drawing), encoding="utf-8")
                written.append(path)
            return written

        content = self.render(document)
        with open(target, "w", encoding="utf-8") as fh:
            fh.write(content)
        return [target]

