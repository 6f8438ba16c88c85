"""jianpuviz CLI entry point."""

from __future__ import annotations

import re
import sys
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

import click

from jianpuviz import __version__
from jianpuviz.document import (
    DEFAULT_TEMPO,
    HORIZONTAL_SPACING_RANGE,
    VERTICAL_SCALE_RANGE,
    Block,
    Document,
    LayoutSettings,
    decode_envelope,
    encode_envelope,
    parse_document,
)
from jianpuviz.errors import JianpuError
from jianpuviz.logger_config import configure_logging
from jianpuviz.midi_exporter import MidiExporter
from jianpuviz.notation_models import NoteEvent
from jianpuviz.notation_parser import parse
from jianpuviz.pitch import midi_note_name
from jianpuviz.playback import schedule_document
from jianpuviz.scales import KEYS, find_key, key_at, key_or_default
from jianpuviz.score_importer import ImportFailure, import_score, read_score_file
from jianpuviz.sheet_exporter import SUPPORTED_FORMATS, SheetExporter

if TYPE_CHECKING:
    from jianpuviz.library import Library

MIN_TEMPO, MAX_TEMPO = 60, 140
ENVELOPE_SUFFIX = ".json"


def _fail(message: str) -> None:
    click.echo(f"  ERROR: {message}", err=True)
    sys.exit(1)


def _resolve_key(ctx: click.Context, param: click.Parameter, value: str | None) -> int | None:
    """Click callback turning a key name or index into a catalog index."""
    if value is None:
        return None
    try:
        return find_key(value)
    except (ValueError, IndexError) as exc:
        raise click.BadParameter(str(exc)) from exc


def _paragraphs(text: str) -> list[str]:
    return [chunk.strip() for chunk in re.split(r"\n\s*\n", text.strip()) if chunk.strip()]


def _read_document(path: str | Path, **fields: object) -> Document:
    """
    Load a document from a ``.json`` envelope or a plain text file.

    In a text file every blank-line separated paragraph is one melody block.
    *fields* override the document's title, album, key or tempo when not None.
    """
    source = Path(path)
    raw = source.read_text(encoding="utf-8")
    if source.suffix.lower() == ENVELOPE_SUFFIX:
        decoded = decode_envelope(raw)
        document = Document(blocks=decoded.blocks, settings=decoded.settings)
        if decoded.key_index is not None:
            document = document.set_key(decoded.key_index)
        if decoded.tempo_bpm is not None:
            document = replace(document, tempo_bpm=decoded.tempo_bpm)
    else:
        blocks = tuple(Block(type="melody", content=chunk) for chunk in _paragraphs(raw))
        document = Document(blocks=blocks or (Block(),))

    document = replace(document, title=source.stem.replace("_", " "))
    overrides = {name: value for name, value in fields.items() if value is not None}
    return replace(document, **overrides)


def _write_document(document: Document, path: str | Path) -> None:
    target = Path(path)
    if target.suffix.lower() == ENVELOPE_SUFFIX:
        content = encode_envelope(document.blocks, document.settings, document.key_index, document.tempo_bpm)
    else:
        content = "\n\n".join(block.content for block in document.blocks) + "\n"
    target.write_text(content, encoding="utf-8")


# ── CLI group ──────────────────────────────────────────────────────────────────

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="jianpuviz")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
def main(verbose: bool) -> None:
    """jianpuviz — numbered musical notation (Jianpu) toolkit."""
    configure_logging(verbose)


# ── parse subcommand ───────────────────────────────────────────────────────────

@main.command("parse")
@click.argument("text")
@click.option(
    "--key",
    "key_index",
    default="0",
    show_default=True,
    callback=_resolve_key,
    help="Key as a catalog index, a name (\"G Major\") or a root (\"Bb\").",
)
def parse_command(text: str, key_index: int) -> None:
    """
    Parse a line of Jianpu notation and list its events.

    \b
    Examples:
      jianpuviz parse "1 2 3 | 5_ 6_ 5-"
      jianpuviz parse "1' 7 6,," --key Bb
    """
    key = key_at(key_index)
    result = parse(text, key)

    click.echo(f"Key: {key.name}")
    for event in result.events:
        if isinstance(event, NoteEvent):
            click.echo(
                f"  {event.source_text:<8} {event.display_label:<4} "
                f"{midi_note_name(event.absolute_pitch):<4} {event.duration:g} beat(s)"
            )
        else:
            click.echo(f"  {event.marker}")
    click.echo(f"{len(result.notes)} note(s), {result.total_duration:g} beat(s)")


# ── render subcommand ──────────────────────────────────────────────────────────

@main.command()
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option(
    "--output",
    "-o",
    default=None,
    metavar="PATH",
    help="Destination file, or directory for --format svg. Defaults beside INPUT.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(sorted(SUPPORTED_FORMATS), case_sensitive=False),
    default="html",
    show_default=True,
    help="svg: one file per section; html: Jianpu sheet; staff-html: staff notation via verovio.",
)
@click.option("--key", "key_index", default=None, callback=_resolve_key, help="Key of the melody.")
@click.option("--title", default=None, metavar="TEXT", help="Title. Defaults to the INPUT file stem.")
@click.option("--album", default=None, metavar="TEXT", help="Album shown under the title.")
@click.option(
    "--spacing",
    type=click.IntRange(*HORIZONTAL_SPACING_RANGE),
    default=None,
    help="Horizontal pixels per beat. Defaults to the document setting.",
)
@click.option(
    "--scale",
    type=click.IntRange(*VERTICAL_SCALE_RANGE),
    default=None,
    help="Vertical pixels per scale degree. Defaults to the document setting.",
)
def render(
    input_file: str,
    output: str | None,
    output_format: str,
    key_index: int | None,
    title: str | None,
    album: str | None,
    spacing: int | None,
    scale: int | None,
) -> None:
    """
    Render a melody document as SVG sections or a printable HTML sheet.

    INPUT is a .json document or a text file with one section per paragraph.

    \b
    Examples:
      jianpuviz render song.txt --key G
      jianpuviz render song.json --format svg -o sections/
      jianpuviz render song.json --format staff-html -o score.html
    """
    normalized_format = output_format.lower()
    input_path = Path(input_file)
    if output is None:
        output = str(input_path.parent if normalized_format == "svg" else input_path.with_suffix(".html"))

    try:
        document = _read_document(input_path, title=title, album=album, key_index=key_index)
        if spacing is not None or scale is not None:
            document = document.set_settings(LayoutSettings(
                horizontal_spacing=document.settings.horizontal_spacing if spacing is None else spacing,
                vertical_scale=document.settings.vertical_scale if scale is None else scale,
            ))
        written = SheetExporter(output_format=normalized_format).export(document, output)
    except (JianpuError, OSError, ValueError) as exc:
        _fail(f"Could not render '{input_file}' — {exc}")
        return

    for path in written:
        click.echo(f"Wrote {path}")


# ── import subcommand ──────────────────────────────────────────────────────────

@main.command("import")
@click.argument("score_file", metavar="SCORE", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option(
    "--force-key",
    "forced_key_index",
    default=None,
    callback=_resolve_key,
    help="Spell the melody in this key instead of the score's key signature.",
)
@click.option(
    "--output",
    "-o",
    default=None,
    metavar="PATH",
    help="Write the melody to a .json document or text file instead of stdout.",
)
def import_command(score_file: str, forced_key_index: int | None, output: str | None) -> None:
    """
    Convert a MusicXML or MIDI file into Jianpu notation.

    \b
    Examples:
      jianpuviz import tune.musicxml
      jianpuviz import tune.mid --force-key D -o tune.json
    """
    try:
        source = read_score_file(score_file)
    except JianpuError as exc:
        _fail(str(exc))
        return

    result = import_score(source, forced_key_index=forced_key_index)
    if isinstance(result, ImportFailure):
        _fail(f"Failed to import score: {result.reason}")
        return

    click.echo(f"Key: {KEYS[result.detected_key_index].name}", err=output is None)
    if output is None:
        click.echo(result.text)
        return

    document = Document(
        title=Path(score_file).stem.replace("_", " "),
        key_index=result.detected_key_index,
        blocks=(Block(type="melody", content=result.text),),
    )
    try:
        _write_document(document, output)
    except OSError as exc:
        _fail(f"Could not write output file — {exc}")
        return
    click.echo(f"Wrote {output}")


# ── midi subcommand ────────────────────────────────────────────────────────────

@main.command()
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option("--output", "-o", required=True, metavar="PATH", help="Destination MIDI file path.")
@click.option("--key", "key_index", default=None, callback=_resolve_key, help="Key of the melody.")
@click.option(
    "--tempo",
    type=click.IntRange(MIN_TEMPO, MAX_TEMPO),
    default=None,
    help=f"Playback tempo in BPM. Defaults to the document tempo, or {DEFAULT_TEMPO}.",
)
def midi(input_file: str, output: str, key_index: int | None, tempo: int | None) -> None:
    """
    Write the playback of a melody document as a MIDI file.

    \b
    Examples:
      jianpuviz midi song.txt -o song.mid --key F --tempo 80
    """
    try:
        document = _read_document(input_file, key_index=key_index, tempo_bpm=tempo)
        tones = schedule_document(parse_document(document), document.tempo_bpm)
        MidiExporter(tempo=document.tempo_bpm).export(tones, output, track_name=document.title)
    except (JianpuError, OSError) as exc:
        _fail(f"Could not write MIDI file — {exc}")
        return

    click.echo(f"Wrote {len(tones)} note(s) to {output}")


# ── transcribe subcommand ──────────────────────────────────────────────────────

@main.command()
@click.argument("audio_file", metavar="AUDIO", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option("--key", "key_index", default=None, callback=_resolve_key, help="Key to spell captured notes in.")
@click.option(
    "--append-to",
    default=None,
    metavar="FILE",
    help="Append the captured notes to the last melody section of this document.",
)
def transcribe(audio_file: str, key_index: int | None, append_to: str | None) -> None:
    """
    Transcribe a sung or played recording into Jianpu notes.

    Each steady pitch becomes one note; chromatic pitches are dropped.

    \b
    Examples:
      jianpuviz transcribe take1.wav --key G
      jianpuviz transcribe take2.wav --append-to song.json
    """
    from jianpuviz.live_capture import FilePitchSource
    from jianpuviz.session import SessionController

    try:
        document = _read_document(append_to) if append_to and Path(append_to).exists() else Document()
    except OSError as exc:
        _fail(str(exc))
        return

    controller = SessionController(document)
    if key_index is not None:
        controller.set_key(key_index)

    melody_indices = [i for i, block in enumerate(controller.document.blocks) if block.type == "melody"]
    if not melody_indices:
        controller.add_block("melody")
        melody_indices = [len(controller.document.blocks) - 1]

    controller.start_capture(melody_indices[-1], FilePitchSource(audio_file))
    tokens = controller.run_capture()
    if controller.capture_error is not None:
        _fail(controller.capture_error)
        return

    click.echo(" ".join(tokens) if tokens else "(no stable notes detected)")
    if append_to:
        try:
            _write_document(controller.document, append_to)
        except OSError as exc:
            _fail(f"Could not write '{append_to}' — {exc}")
            return
        click.echo(f"Appended {len(tokens)} note(s) to {append_to}")


# ── library subcommands ────────────────────────────────────────────────────────

@main.group()
@click.option(
    "--db",
    envvar="JIANPUVIZ_DB",
    default=None,
    metavar="PATH",
    help="SQLite library file. Defaults to the application directory.",
)
@click.pass_context
def library(ctx: click.Context, db: str | None) -> None:
    """Save, load, list and delete melodies in the local library."""
    from jianpuviz.library import Library, MelodyStore, default_db_path, load_user_id

    db_path = Path(db) if db else default_db_path()
    try:
        store = MelodyStore(db_path)
        owner_id = load_user_id(db_path.parent)
    except (JianpuError, OSError) as exc:
        _fail(str(exc))
        return
    ctx.obj = Library(store, owner_id)
    ctx.call_on_close(store.close)


@library.command("list")
@click.pass_obj
def library_list(lib: Library) -> None:
    """List the most recently saved melodies."""
    try:
        records = lib.list_recent()
    except JianpuError as exc:
        _fail(str(exc))
        return
    if not records:
        click.echo("No saved melodies.")
        return
    for record in records:
        album = f" ({record.album})" if record.album else ""
        mine = "*" if record.owner_id == lib.owner_id else " "
        click.echo(f"{mine}{record.id:>5}  {record.title}{album}  {record.created_at}")


@library.command("save")
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option("--title", default=None, metavar="TEXT", help="Title. Defaults to the INPUT file stem.")
@click.option("--album", default=None, metavar="TEXT", help="Album the melody belongs to.")
@click.option("--key", "key_index", default=None, callback=_resolve_key, help="Key of the melody.")
@click.option("--tempo", type=click.IntRange(MIN_TEMPO, MAX_TEMPO), default=None, help="Tempo in BPM.")
@click.option("--yes", "-y", is_flag=True, help="Overwrite an existing melody without asking.")
@click.pass_obj
def library_save(
    lib: Library,
    input_file: str,
    title: str | None,
    album: str | None,
    key_index: int | None,
    tempo: int | None,
    yes: bool,
) -> None:
    """Save a document; an existing title and album is overwritten after confirmation."""
    def confirm(document: Document) -> bool:
        return yes or click.confirm(f"'{document.title}' already exists. Overwrite?", default=False)

    try:
        document = _read_document(input_file, title=title, album=album, key_index=key_index, tempo_bpm=tempo)
        record_id = lib.save(document, confirm_overwrite=confirm)
    except (JianpuError, OSError) as exc:
        _fail(str(exc))
        return

    if record_id is None:
        click.echo("Not saved.")
        return
    click.echo(f"Saved '{document.title}' as #{record_id}")


@library.command("load")
@click.argument("record_id", type=int)
@click.option("--output", "-o", default=None, metavar="PATH", help="Write the melody to a .json or text file.")
@click.pass_obj
def library_load(lib: Library, record_id: int, output: str | None) -> None:
    """Load a saved melody by id."""
    try:
        document = lib.load(record_id)
    except KeyError:
        _fail(f"No melody with id {record_id}.")
        return
    except JianpuError as exc:
        _fail(str(exc))
        return

    if output is not None:
        try:
            _write_document(document, output)
        except OSError as exc:
            _fail(f"Could not write output file — {exc}")
            return
        click.echo(f"Wrote {output}")
        return

    album = f" — {document.album}" if document.album else ""
    click.echo(f"{document.title}{album}")
    click.echo(f"Key: {key_or_default(document.key_index).name}  |  Tempo: {document.tempo_bpm} BPM")
    for index, block in enumerate(document.blocks, start=1):
        click.echo(f"[{index}] {block.type}: {block.content}")


@library.command("delete")
@click.argument("record_id", type=int)
@click.pass_obj
def library_delete(lib: Library, record_id: int) -> None:
    """Delete one of your saved melodies."""
    try:
        deleted = lib.delete(record_id)
    except JianpuError as exc:
        _fail(str(exc))
        return
    if not deleted:
        _fail(f"Melody {record_id} does not exist or belongs to someone else.")
        return
    click.echo(f"Deleted #{record_id}")
