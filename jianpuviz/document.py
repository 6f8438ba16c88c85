"""Document model, its derived parse cache and the persisted envelope codec."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Final, Literal

from jianpuviz.notation_models import ParsedBlock, ParsedMelody
from jianpuviz.notation_parser import NotationParser, parse_chords
from jianpuviz.scales import DEFAULT_KEY_INDEX, key_or_default

logger = logging.getLogger(__name__)

BlockType = Literal["melody", "chords"]
BLOCK_TYPES: Final[tuple[str, ...]] = ("melody", "chords")

DEFAULT_TITLE = "Untitled Melody"
DEFAULT_TEMPO = 100
DEFAULT_HORIZONTAL_SPACING = 20
DEFAULT_VERTICAL_SCALE = 20

# Editor slider bounds
HORIZONTAL_SPACING_RANGE: Final[tuple[int, int]] = (10, 100)
VERTICAL_SCALE_RANGE: Final[tuple[int, int]] = (0, 50)


@dataclass(frozen=True)
class Block:
    """One section of a document: melody notation or free chord text."""

    type: BlockType = "melody"
    content: str = ""


@dataclass(frozen=True)
class LayoutSettings:
    """Spacing parameters driving the layout engine (pixels)."""

    horizontal_spacing: float = DEFAULT_HORIZONTAL_SPACING
    vertical_scale: float = DEFAULT_VERTICAL_SCALE


@dataclass(frozen=True)
class Document:
    """
    The single source of truth for an edited melody.

    Documents are immutable; every edit returns a new Document. Parsed
    blocks are never stored on it: call :func:`parse_document` whenever the
    content or the key changes.
    """

    title: str = DEFAULT_TITLE
    album: str = ""
    key_index: int = DEFAULT_KEY_INDEX
    tempo_bpm: int = DEFAULT_TEMPO
    blocks: tuple[Block, ...] = (Block(),)
    settings: LayoutSettings = field(default_factory=LayoutSettings)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def update_block(self, index: int, content: str) -> Document:
        blocks = list(self.blocks)
        blocks[index] = replace(blocks[index], content=content)
        return replace(self, blocks=tuple(blocks))

    def add_block(self, block_type: BlockType = "melody", content: str = "") -> Document:
        if block_type not in BLOCK_TYPES:
            raise ValueError(f"Unknown block type '{block_type}'.")
        return replace(self, blocks=self.blocks + (Block(type=block_type, content=content),))

    def remove_block(self, index: int) -> Document:
        """Remove a block; the last remaining block is kept."""
        if len(self.blocks) <= 1:
            return self
        blocks = list(self.blocks)
        del blocks[index]
        return replace(self, blocks=tuple(blocks))

    def move_block(self, index: int, new_index: int) -> Document:
        blocks = list(self.blocks)
        block = blocks.pop(index)
        blocks.insert(new_index, block)
        return replace(self, blocks=tuple(blocks))

    def append_to_block(self, index: int, token: str) -> Document:
        """Append a notation token to a block, separated by a single space."""
        existing = self.blocks[index].content.rstrip()
        content = f"{existing} {token.strip()}" if existing else token.strip()
        return self.update_block(index, content)

    def set_key(self, key_index: int) -> Document:
        return replace(self, key_index=key_index)

    def set_settings(self, settings: LayoutSettings) -> Document:
        return replace(self, settings=settings)


def parse_block(block: Block, key_index: int) -> ParsedBlock:
    """Derive the parsed view of one block."""
    if block.type == "chords":
        return parse_chords(block.content)
    result = NotationParser(key_or_default(key_index)).parse(block.content)
    return ParsedMelody(events=result.events, total_duration=result.total_duration, source=block.content)


def parse_document(document: Document) -> list[ParsedBlock]:
    """Regenerate the parsed view of every block of *document*."""
    return [parse_block(block, document.key_index) for block in document.blocks]


# ── Persisted envelope ──────────────────────────────────────────────────────
#
# Current:  {"blocks": [{"type", "content"}, ...],
#            "settings": {"horizontalSpacing", "verticalScale"},
#            "keyIndex"?, "tempoBPM"?}
# Legacy 2: {"blocks": ["text" | {"type", "content"}, ...],
#            "settings": {"kerning", "verticalScale"}}
# Legacy 1: ["text" | {"type", "content"}, ...]
# Anything else is kept as the raw content of one melody block.


@dataclass(frozen=True)
class DecodedEnvelope:
    blocks: tuple[Block, ...]
    settings: LayoutSettings
    key_index: int | None = None
    tempo_bpm: int | None = None


class EnvelopeFormatError(ValueError):
    """A payload did not match the schema a decoder was trying."""


def encode_envelope(
    blocks: tuple[Block, ...] | list[Block],
    settings: LayoutSettings,
    key_index: int | None = None,
    tempo_bpm: int | None = None,
) -> str:
    """Serialize blocks and settings; *key_index* and *tempo_bpm* are written only when given."""
    payload: dict[str, Any] = {
        "blocks": [{"type": block.type, "content": block.content} for block in blocks],
        "settings": {
            "horizontalSpacing": settings.horizontal_spacing,
            "verticalScale": settings.vertical_scale,
        },
    }
    if key_index is not None:
        payload["keyIndex"] = key_index
    if tempo_bpm is not None:
        payload["tempoBPM"] = tempo_bpm
    return json.dumps(payload, ensure_ascii=False)


def _strict_block(raw: Any) -> Block:
    if not isinstance(raw, dict):
        raise EnvelopeFormatError("block is not an object")
    block_type = raw.get("type")
    content = raw.get("content")
    if block_type not in BLOCK_TYPES or not isinstance(content, str):
        raise EnvelopeFormatError(f"malformed block {raw!r}")
    return Block(type=block_type, content=content)


def _lenient_block(raw: Any) -> Block:
    if isinstance(raw, str):
        return Block(type="melody", content=raw)
    if isinstance(raw, dict):
        block_type = raw.get("type") if raw.get("type") in BLOCK_TYPES else "melody"
        content = raw.get("content")
        return Block(type=block_type, content=content if isinstance(content, str) else "")
    raise EnvelopeFormatError(f"unsupported block {raw!r}")


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _integer(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _decode_current(payload: Any) -> DecodedEnvelope:
    if not isinstance(payload, dict) or not isinstance(payload.get("blocks"), list):
        raise EnvelopeFormatError("not an envelope object")
    settings = payload.get("settings")
    if not isinstance(settings, dict):
        raise EnvelopeFormatError("settings missing")
    spacing = _number(settings.get("horizontalSpacing"))
    scale = _number(settings.get("verticalScale"))
    if spacing is None or scale is None:
        raise EnvelopeFormatError("settings incomplete")
    blocks = tuple(_strict_block(raw) for raw in payload["blocks"])
    return DecodedEnvelope(
        blocks=blocks,
        settings=LayoutSettings(spacing, scale),
        key_index=_integer(payload.get("keyIndex")),
        tempo_bpm=_integer(payload.get("tempoBPM")),
    )


def _decode_mixed_blocks(payload: Any) -> DecodedEnvelope:
    if not isinstance(payload, dict) or not isinstance(payload.get("blocks"), list):
        raise EnvelopeFormatError("not an envelope object")
    defaults = LayoutSettings()
    spacing = scale = None
    settings = payload.get("settings")
    if isinstance(settings, dict):
        spacing = _number(settings.get("horizontalSpacing", settings.get("kerning")))
        scale = _number(settings.get("verticalScale"))
    # Zero is treated as unset, as the editor always did
    return DecodedEnvelope(
        blocks=tuple(_lenient_block(raw) for raw in payload["blocks"]),
        settings=LayoutSettings(
            horizontal_spacing=spacing or defaults.horizontal_spacing,
            vertical_scale=scale or defaults.vertical_scale,
        ),
    )


def _decode_string_array(payload: Any) -> DecodedEnvelope:
    if not isinstance(payload, list) or not all(isinstance(item, str) for item in payload):
        raise EnvelopeFormatError("not an array of strings")
    return DecodedEnvelope(
        blocks=tuple(Block(type="melody", content=item) for item in payload),
        settings=LayoutSettings(),
    )


def _decode_block_array(payload: Any) -> DecodedEnvelope:
    if not isinstance(payload, list):
        raise EnvelopeFormatError("not an array")
    return DecodedEnvelope(
        blocks=tuple(_lenient_block(raw) for raw in payload),
        settings=LayoutSettings(),
    )


_DECODERS = (
    ("current", _decode_current),
    ("mixed-blocks", _decode_mixed_blocks),
    ("string-array", _decode_string_array),
    ("block-array", _decode_block_array),
)


def decode_envelope(raw: str) -> DecodedEnvelope:
    """
    Decode a stored document payload into blocks and layout settings.

    Tries the current schema first, then each legacy schema in order; a
    payload none of them accepts (including text that is not JSON) becomes a
    single melody block holding the raw text. Never raises.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        logger.info("Stored content is not JSON; loading it as one melody block")
        return DecodedEnvelope(blocks=(Block(type="melody", content=str(raw)),), settings=LayoutSettings())

    for name, decoder in _DECODERS:
        try:
            decoded = decoder(payload)
        except EnvelopeFormatError as exc:
            logger.debug("Envelope is not %s: %s", name, exc)
            continue
        if name != "current":
            logger.info("Migrated %s envelope to the current format", name)
        if not decoded.blocks:
            return replace(decoded, blocks=(Block(),))
        return decoded

    logger.info("Unrecognised envelope shape; loading it as one melody block")
    return DecodedEnvelope(blocks=(Block(type="melody", content=raw),), settings=LayoutSettings())
