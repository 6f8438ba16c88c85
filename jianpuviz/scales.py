"""ScaleRegistry: the fixed catalog of major keys a melody can be written in."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from jianpuviz.errors import OutOfRangeKey

# Chromatic pitch class of each root spelling (index 0 = C)
ROOT_SEMITONES: Final[dict[str, int]] = {
    "C": 0,
    "C#": 1,
    "Db": 1,
    "D": 2,
    "Eb": 3,
    "E": 4,
    "F": 5,
    "F#": 6,
    "Gb": 6,
    "G": 7,
    "Ab": 8,
    "A": 9,
    "Bb": 10,
    "B": 11,
    "Cb": 11,
}

NUMBERS_ONLY_NAME = "Numbers Only"


@dataclass(frozen=True)
class Key:
    """
    A major key from the catalog.

    Attributes:
        name:          Display name, e.g. "G Major".
        root:          Spelling of the tonic, e.g. "G" or "Bb".
        degree_labels: Display names of scale degrees 1–7.
    """

    name: str
    root: str
    degree_labels: tuple[str, str, str, str, str, str, str]

    @property
    def is_numbers_only(self) -> bool:
        return self.name == NUMBERS_ONLY_NAME

    @property
    def root_semitone(self) -> int:
        """Pitch class of the tonic used for pitch computation.

        Numbers Only always computes from C; only its labels differ.
        """
        if self.is_numbers_only:
            return 0
        return ROOT_SEMITONES[self.root]

    def label_for(self, degree: int) -> str:
        """Return the display label of scale degree 1–7.

        Raises:
            IndexError: If *degree* is outside 1–7.
        """
        if not 1 <= degree <= 7:
            raise IndexError(f"Scale degree {degree} is outside 1–7.")
        return self.degree_labels[degree - 1]


KEYS: Final[tuple[Key, ...]] = (
    Key("C Major", "C", ("C", "D", "E", "F", "G", "A", "B")),
    Key("G Major", "G", ("G", "A", "B", "C", "D", "E", "F#")),
    Key("D Major", "D", ("D", "E", "F#", "G", "A", "B", "C#")),
    Key("A Major", "A", ("A", "B", "C#", "D", "E", "F#", "G#")),
    Key("E Major", "E", ("E", "F#", "G#", "A", "B", "C#", "D#")),
    Key("B Major", "B", ("B", "C#", "D#", "E", "F#", "G#", "A#")),
    Key("F# Major", "F#", ("F#", "G#", "A#", "B", "C#", "D#", "E#")),
    Key("Db Major", "Db", ("Db", "Eb", "F", "Gb", "Ab", "Bb", "C")),
    Key("Ab Major", "Ab", ("Ab", "Bb", "C", "Db", "Eb", "F", "G")),
    Key("Eb Major", "Eb", ("Eb", "F", "G", "Ab", "Bb", "C", "D")),
    Key("Bb Major", "Bb", ("Bb", "C", "D", "Eb", "F", "G", "A")),
    Key("F Major", "F", ("F", "G", "A", "Bb", "C", "D", "E")),
    Key(NUMBERS_ONLY_NAME, "C", ("1", "2", "3", "4", "5", "6", "7")),
)

DEFAULT_KEY_INDEX = 0
NUMBERS_ONLY_INDEX = len(KEYS) - 1

# Key signature (signed count of sharps/flats) → catalog index.
# Enharmonic edges fold onto the spelling the catalog carries.
FIFTHS_TO_INDEX: Final[dict[int, int]] = {
    0: 0,
    1: 1,
    2: 2,
    3: 3,
    4: 4,
    5: 5,
    6: 6,
    7: 7,    # C# → Db
    -1: 11,
    -2: 10,
    -3: 9,
    -4: 8,
    -5: 7,
    -6: 6,   # Gb → F#
    -7: 5,   # Cb → B
}


def key_at(index: int) -> Key:
    """
    Return the key stored at *index* in the catalog.

    Raises:
        OutOfRangeKey: If *index* is not a catalog position.
    """
    if not 0 <= index < len(KEYS):
        raise OutOfRangeKey(index, len(KEYS))
    return KEYS[index]


def key_or_default(index: int | None) -> Key:
    """Like :func:`key_at`, but falls back to C Major for unknown indices."""
    if index is None or not 0 <= index < len(KEYS):
        return KEYS[DEFAULT_KEY_INDEX]
    return KEYS[index]


def index_of_fifths(fifths: int) -> int:
    """Map a key signature's fifths count to a catalog index (C for anything unmapped)."""
    return FIFTHS_TO_INDEX.get(fifths, DEFAULT_KEY_INDEX)


def find_key(value: str | int) -> int:
    """
    Resolve a user supplied key reference to a catalog index.

    Accepts an index ("3"), a full name ("G Major"), a root spelling ("Bb")
    or "numbers" for the Numbers Only key. Matching is case-insensitive.

    Raises:
        OutOfRangeKey: If an index is given that is outside the catalog.
        ValueError: If the name matches no key.
    """
    if isinstance(value, int):
        key_at(value)
        return value

    text = value.strip()
    if text.lstrip("-").isdigit():
        index = int(text)
        key_at(index)
        return index

    lowered = text.lower()
    if lowered in {"numbers", "numbers only", "numbers-only"}:
        return NUMBERS_ONLY_INDEX

    for index, key in enumerate(KEYS):
        if key.name.lower() == lowered:
            return index
    for index, key in enumerate(KEYS[:NUMBERS_ONLY_INDEX]):
        if key.root.lower() == lowered:
            return index

    names = ", ".join(key.name for key in KEYS)
    raise ValueError(f"Unknown key '{value}'. Use an index 0–{len(KEYS) - 1} or one of: {names}.")
