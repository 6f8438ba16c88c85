"""Melody library: documents persisted in SQLite, addressed by title, album and owner."""

from __future__ import annotations

import logging
import secrets
import sqlite3
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import click

from jianpuviz.document import Document, decode_envelope, encode_envelope
from jianpuviz.errors import MissingTitleError, StorageError
from jianpuviz.scales import DEFAULT_KEY_INDEX

logger = logging.getLogger(__name__)

APP_NAME = "jianpuviz"
DB_FILENAME = "library.db"
USER_ID_FILENAME = "user_id"
LIST_LIMIT = 50
LOADED_DEFAULT_TEMPO = 60   # tempo for records stored without one

_SCHEMA = """
CREATE TABLE IF NOT EXISTS melodies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    album TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL,
    key_index INTEGER,
    bpm INTEGER,
    owner_id TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
)
"""


@dataclass(frozen=True)
class MelodyRecord:
    """One stored row; ``content`` is the encoded envelope."""

    id: int
    title: str
    album: str
    content: str
    key_index: int | None
    bpm: int | None
    owner_id: str | None
    created_at: str


def default_app_dir() -> Path:
    return Path(click.get_app_dir(APP_NAME))


def default_db_path() -> Path:
    return default_app_dir() / DB_FILENAME


def new_user_id() -> str:
    alphabet = string.digits + string.ascii_lowercase
    return "user_" + "".join(secrets.choice(alphabet) for _ in range(9))


def load_user_id(app_dir: Path | None = None) -> str:
    """Return this machine's owner id, creating and storing one on first use."""
    directory = app_dir or default_app_dir()
    path = directory / USER_ID_FILENAME
    if path.exists():
        stored = path.read_text(encoding="utf-8").strip()
        if stored:
            return stored
    user_id = new_user_id()
    directory.mkdir(parents=True, exist_ok=True)
    path.write_text(user_id, encoding="utf-8")
    return user_id


class MelodyStore:
    """
    Thin SQLite client for the ``melodies`` table.

    Every sqlite failure surfaces as :class:`StorageError`.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open melody library at {self.db_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _execute(self, sql: str, args: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        try:
            cursor = self._conn.execute(sql, args)
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise StorageError(f"Melody library query failed: {exc}") from exc
        return cursor

    def _record(self, row: sqlite3.Row) -> MelodyRecord:
        return MelodyRecord(
            id=row["id"],
            title=row["title"],
            album=row["album"] or "",
            content=row["content"],
            key_index=row["key_index"],
            bpm=row["bpm"],
            owner_id=row["owner_id"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def list_recent(self, limit: int = LIST_LIMIT) -> list[MelodyRecord]:
        rows = self._execute(
            "SELECT * FROM melodies ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [self._record(row) for row in rows]

    def get(self, record_id: int) -> MelodyRecord | None:
        row = self._execute("SELECT * FROM melodies WHERE id = ?", (record_id,)).fetchone()
        return self._record(row) if row else None

    def find_id(self, title: str, album: str, owner_id: str) -> int | None:
        row = self._execute(
            "SELECT id FROM melodies WHERE title = ? AND album = ? AND owner_id = ?",
            (title, album, owner_id),
        ).fetchone()
        return row["id"] if row else None

    def insert(self, title: str, album: str, content: str, key_index: int, bpm: int, owner_id: str) -> int:
        cursor = self._execute(
            "INSERT INTO melodies (title, album, content, key_index, bpm, owner_id) VALUES (?, ?, ?, ?, ?, ?)",
            (title, album, content, key_index, bpm, owner_id),
        )
        return int(cursor.lastrowid)

    def update(self, record_id: int, content: str, key_index: int, bpm: int) -> None:
        self._execute(
            "UPDATE melodies SET content = ?, key_index = ?, bpm = ? WHERE id = ?",
            (content, key_index, bpm, record_id),
        )

    def delete(self, record_id: int) -> None:
        self._execute("DELETE FROM melodies WHERE id = ?", (record_id,))

    def close(self) -> None:
        self._conn.close()


def record_to_document(record: MelodyRecord) -> Document:
    """Decode a stored record, migrating legacy envelopes to the current shape."""
    decoded = decode_envelope(record.content)
    return Document(
        title=record.title,
        album=record.album,
        key_index=record.key_index or DEFAULT_KEY_INDEX,
        tempo_bpm=record.bpm or LOADED_DEFAULT_TEMPO,
        blocks=decoded.blocks,
        settings=decoded.settings,
    )


class Library:
    """
    Save, load, list and delete documents for one owner.

    Saves are serialised: while one is in flight ``is_saving`` is set and a
    second request is refused rather than issued twice.
    """

    def __init__(self, store: MelodyStore, owner_id: str) -> None:
        self.store = store
        self.owner_id = owner_id
        self.is_saving = False

    def list_recent(self, limit: int = LIST_LIMIT) -> list[MelodyRecord]:
        return self.store.list_recent(limit)

    def save(
        self,
        document: Document,
        confirm_overwrite: Callable[[Document], bool] = lambda _document: True,
    ) -> int | None:
        """
        Store *document* and return its record id.

        An existing melody of this owner with the same title and album is
        overwritten only if *confirm_overwrite* agrees.

        Returns:
            The record id, or ``None`` when the save was declined or another
            save is already in progress.

        Raises:
            MissingTitleError: If the document has no title.
            StorageError: If the database cannot be written.
        """
        if self.is_saving:
            logger.warning("Save already in progress; request for '%s' ignored", document.title)
            return None
        if not document.title.strip():
            raise MissingTitleError("Please enter a title.")

        self.is_saving = True
        try:
            content = encode_envelope(document.blocks, document.settings)
            existing_id = self.store.find_id(document.title, document.album, self.owner_id)
            if existing_id is not None:
                if not confirm_overwrite(document):
                    return None
                self.store.update(existing_id, content, document.key_index, document.tempo_bpm)
                logger.info("Updated melody %d '%s'", existing_id, document.title)
                return existing_id

            record_id = self.store.insert(
                document.title,
                document.album,
                content,
                document.key_index,
                document.tempo_bpm,
                self.owner_id,
            )
            logger.info("Saved melody %d '%s'", record_id, document.title)
            return record_id
        finally:
            self.is_saving = False

    def load(self, record_id: int) -> Document:
        """
        Raises:
            KeyError: If no melody has this id.
        """
        record = self.store.get(record_id)
        if record is None:
            raise KeyError(record_id)
        return record_to_document(record)

    def delete(self, record_id: int) -> bool:
        """Delete a melody owned by this user; return False when it is not theirs or missing."""
        record = self.store.get(record_id)
        if record is None or record.owner_id != self.owner_id:
            return False
        self.store.delete(record_id)
        return True
