"""SQLite backed persistence for lazi transcripts."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .config import APP_DIR
from .models import TranscriptRecord

DB_PATH = APP_DIR / "transcripts.db"
SCHEMA_VERSION = 1

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


class TranscriptStore:
    """Persist ``(created_at, text)`` records using SQLite.

    ``created_at`` is strictly increasing in insertion order so it can serve
    as the sort key for "most recent".
    """

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._ensure_initialised()

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transcripts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    text TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_transcripts_created ON transcripts(created_at)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
            row = cur.fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO metadata(key, value) VALUES(?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

    def save(self, text: str) -> TranscriptRecord:
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute("SELECT MAX(created_at) FROM transcripts")
            latest = cur.fetchone()[0]
            now = datetime.utcnow()
            if latest is not None:
                floor = datetime.fromisoformat(latest) + timedelta(microseconds=1)
                now = max(now, floor)
            # Fixed-width timestamps keep lexical and chronological order identical.
            created_at = now.isoformat(timespec="microseconds")
            cur = conn.execute(
                "INSERT INTO transcripts(text, created_at) VALUES(?, ?)",
                (text, created_at),
            )
            transcript_id = cur.lastrowid
        logger.debug("Saved transcript %s", transcript_id)
        return self.get(transcript_id)

    def fetch_latest(self, limit: int = 20, exclude_id: Optional[int] = None) -> List[str]:
        """Return up to ``limit`` texts, newest first."""

        if limit <= 0:
            return []
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(
                """
                SELECT text FROM transcripts
                WHERE id != ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (-1 if exclude_id is None else exclude_id, limit),
            )
            return [row[0] for row in cur.fetchall()]

    def list_transcripts(self) -> Iterator[TranscriptRecord]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            for row in conn.execute("SELECT * FROM transcripts ORDER BY created_at DESC, id DESC"):
                yield _row_to_record(row)

    def get(self, transcript_id: int) -> TranscriptRecord:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cur = conn.execute("SELECT * FROM transcripts WHERE id = ?", (transcript_id,))
            row = cur.fetchone()
            if row is None:
                raise StorageError(f"Transcript with id {transcript_id} not found")
            return _row_to_record(row)

    def delete(self, transcript_id: int) -> None:
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM transcripts WHERE id = ?", (transcript_id,))
            if cur.rowcount == 0:
                raise StorageError(f"Transcript with id {transcript_id} not found")

    def count(self) -> int:
        with sqlite3.connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM transcripts").fetchone()[0]

    def summary(self, limit: int = 5) -> Tuple[int, List[TranscriptRecord]]:
        """Total number of transcripts and the ``limit`` most recent ones."""

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT * FROM transcripts ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return self.count(), [_row_to_record(row) for row in rows]

    def log_summary(self, limit: int = 5) -> None:
        total, recent = self.summary(limit)
        logger.info("Total transcripts stored: %d", total)
        for index, record in enumerate(recent, start=1):
            logger.info("#%d: [%s] %s", index, record.created_at.isoformat(), record.text[:80])


def _row_to_record(row: sqlite3.Row) -> TranscriptRecord:
    return TranscriptRecord(
        id=row["id"],
        text=row["text"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
