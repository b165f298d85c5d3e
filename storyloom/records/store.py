"""SQLite-backed story library with whole-record upserts and single-field patches."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Iterator

from storyloom.common.errors import PersistenceError

from .models import FIELD_IMAGE, FIELD_NARRATION, PageRecord, StoryRecord, now_iso

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_TIMEOUT_SECONDS = 30.0
DEFAULT_BUSY_TIMEOUT_MS = 8_000

_SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS stories (
    story_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    cover TEXT NOT NULL DEFAULT '',
    protagonist TEXT NOT NULL DEFAULT '',
    theme TEXT NOT NULL DEFAULT 'default',
    setting TEXT,
    style TEXT,
    language TEXT NOT NULL DEFAULT 'english',
    narration_voice TEXT,
    published INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pages (
    story_id TEXT NOT NULL,
    page_index INTEGER NOT NULL,
    text TEXT NOT NULL,
    image TEXT NOT NULL DEFAULT '',
    narration TEXT,
    PRIMARY KEY (story_id, page_index),
    FOREIGN KEY(story_id) REFERENCES stories(story_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_stories_created ON stories(created_at DESC);
"""

_PAGE_COLUMNS = {FIELD_IMAGE: "image", FIELD_NARRATION: "narration"}


class StoryStore:
    def __init__(self, db_path: str | Path) -> None:
        raw = str(db_path)
        if raw == ":memory:":
            self.db_path = raw
        else:
            path = Path(raw).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        try:
            self.conn = sqlite3.connect(self.db_path, timeout=DEFAULT_SQLITE_TIMEOUT_SECONDS)
            self.conn.row_factory = sqlite3.Row
            self._configure_connection()
            self.init_schema()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not open story database at {self.db_path}: {exc}") from exc

    def _configure_connection(self) -> None:
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.execute(f"PRAGMA busy_timeout = {int(DEFAULT_BUSY_TIMEOUT_MS)}")
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")

    def close(self) -> None:
        self.conn.close()

    def init_schema(self) -> None:
        with self.conn:
            self.conn.executescript(_SCHEMA_SQL)

    def upsert_story(self, record: StoryRecord) -> None:
        """Insert or replace a record and all of its pages in one transaction."""
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO stories (
                        story_id, title, cover, protagonist, theme, setting, style,
                        language, narration_voice, published, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(story_id) DO UPDATE SET
                        title = excluded.title,
                        cover = excluded.cover,
                        protagonist = excluded.protagonist,
                        theme = excluded.theme,
                        setting = excluded.setting,
                        style = excluded.style,
                        language = excluded.language,
                        narration_voice = excluded.narration_voice,
                        published = excluded.published,
                        updated_at = excluded.updated_at
                    """,
                    (
                        record.id,
                        record.title,
                        record.cover,
                        record.protagonist,
                        record.theme,
                        record.setting,
                        record.style,
                        record.language,
                        record.narration_voice,
                        int(record.published),
                        record.created_at,
                        record.updated_at,
                    ),
                )
                self.conn.execute("DELETE FROM pages WHERE story_id = ?", (record.id,))
                self.conn.executemany(
                    """
                    INSERT INTO pages (story_id, page_index, text, image, narration)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (record.id, page.index, page.text, page.image, page.narration)
                        for page in record.pages
                    ],
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not save story {record.id}: {exc}") from exc
        logger.debug("Saved story %s (%d pages, published=%s)", record.id, len(record.pages), record.published)

    def get_story(self, story_id: str) -> StoryRecord | None:
        try:
            row = self.conn.execute(
                "SELECT * FROM stories WHERE story_id = ?", (story_id,)
            ).fetchone()
            if row is None:
                return None
            page_rows = self.conn.execute(
                "SELECT * FROM pages WHERE story_id = ? ORDER BY page_index", (story_id,)
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not load story {story_id}: {exc}") from exc
        return _record_from_rows(row, page_rows)

    def recent_stories(self, limit: int = 10) -> list[StoryRecord]:
        try:
            rows = self.conn.execute(
                "SELECT story_id FROM stories ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not list stories: {exc}") from exc
        return [record for record in (self.get_story(row["story_id"]) for row in rows) if record]

    def iter_story_ids(self) -> Iterator[str]:
        for row in self.conn.execute("SELECT story_id FROM stories ORDER BY created_at"):
            yield row["story_id"]

    def patch_cover(self, story_id: str, url: str) -> bool:
        return self._execute_patch(
            "UPDATE stories SET cover = ?, updated_at = ? WHERE story_id = ?",
            (url, now_iso(), story_id),
            description=f"cover of story {story_id}",
        )

    def patch_page_asset(self, story_id: str, page_index: int, field: str, url: str | None) -> bool:
        column = _PAGE_COLUMNS.get(field)
        if column is None:
            raise ValueError(f"Pages have no asset field '{field}'. Use 'image' or 'narration'.")
        patched = self._execute_patch(
            f"UPDATE pages SET {column} = ? WHERE story_id = ? AND page_index = ?",
            (url if column == "narration" else (url or ""), story_id, int(page_index)),
            description=f"{field} of page {page_index} in story {story_id}",
        )
        if patched:
            self._touch(story_id)
        return patched

    def set_published(self, story_id: str, published: bool = True) -> bool:
        return self._execute_patch(
            "UPDATE stories SET published = ?, updated_at = ? WHERE story_id = ?",
            (int(published), now_iso(), story_id),
            description=f"published flag of story {story_id}",
        )

    def _touch(self, story_id: str) -> None:
        self._execute_patch(
            "UPDATE stories SET updated_at = ? WHERE story_id = ?",
            (now_iso(), story_id),
            description=f"timestamp of story {story_id}",
        )

    def _execute_patch(self, sql: str, params: tuple, *, description: str) -> bool:
        """Run a single-row update; ``False`` means the row does not exist."""
        try:
            with self.conn:
                cursor = self.conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not update {description}: {exc}") from exc
        return cursor.rowcount > 0


def _record_from_rows(row: sqlite3.Row, page_rows: list[sqlite3.Row]) -> StoryRecord:
    return StoryRecord(
        id=row["story_id"],
        title=row["title"],
        cover=row["cover"],
        protagonist=row["protagonist"],
        theme=row["theme"],
        setting=row["setting"],
        style=row["style"],
        language=row["language"],
        narration_voice=row["narration_voice"],
        published=bool(row["published"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        pages=[
            PageRecord(
                index=page["page_index"],
                text=page["text"],
                image=page["image"],
                narration=page["narration"],
            )
            for page in page_rows
        ],
    )
