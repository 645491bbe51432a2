import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from flashgen.config import settings
from flashgen.models.flashcard import (
    Flashcard,
    FlashcardCreate,
    FlashcardQuery,
    FlashcardSource,
)
from flashgen.models.generation import GenerationErrorLog, GenerationSession

_db_path: Path | None = None

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS generations (
    id                      TEXT PRIMARY KEY,
    owner_id                TEXT NOT NULL,
    source_text_hash        TEXT NOT NULL,
    source_text_length      INTEGER NOT NULL,
    model_name              TEXT NOT NULL,
    count_generated         INTEGER NOT NULL DEFAULT 0,
    count_accepted_unedited INTEGER NOT NULL DEFAULT 0,
    count_accepted_edited   INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_generations_owner_hash
    ON generations(owner_id, source_text_hash);

CREATE TABLE IF NOT EXISTS generation_error_logs (
    id                 TEXT PRIMARY KEY,
    owner_id           TEXT NOT NULL,
    error_code         TEXT NOT NULL,
    error_message      TEXT NOT NULL DEFAULT '',
    model_name         TEXT NOT NULL,
    source_text_hash   TEXT NOT NULL,
    source_text_length INTEGER NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_error_logs_owner ON generation_error_logs(owner_id);

CREATE TABLE IF NOT EXISTS flashcards (
    id            TEXT PRIMARY KEY,
    owner_id      TEXT NOT NULL,
    front         TEXT NOT NULL,
    back          TEXT NOT NULL,
    source        TEXT NOT NULL CHECK (source IN ('manual', 'ai-full', 'ai-edited')),
    generation_id TEXT,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now')),
    CHECK ((source = 'manual') = (generation_id IS NULL))
);
CREATE INDEX IF NOT EXISTS idx_flashcards_owner ON flashcards(owner_id, created_at);
CREATE INDEX IF NOT EXISTS idx_flashcards_generation ON flashcards(generation_id);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
INSERT OR IGNORE INTO schema_version(version) VALUES (1);
"""


async def init_sqlite(data_dir: Path) -> None:
    global _db_path
    _db_path = data_dir / settings.sqlite_filename
    async with aiosqlite.connect(_db_path) as db:
        await db.executescript(SCHEMA_SQL)
        await db.commit()


async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    assert _db_path is not None, "SQLite not initialized"
    async with aiosqlite.connect(_db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys=ON")
        yield db


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


# --- Generations ---


def _row_to_generation(row: aiosqlite.Row) -> GenerationSession:
    return GenerationSession(**dict(row))


async def create_generation(
    db: aiosqlite.Connection,
    owner_id: str,
    source_text_hash: str,
    source_text_length: int,
    model_name: str,
) -> GenerationSession:
    generation_id = str(uuid.uuid4())
    now = _now()
    await db.execute(
        """INSERT INTO generations
           (id, owner_id, source_text_hash, source_text_length, model_name,
            count_generated, count_accepted_unedited, count_accepted_edited,
            created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, 0, 0, 0, ?, ?)""",
        (
            generation_id,
            owner_id,
            source_text_hash,
            source_text_length,
            model_name,
            now,
            now,
        ),
    )
    await db.commit()
    return await get_generation(db, owner_id, generation_id)  # type: ignore[return-value]


async def get_generation(
    db: aiosqlite.Connection, owner_id: str, generation_id: str
) -> GenerationSession | None:
    cursor = await db.execute(
        "SELECT * FROM generations WHERE id = ? AND owner_id = ?",
        (generation_id, owner_id),
    )
    row = await cursor.fetchone()
    return _row_to_generation(row) if row else None


async def find_generation_by_hash(
    db: aiosqlite.Connection, owner_id: str, source_text_hash: str
) -> GenerationSession | None:
    cursor = await db.execute(
        "SELECT * FROM generations WHERE owner_id = ? AND source_text_hash = ? LIMIT 1",
        (owner_id, source_text_hash),
    )
    row = await cursor.fetchone()
    return _row_to_generation(row) if row else None


async def set_generation_count(
    db: aiosqlite.Connection, generation_id: str, count_generated: int
) -> None:
    await db.execute(
        "UPDATE generations SET count_generated = ?, updated_at = ? WHERE id = ?",
        (count_generated, _now(), generation_id),
    )
    await db.commit()


async def adjust_generation_counters(
    db: aiosqlite.Connection,
    owner_id: str,
    generation_id: str,
    unedited_delta: int = 0,
    edited_delta: int = 0,
) -> GenerationSession | None:
    """
    Apply signed deltas to the acceptance counters in a single statement.

    Both counters are floored at zero. Returns the updated session, or None
    when no session with that id belongs to the owner.
    """
    cursor = await db.execute(
        """UPDATE generations
           SET count_accepted_unedited = MAX(0, count_accepted_unedited + ?),
               count_accepted_edited = MAX(0, count_accepted_edited + ?),
               updated_at = ?
           WHERE id = ? AND owner_id = ?""",
        (unedited_delta, edited_delta, _now(), generation_id, owner_id),
    )
    await db.commit()
    if (cursor.rowcount or 0) == 0:
        return None
    return await get_generation(db, owner_id, generation_id)


async def reserve_generation_acceptance(
    db: aiosqlite.Connection,
    owner_id: str,
    generation_id: str,
    unedited: int,
    edited: int,
) -> bool:
    """
    Credit accepted counters only while their sum stays within count_generated.

    Returns False when the session is missing, not owned, or the credit would
    exceed the cap. Nothing is written in that case.
    """
    cursor = await db.execute(
        """UPDATE generations
           SET count_accepted_unedited = count_accepted_unedited + ?,
               count_accepted_edited = count_accepted_edited + ?,
               updated_at = ?
           WHERE id = ? AND owner_id = ?
             AND count_accepted_unedited + count_accepted_edited + ? <= count_generated""",
        (unedited, edited, _now(), generation_id, owner_id, unedited + edited),
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0


# --- Generation error log ---


async def insert_generation_error(
    db: aiosqlite.Connection,
    owner_id: str,
    error_code: str,
    error_message: str,
    model_name: str,
    source_text_hash: str,
    source_text_length: int,
) -> None:
    await db.execute(
        """INSERT INTO generation_error_logs
           (id, owner_id, error_code, error_message, model_name,
            source_text_hash, source_text_length, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            str(uuid.uuid4()),
            owner_id,
            error_code,
            error_message,
            model_name,
            source_text_hash,
            source_text_length,
            _now(),
        ),
    )
    await db.commit()


async def list_generation_errors(
    db: aiosqlite.Connection, owner_id: str
) -> list[GenerationErrorLog]:
    cursor = await db.execute(
        "SELECT * FROM generation_error_logs WHERE owner_id = ? ORDER BY created_at ASC",
        (owner_id,),
    )
    rows = await cursor.fetchall()
    return [GenerationErrorLog(**dict(r)) for r in rows]


# --- Flashcards ---


def _row_to_flashcard(row: aiosqlite.Row) -> Flashcard:
    return Flashcard(**dict(row))


async def insert_flashcards(
    db: aiosqlite.Connection, owner_id: str, cards: list[FlashcardCreate]
) -> list[Flashcard]:
    """Insert a batch in one transaction. Returns the created rows in input order."""
    now = _now()
    card_ids: list[str] = []
    try:
        for card in cards:
            card_id = str(uuid.uuid4())
            card_ids.append(card_id)
            await db.execute(
                """INSERT INTO flashcards
                   (id, owner_id, front, back, source, generation_id,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    card_id,
                    owner_id,
                    card.front,
                    card.back,
                    card.source.value,
                    card.generation_id,
                    now,
                    now,
                ),
            )
        await db.commit()
    except aiosqlite.Error:
        await db.rollback()
        raise

    created: list[Flashcard] = []
    for card_id in card_ids:
        card = await get_flashcard(db, owner_id, card_id)
        if card:
            created.append(card)
    return created


async def get_flashcard(
    db: aiosqlite.Connection, owner_id: str, card_id: str
) -> Flashcard | None:
    cursor = await db.execute(
        "SELECT * FROM flashcards WHERE id = ? AND owner_id = ?", (card_id, owner_id)
    )
    row = await cursor.fetchone()
    return _row_to_flashcard(row) if row else None


async def list_flashcards(
    db: aiosqlite.Connection, owner_id: str, query: FlashcardQuery
) -> tuple[list[Flashcard], int]:
    where = "owner_id = ?"
    params: list = [owner_id]
    if query.source is not None:
        where += " AND source = ?"
        params.append(query.source.value)

    count_cursor = await db.execute(
        f"SELECT COUNT(*) FROM flashcards WHERE {where}",  # noqa: S608
        params,
    )
    count_row = await count_cursor.fetchone()
    total = count_row[0] if count_row else 0

    # sort/order come from a Literal-validated model, never raw input
    direction = "ASC" if query.order == "asc" else "DESC"
    offset = (query.page - 1) * query.limit
    cursor = await db.execute(
        f"SELECT * FROM flashcards WHERE {where} "  # noqa: S608
        f"ORDER BY {query.sort} {direction}, rowid {direction} LIMIT ? OFFSET ?",
        params + [query.limit, offset],
    )
    rows = await cursor.fetchall()
    return [_row_to_flashcard(r) for r in rows], total


async def update_flashcard_if_source(
    db: aiosqlite.Connection,
    owner_id: str,
    card_id: str,
    expected_source: FlashcardSource,
    front: str,
    back: str,
    source: FlashcardSource,
) -> bool:
    """
    Compare-and-set write: only succeeds while the stored source still equals
    ``expected_source``. Returns False when the row changed or disappeared.
    """
    cursor = await db.execute(
        """UPDATE flashcards
           SET front = ?, back = ?, source = ?, updated_at = ?
           WHERE id = ? AND owner_id = ? AND source = ?""",
        (front, back, source.value, _now(), card_id, owner_id, expected_source.value),
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0


async def delete_flashcard(
    db: aiosqlite.Connection, owner_id: str, card_id: str
) -> bool:
    cursor = await db.execute(
        "DELETE FROM flashcards WHERE id = ? AND owner_id = ?", (card_id, owner_id)
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0
