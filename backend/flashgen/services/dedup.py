"""Content fingerprinting and per-owner duplicate detection for generation requests."""
from __future__ import annotations

import hashlib

import aiosqlite

from flashgen.db.sqlite import find_generation_by_hash
from flashgen.errors import DuplicateGeneration


def fingerprint(source_text: str) -> str:
    """MD5 over the exact submitted text. Used for idempotency only."""
    return hashlib.md5(source_text.encode("utf-8")).hexdigest()  # noqa: S324


async def check_duplicate(
    db: aiosqlite.Connection, owner_id: str, source_text_hash: str
) -> bool:
    existing = await find_generation_by_hash(db, owner_id, source_text_hash)
    return existing is not None


async def ensure_not_duplicate(
    db: aiosqlite.Connection, owner_id: str, source_text_hash: str
) -> None:
    if await check_duplicate(db, owner_id, source_text_hash):
        raise DuplicateGeneration("This text has already been processed")
