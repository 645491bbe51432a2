"""
Provenance & generation stats reconciliation.

Owns every mutation of persisted flashcards and keeps the acceptance counters
of the referenced generation truthful:

  create  ai-full   -> count_accepted_unedited += 1
          ai-edited -> count_accepted_edited   += 1
          (refused when accepted would exceed count_generated)
  update  ai-full -> ai-edited (explicit, or forced by a content change)
                    -> unedited -= 1, edited += 1
  delete  ai-full   -> unedited -= 1
          ai-edited -> edited   -= 1

Counter writes are atomic and floored at zero in the store. Create credits
are reserved before the insert and released if the insert fails. A missing or
foreign generation only skips the counter write; the card operation stands.
"""
from __future__ import annotations

import logging
import math
from collections import defaultdict

import aiosqlite

from flashgen.db.sqlite import (
    adjust_generation_counters,
    delete_flashcard as db_delete_flashcard,
    get_flashcard as db_get_flashcard,
    get_generation as db_get_generation,
    insert_flashcards,
    list_flashcards as db_list_flashcards,
    reserve_generation_acceptance,
    update_flashcard_if_source,
)
from flashgen.errors import (
    InvalidSourceTransition,
    NotFound,
    PersistenceError,
    ValidationError,
)
from flashgen.models.flashcard import (
    Flashcard,
    FlashcardCreate,
    FlashcardList,
    FlashcardQuery,
    FlashcardSource,
    FlashcardUpdate,
    Pagination,
)

logger = logging.getLogger(__name__)

# Retries for the compare-and-set write when the card's source changes underneath us
_UPDATE_ATTEMPTS = 3

_ALLOWED_TRANSITIONS: dict[FlashcardSource, set[FlashcardSource]] = {
    FlashcardSource.MANUAL: {FlashcardSource.MANUAL},
    FlashcardSource.AI_FULL: {FlashcardSource.AI_FULL, FlashcardSource.AI_EDITED},
    FlashcardSource.AI_EDITED: {FlashcardSource.AI_EDITED},
}


def can_transition(current: FlashcardSource, target: FlashcardSource) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


async def _reconcile_counters(
    db: aiosqlite.Connection,
    owner_id: str,
    generation_id: str,
    unedited_delta: int = 0,
    edited_delta: int = 0,
) -> None:
    """Best-effort counter write. Logs and returns on any failure."""
    try:
        generation = await adjust_generation_counters(
            db, owner_id, generation_id, unedited_delta, edited_delta
        )
    except aiosqlite.Error as e:
        logger.warning("Failed to update stats for generation %s: %s", generation_id, e)
        return

    if generation is None:
        logger.warning(
            "Generation %s not found or not owned by %s. Skipping stats update.",
            generation_id,
            owner_id,
        )


def _validate_batch(commands: list[FlashcardCreate]) -> None:
    for index, cmd in enumerate(commands):
        if cmd.source.is_ai and not cmd.generation_id:
            raise ValidationError(
                f"commands[{index}]: generation_id is required for AI-generated flashcards"
            )
        if not cmd.source.is_ai and cmd.generation_id:
            raise ValidationError(
                f"commands[{index}]: manual flashcards cannot reference a generation"
            )


async def create_flashcards(
    db: aiosqlite.Connection, owner_id: str, commands: list[FlashcardCreate]
) -> list[Flashcard]:
    if not commands:
        return []

    _validate_batch(commands)

    stats: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    for cmd in commands:
        if cmd.generation_id is None:
            continue
        if cmd.source is FlashcardSource.AI_FULL:
            stats[cmd.generation_id][0] += 1
        elif cmd.source is FlashcardSource.AI_EDITED:
            stats[cmd.generation_id][1] += 1

    reserved: list[tuple[str, int, int]] = []
    try:
        for generation_id, (unedited, edited) in stats.items():
            if await _reserve_acceptance(db, owner_id, generation_id, unedited, edited):
                reserved.append((generation_id, unedited, edited))
        created = await insert_flashcards(db, owner_id, commands)
    except ValidationError:
        await _release(db, owner_id, reserved)
        raise
    except aiosqlite.Error as e:
        logger.error("Error inserting %d flashcards for %s: %s", len(commands), owner_id, e)
        await _release(db, owner_id, reserved)
        raise PersistenceError("Failed to save flashcards") from e

    return created


async def _reserve_acceptance(
    db: aiosqlite.Connection,
    owner_id: str,
    generation_id: str,
    unedited: int,
    edited: int,
) -> bool:
    """
    Credit a generation for cards about to be inserted.

    Returns False (insert goes ahead uncredited) when the generation is missing
    or foreign. Raises ValidationError when the credit would push accepted
    cards past count_generated.
    """
    if await reserve_generation_acceptance(db, owner_id, generation_id, unedited, edited):
        return True

    generation = await db_get_generation(db, owner_id, generation_id)
    if generation is None:
        logger.warning(
            "Generation %s not found or not owned by %s. Skipping stats update.",
            generation_id,
            owner_id,
        )
        return False

    accepted = generation.count_accepted_unedited + generation.count_accepted_edited
    raise ValidationError(
        f"Generation {generation_id} produced {generation.count_generated} proposals "
        f"and {accepted} are already saved; cannot accept {unedited + edited} more"
    )


async def _release(
    db: aiosqlite.Connection, owner_id: str, reserved: list[tuple[str, int, int]]
) -> None:
    for generation_id, unedited, edited in reserved:
        await _reconcile_counters(db, owner_id, generation_id, -unedited, -edited)


async def get_flashcard(
    db: aiosqlite.Connection, owner_id: str, card_id: str
) -> Flashcard:
    card = await db_get_flashcard(db, owner_id, card_id)
    if card is None:
        raise NotFound("Flashcard not found")
    return card


async def list_flashcards(
    db: aiosqlite.Connection, owner_id: str, query: FlashcardQuery
) -> FlashcardList:
    items, total = await db_list_flashcards(db, owner_id, query)
    return FlashcardList(
        items=items,
        pagination=Pagination(
            total=total,
            page=query.page,
            limit=query.limit,
            total_pages=math.ceil(total / query.limit) if query.limit else 0,
        ),
    )


async def update_flashcard(
    db: aiosqlite.Connection,
    owner_id: str,
    card_id: str,
    update: FlashcardUpdate,
) -> Flashcard:
    for _ in range(_UPDATE_ATTEMPTS):
        current = await get_flashcard(db, owner_id, card_id)

        target = update.source or current.source
        if not can_transition(current.source, target):
            raise InvalidSourceTransition(
                f"Cannot change flashcard source from {current.source.value} to {target.value}"
            )

        new_front = update.front if update.front is not None else current.front
        new_back = update.back if update.back is not None else current.back
        content_changed = new_front != current.front or new_back != current.back
        if current.source is FlashcardSource.AI_FULL and content_changed:
            target = FlashcardSource.AI_EDITED

        try:
            written = await update_flashcard_if_source(
                db, owner_id, card_id, current.source, new_front, new_back, target
            )
        except aiosqlite.Error as e:
            logger.error("Error updating flashcard %s: %s", card_id, e)
            raise PersistenceError("Failed to update flashcard") from e

        if not written:
            logger.info("Flashcard %s changed during update, re-reading", card_id)
            continue

        if (
            current.source is FlashcardSource.AI_FULL
            and target is FlashcardSource.AI_EDITED
            and current.generation_id
        ):
            await _reconcile_counters(
                db, owner_id, current.generation_id, unedited_delta=-1, edited_delta=1
            )

        return await get_flashcard(db, owner_id, card_id)

    raise PersistenceError(f"Flashcard {card_id} kept changing during update")


async def delete_flashcard(
    db: aiosqlite.Connection, owner_id: str, card_id: str
) -> None:
    current = await get_flashcard(db, owner_id, card_id)

    try:
        deleted = await db_delete_flashcard(db, owner_id, card_id)
    except aiosqlite.Error as e:
        logger.error("Error deleting flashcard %s: %s", card_id, e)
        raise PersistenceError("Failed to delete flashcard") from e

    if not deleted:
        # Removed by a concurrent request, which also owns the counter update
        raise NotFound("Flashcard not found")

    if current.source.is_ai and current.generation_id:
        if current.source is FlashcardSource.AI_FULL:
            await _reconcile_counters(db, owner_id, current.generation_id, unedited_delta=-1)
        else:
            await _reconcile_counters(db, owner_id, current.generation_id, edited_delta=-1)
