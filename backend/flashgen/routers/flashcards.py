"""
Flashcard library router.

Endpoints:
  GET    /flashcards        — paginated list (filter by source, sort, order)
  POST   /flashcards        — create one card or a batch
  GET    /flashcards/{id}   — single card
  PUT    /flashcards/{id}   — edit front / back / source
  DELETE /flashcards/{id}   — delete card
"""
from __future__ import annotations

from typing import Literal

import aiosqlite
from fastapi import APIRouter, Depends, Query

from flashgen.db.sqlite import get_db
from flashgen.models.flashcard import (
    Flashcard,
    FlashcardCreate,
    FlashcardList,
    FlashcardQuery,
    FlashcardSource,
    FlashcardUpdate,
)
from flashgen.routers.deps import get_owner_id
from flashgen.services.provenance import (
    create_flashcards,
    delete_flashcard,
    get_flashcard,
    list_flashcards,
    update_flashcard,
)

router = APIRouter()


@router.get("/", response_model=FlashcardList)
async def list_cards(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    source: FlashcardSource | None = Query(default=None),
    sort: Literal["created_at", "updated_at"] = Query(default="created_at"),
    order: Literal["asc", "desc"] = Query(default="desc"),
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardList:
    query = FlashcardQuery(page=page, limit=limit, source=source, sort=sort, order=order)
    return await list_flashcards(db, owner_id, query)


@router.post("/", response_model=list[Flashcard], status_code=201)
async def create_cards(
    body: FlashcardCreate | list[FlashcardCreate],
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> list[Flashcard]:
    commands = body if isinstance(body, list) else [body]
    return await create_flashcards(db, owner_id, commands)


@router.get("/{card_id}", response_model=Flashcard)
async def get_card(
    card_id: str,
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> Flashcard:
    return await get_flashcard(db, owner_id, card_id)


@router.put("/{card_id}", response_model=Flashcard)
async def edit_card(
    card_id: str,
    body: FlashcardUpdate,
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> Flashcard:
    return await update_flashcard(db, owner_id, card_id, body)


@router.delete("/{card_id}", status_code=204)
async def remove_card(
    card_id: str,
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> None:
    await delete_flashcard(db, owner_id, card_id)
