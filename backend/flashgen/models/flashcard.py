from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, StringConstraints

FRONT_MAX_CHARS = 200
BACK_MAX_CHARS = 500

FrontText = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=FRONT_MAX_CHARS)
]
BackText = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=BACK_MAX_CHARS)
]


class FlashcardSource(str, Enum):
    MANUAL = "manual"
    AI_FULL = "ai-full"
    AI_EDITED = "ai-edited"

    @property
    def is_ai(self) -> bool:
        return self is not FlashcardSource.MANUAL


class Flashcard(BaseModel):
    id: str
    owner_id: str
    front: str
    back: str
    source: FlashcardSource
    generation_id: str | None
    created_at: str
    updated_at: str


class FlashcardCreate(BaseModel):
    front: FrontText
    back: BackText
    source: FlashcardSource
    generation_id: str | None = None


class FlashcardUpdate(BaseModel):
    front: FrontText | None = None
    back: BackText | None = None
    source: FlashcardSource | None = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class FlashcardList(BaseModel):
    items: list[Flashcard]
    pagination: Pagination


class FlashcardQuery(BaseModel):
    page: int = 1
    limit: int = 50
    source: FlashcardSource | None = None
    sort: Literal["created_at", "updated_at"] = "created_at"
    order: Literal["asc", "desc"] = "desc"
