import asyncio
from contextlib import asynccontextmanager
from typing import Any

import pytest

from flashgen.config import settings
from flashgen.db.sqlite import get_db, init_sqlite
from flashgen.services import review_registry
from flashgen.services.generation import ProposalPayload

open_db = asynccontextmanager(get_db)


async def count_generations(db, owner_id: str) -> int:
    cursor = await db.execute(
        "SELECT COUNT(*) FROM generations WHERE owner_id = ?", (owner_id,)
    )
    row = await cursor.fetchone()
    return row[0]


SOURCE_TEXT = ((
    "Photosynthesis is the process by which green plants, algae and some bacteria "
    "convert light energy into chemical energy stored in glucose. "
) * 8)[:1050]


@pytest.fixture(autouse=True)
def clear_review_sessions():
    review_registry.clear()
    yield
    review_registry.clear()


@pytest.fixture
def database(tmp_path, monkeypatch):
    """A fresh SQLite database; ``open_db()`` connects to it."""
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    asyncio.run(init_sqlite(tmp_path))
    return tmp_path / settings.sqlite_filename


class FakeCompleter:
    """Stands in for CompletionClient: returns canned proposals or raises."""

    def __init__(self, proposals: list[dict] | None = None, error: Exception | None = None):
        self.proposals = proposals if proposals is not None else [
            {"front": "What is photosynthesis?", "back": "Conversion of light energy into chemical energy."},
            {"front": "Where is the energy stored?", "back": "In glucose."},
            {"front": "Which organisms photosynthesise?", "back": "Green plants, algae and some bacteria."},
        ]
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def complete(self, system_prompt, user_prompt, response_schema, response_model=None):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "response_schema": response_schema,
            }
        )
        if self.error is not None:
            raise self.error
        return ProposalPayload.model_validate({"proposals": self.proposals})


@pytest.fixture
def fake_completer():
    return FakeCompleter()
