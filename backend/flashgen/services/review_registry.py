"""In-process store of open review sessions, keyed by (owner, generation)."""
from __future__ import annotations

import logging

from flashgen.errors import NotFound
from flashgen.services.review import ReviewSession

logger = logging.getLogger(__name__)

_open_sessions: dict[tuple[str, str], ReviewSession] = {}


def register(owner_id: str, session: ReviewSession) -> ReviewSession:
    """Register a fresh review session, replacing any previous one for the same generation."""
    _open_sessions[(owner_id, session.generation_id)] = session
    return session


def get_session(owner_id: str, generation_id: str) -> ReviewSession:
    session = _open_sessions.get((owner_id, generation_id))
    if session is None or session.closed:
        raise NotFound("No open review session for this generation")
    return session


def discard(owner_id: str, generation_id: str) -> None:
    if _open_sessions.pop((owner_id, generation_id), None) is not None:
        logger.info("Discarded review session for generation %s", generation_id)


def clear() -> None:
    _open_sessions.clear()
