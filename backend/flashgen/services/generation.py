"""
Generation orchestrator.

Lifecycle of one request (Created -> Completed | Failed):
  1. Fingerprint the source text and reject duplicates for the owner
  2. Insert a generations row with zeroed counters
  3. Ask the completion client for {"proposals": [{"front", "back"}]}
  4. Number the proposals and record count_generated (best-effort)
  5. On any provider failure, write a generation_error_logs row and re-raise
     (unclassified failures surface as CompletionError)

Retries live entirely inside CompletionClient; nothing here is retried.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

import aiosqlite
from pydantic import BaseModel

from flashgen.config import settings
from flashgen.db.sqlite import (
    create_generation,
    get_generation,
    insert_generation_error,
    set_generation_count,
)
from flashgen.errors import (
    CompletionError,
    CompletionValidationError,
    NotFound,
    PersistenceError,
)
from flashgen.models.flashcard import BACK_MAX_CHARS, FRONT_MAX_CHARS
from flashgen.models.generation import (
    GenerationMetadata,
    GenerationProposal,
    GenerationResult,
    GenerationSession,
)
from flashgen.services.dedup import ensure_not_duplicate, fingerprint

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an experienced teacher and an expert in effective learning methods "
    "(spaced repetition). Turn the provided source text into a set of high-quality "
    "flashcards.\n"
    "Rules:\n"
    "- Every flashcard is a question (front) and answer (back) pair.\n"
    f"- Questions must be specific and short (max {FRONT_MAX_CHARS} characters).\n"
    f"- Answers must be complete but concise (max {BACK_MAX_CHARS} characters).\n"
    "- Focus on key concepts, definitions and facts.\n"
    "- Avoid multiple-choice questions.\n"
    "- Answer in the language of the source text."
)

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "proposals": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "front": {
                        "type": "string",
                        "description": f"Question or term (max {FRONT_MAX_CHARS} characters)",
                        "maxLength": FRONT_MAX_CHARS,
                    },
                    "back": {
                        "type": "string",
                        "description": f"Answer or definition (max {BACK_MAX_CHARS} characters)",
                        "maxLength": BACK_MAX_CHARS,
                    },
                },
                "required": ["front", "back"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["proposals"],
    "additionalProperties": False,
}


class _RawProposal(BaseModel):
    front: str
    back: str


class ProposalPayload(BaseModel):
    proposals: list[_RawProposal]


class Completer(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_schema: dict[str, Any],
        response_model: type[ProposalPayload] | None = None,
    ) -> Any: ...


def _user_prompt(source_text: str) -> str:
    return (
        "Analyse the following study material and propose flashcards based on it:"
        f"\n\n{source_text}"
    )


def _proposal_id(generation_id: str, index: int) -> str:
    return f"ai-{generation_id[:4]}-{index + 1}"


def _clean_proposals(
    generation_id: str, payload: ProposalPayload
) -> list[GenerationProposal]:
    proposals: list[GenerationProposal] = []
    for raw in payload.proposals:
        front = raw.front.strip()
        back = raw.back.strip()
        if not (1 <= len(front) <= FRONT_MAX_CHARS and 1 <= len(back) <= BACK_MAX_CHARS):
            logger.warning(
                "Dropping out-of-bounds proposal for generation %s (front=%d, back=%d chars)",
                generation_id,
                len(front),
                len(back),
            )
            continue
        proposals.append(
            GenerationProposal(
                proposal_id=_proposal_id(generation_id, len(proposals)),
                front=front,
                back=back,
            )
        )
    return proposals


async def log_generation_error(
    db: aiosqlite.Connection,
    owner_id: str,
    error_code: str,
    error_message: str,
    source_text_hash: str,
    source_text_length: int,
) -> None:
    """Persist a failure for later analysis. Never raises."""
    try:
        await insert_generation_error(
            db,
            owner_id=owner_id,
            error_code=error_code,
            error_message=error_message,
            model_name=settings.llm_model,
            source_text_hash=source_text_hash,
            source_text_length=source_text_length,
        )
    except aiosqlite.Error as e:
        logger.error(
            "Failed to write generation error log (%s, hash %s): %s",
            error_code,
            source_text_hash,
            e,
        )


async def start_generation(
    db: aiosqlite.Connection,
    owner_id: str,
    source_text: str,
    client: Completer,
) -> GenerationResult:
    """
    Turn source text into flashcard proposals.

    Raises DuplicateGeneration, PersistenceError, or one of the completion
    errors (AuthError, PaymentError, RateLimitExceeded, ProviderError,
    ApiError, CompletionValidationError). Anything else the client raises is
    logged and re-raised as a plain CompletionError.
    """
    source_text_length = len(source_text)
    source_text_hash = fingerprint(source_text)

    await ensure_not_duplicate(db, owner_id, source_text_hash)

    try:
        generation = await create_generation(
            db,
            owner_id=owner_id,
            source_text_hash=source_text_hash,
            source_text_length=source_text_length,
            model_name=settings.llm_model,
        )
    except aiosqlite.Error as e:
        logger.error(
            "Failed to create generation record (hash %s, %d chars): %s",
            source_text_hash,
            source_text_length,
            e,
        )
        await log_generation_error(
            db,
            owner_id,
            PersistenceError.code,
            str(e) or "Failed to create generation record",
            source_text_hash,
            source_text_length,
        )
        raise PersistenceError("Failed to create generation record") from e

    try:
        payload = await client.complete(
            SYSTEM_PROMPT,
            _user_prompt(source_text),
            RESPONSE_SCHEMA,
            ProposalPayload,
        )
    except (CompletionError, CompletionValidationError) as e:
        logger.error(
            "Generation %s failed with %s: %s", generation.id, e.code, e.message
        )
        await log_generation_error(
            db, owner_id, e.code, e.message, source_text_hash, source_text_length
        )
        raise
    except Exception as e:
        logger.exception("Generation %s failed unexpectedly", generation.id)
        message = f"Flashcard generation failed: {e}"
        await log_generation_error(
            db, owner_id, CompletionError.code, message, source_text_hash, source_text_length
        )
        raise CompletionError(message) from e

    proposals = _clean_proposals(generation.id, payload)

    try:
        await set_generation_count(db, generation.id, len(proposals))
    except aiosqlite.Error as e:
        logger.error(
            "Failed to update count_generated for generation %s: %s", generation.id, e
        )

    logger.info(
        "Generation %s produced %d proposals (%d chars of source)",
        generation.id,
        len(proposals),
        source_text_length,
    )
    return GenerationResult(
        generation_id=generation.id,
        proposals=proposals,
        metadata=GenerationMetadata(
            model_name=generation.model_name,
            source_text_length=source_text_length,
            count_generated=len(proposals),
        ),
    )


async def fetch_generation(
    db: aiosqlite.Connection, owner_id: str, generation_id: str
) -> GenerationSession:
    generation = await get_generation(db, owner_id, generation_id)
    if generation is None:
        raise NotFound("Generation not found")
    return generation
