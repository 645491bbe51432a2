"""
Generation & review router.

Endpoints:
  POST /generations                                  — generate proposals from source text
  GET  /generations/errors                           — failed generation attempts
  GET  /generations/{id}                             — session metadata and counters
  GET  /generations/{id}/proposals                   — current review state
  POST /generations/{id}/proposals/{proposal_id}     — accept / reject / edit a proposal
  POST /generations/{id}/save                        — persist proposals by strategy
"""
from __future__ import annotations

import aiosqlite
from fastapi import APIRouter, Depends

from flashgen.db.sqlite import get_db, list_generation_errors
from flashgen.models.generation import (
    GenerateRequest,
    GenerationErrorLog,
    GenerationResult,
    GenerationSession,
    ProposalList,
    ProposalView,
    ReviewRequest,
    SaveRequest,
    SaveResult,
)
from flashgen.routers.deps import get_completion_client, get_owner_id
from flashgen.services import review_registry
from flashgen.services.completion_client import CompletionClient
from flashgen.services.generation import fetch_generation, start_generation
from flashgen.services.review import ReviewSession, save_proposals

router = APIRouter()


@router.post("/", response_model=GenerationResult)
async def create_generation(
    body: GenerateRequest,
    owner_id: str = Depends(get_owner_id),
    client: CompletionClient = Depends(get_completion_client),
    db: aiosqlite.Connection = Depends(get_db),
) -> GenerationResult:
    result = await start_generation(db, owner_id, body.source_text, client)
    review_registry.register(owner_id, ReviewSession.from_result(result))
    return result


@router.get("/errors", response_model=list[GenerationErrorLog])
async def list_errors(
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> list[GenerationErrorLog]:
    return await list_generation_errors(db, owner_id)


@router.get("/{generation_id}", response_model=GenerationSession)
async def get_generation(
    generation_id: str,
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> GenerationSession:
    return await fetch_generation(db, owner_id, generation_id)


@router.get("/{generation_id}/proposals", response_model=ProposalList)
async def list_proposals(
    generation_id: str,
    owner_id: str = Depends(get_owner_id),
) -> ProposalList:
    session = review_registry.get_session(owner_id, generation_id)
    return ProposalList(
        generation_id=generation_id,
        items=[p.to_view() for p in session.proposals],
    )


@router.post("/{generation_id}/proposals/{proposal_id}", response_model=ProposalView)
async def review_proposal(
    generation_id: str,
    proposal_id: str,
    body: ReviewRequest,
    owner_id: str = Depends(get_owner_id),
) -> ProposalView:
    session = review_registry.get_session(owner_id, generation_id)
    proposal = session.review(proposal_id, body.action, front=body.front, back=body.back)
    return proposal.to_view()


@router.post("/{generation_id}/save", response_model=SaveResult)
async def save_generation(
    generation_id: str,
    body: SaveRequest,
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> SaveResult:
    session = review_registry.get_session(owner_id, generation_id)
    try:
        saved = await save_proposals(db, owner_id, session, body.strategy)
    finally:
        if session.closed:
            review_registry.discard(owner_id, generation_id)
    return SaveResult(saved_count=saved)
