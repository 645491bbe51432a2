import asyncio

import pytest

from conftest import SOURCE_TEXT, open_db
from flashgen.db.sqlite import get_generation, list_flashcards
from flashgen.errors import InvalidReviewAction, NotFound, PersistenceError, ValidationError
from flashgen.models.flashcard import FlashcardQuery, FlashcardSource
from flashgen.models.generation import ReviewActionType, SaveStrategy
from flashgen.services import review as review_service
from flashgen.services.generation import start_generation
from flashgen.services.review import (
    Accepted,
    Editing,
    Pending,
    Proposal,
    Rejected,
    ReviewSession,
    save_proposals,
)


def _session(n: int = 3) -> ReviewSession:
    return ReviewSession(
        "gen-1",
        [Proposal(f"ai-gen--{i + 1}", f"Question {i + 1}", f"Answer {i + 1}") for i in range(n)],
    )


def test_new_proposals_are_pending_ai_full():
    proposal = _session().proposals[0]

    assert proposal.state == Pending()
    assert proposal.status == "pending"
    assert proposal.source is FlashcardSource.AI_FULL
    assert not proposal.is_editing


def test_accept_and_reject_can_be_toggled():
    session = _session()

    session.review("ai-gen--1", ReviewActionType.ACCEPT)
    assert session.get("ai-gen--1").state == Accepted()
    session.review("ai-gen--1", ReviewActionType.REJECT)
    assert session.get("ai-gen--1").state == Rejected()
    session.review("ai-gen--1", ReviewActionType.ACCEPT)
    assert session.get("ai-gen--1").status == "accepted"


def test_start_edit_captures_buffer_and_keeps_status():
    session = _session()
    session.review("ai-gen--1", ReviewActionType.REJECT)

    proposal = session.review("ai-gen--1", ReviewActionType.START_EDIT)

    assert isinstance(proposal.state, Editing)
    assert proposal.state.front == "Question 1"
    assert proposal.state.back == "Answer 1"
    assert proposal.status == "rejected"
    assert proposal.is_editing


def test_save_edit_replaces_content_and_accepts_as_edited():
    session = _session()
    session.review("ai-gen--2", ReviewActionType.START_EDIT)

    proposal = session.review(
        "ai-gen--2", ReviewActionType.SAVE_EDIT, front=" New question ", back="New answer"
    )

    assert proposal.state == Accepted()
    assert proposal.front == "New question"
    assert proposal.back == "New answer"
    assert proposal.source is FlashcardSource.AI_EDITED


@pytest.mark.parametrize(
    "front, back",
    [
        ("", "Answer"),
        ("   ", "Answer"),
        ("q" * 201, "Answer"),
        ("Question", ""),
        ("Question", "a" * 501),
    ],
)
def test_invalid_save_edit_stays_in_editing(front, back):
    session = _session()
    session.review("ai-gen--1", ReviewActionType.START_EDIT)

    with pytest.raises(ValidationError):
        session.review("ai-gen--1", ReviewActionType.SAVE_EDIT, front=front, back=back)

    proposal = session.get("ai-gen--1")
    assert proposal.is_editing
    assert proposal.status == "pending"
    assert proposal.front == "Question 1"
    assert proposal.source is FlashcardSource.AI_FULL


def test_boundary_lengths_are_accepted():
    session = _session()
    session.review("ai-gen--1", ReviewActionType.START_EDIT)

    proposal = session.review(
        "ai-gen--1", ReviewActionType.SAVE_EDIT, front="q" * 200, back="a" * 500
    )

    assert proposal.status == "accepted"


def test_cancel_edit_restores_previous_state():
    session = _session()
    session.review("ai-gen--1", ReviewActionType.ACCEPT)
    session.review("ai-gen--1", ReviewActionType.START_EDIT)

    proposal = session.review("ai-gen--1", ReviewActionType.CANCEL_EDIT)

    assert proposal.state == Accepted()
    assert proposal.front == "Question 1"
    assert proposal.source is FlashcardSource.AI_FULL


@pytest.mark.parametrize(
    "action",
    [ReviewActionType.ACCEPT, ReviewActionType.REJECT, ReviewActionType.START_EDIT],
)
def test_editing_proposal_only_takes_save_or_cancel(action):
    session = _session()
    session.review("ai-gen--1", ReviewActionType.START_EDIT)

    with pytest.raises(InvalidReviewAction):
        session.review("ai-gen--1", action)


@pytest.mark.parametrize("action", [ReviewActionType.SAVE_EDIT, ReviewActionType.CANCEL_EDIT])
def test_save_or_cancel_without_editing_is_invalid(action):
    with pytest.raises(InvalidReviewAction):
        _session().review("ai-gen--1", action, front="Q", back="A")


def test_unknown_proposal_is_not_found():
    with pytest.raises(NotFound):
        _session().review("ai-gen--99", ReviewActionType.ACCEPT)


def test_selection_by_strategy():
    session = _session()
    session.review("ai-gen--1", ReviewActionType.ACCEPT)
    session.review("ai-gen--3", ReviewActionType.REJECT)

    accepted = [p.proposal_id for p in session.select(SaveStrategy.ACCEPTED_ONLY)]
    non_rejected = [p.proposal_id for p in session.select(SaveStrategy.NON_REJECTED)]

    assert accepted == ["ai-gen--1"]
    assert non_rejected == ["ai-gen--1", "ai-gen--2"]


# --- save_proposals against a real store ---


def _reviewed_session(result) -> ReviewSession:
    """accepted, pending, rejected"""
    session = ReviewSession.from_result(result)
    first, _, third = session.proposals
    session.review(first.proposal_id, ReviewActionType.ACCEPT)
    session.review(third.proposal_id, ReviewActionType.REJECT)
    return session


@pytest.mark.parametrize(
    "strategy, expected",
    [(SaveStrategy.ACCEPTED_ONLY, 1), (SaveStrategy.NON_REJECTED, 2)],
)
def test_save_persists_strategy_selection(database, fake_completer, strategy, expected):
    async def scenario():
        async with open_db() as db:
            result = await start_generation(db, "user-1", SOURCE_TEXT, fake_completer)
            session = _reviewed_session(result)
            saved = await save_proposals(db, "user-1", session, strategy)
            cards, total = await list_flashcards(db, "user-1", FlashcardQuery())
            generation = await get_generation(db, "user-1", result.generation_id)
            return session, saved, cards, total, generation

    session, saved, cards, total, generation = asyncio.run(scenario())

    assert saved == expected
    assert total == expected
    assert all(c.source is FlashcardSource.AI_FULL for c in cards)
    assert all(c.generation_id == generation.id for c in cards)
    assert generation.count_accepted_unedited == expected
    assert generation.count_accepted_edited == 0
    assert session.closed
    assert session.proposals == []


def test_save_counts_edited_proposals_separately(database, fake_completer):
    async def scenario():
        async with open_db() as db:
            result = await start_generation(db, "user-1", SOURCE_TEXT, fake_completer)
            session = ReviewSession.from_result(result)
            first, second, _ = session.proposals
            session.review(first.proposal_id, ReviewActionType.ACCEPT)
            session.review(second.proposal_id, ReviewActionType.START_EDIT)
            session.review(
                second.proposal_id, ReviewActionType.SAVE_EDIT, front="Edited?", back="Yes."
            )
            await save_proposals(db, "user-1", session, SaveStrategy.ACCEPTED_ONLY)
            return await get_generation(db, "user-1", result.generation_id)

    generation = asyncio.run(scenario())

    assert generation.count_accepted_unedited == 1
    assert generation.count_accepted_edited == 1


def test_save_is_refused_while_a_proposal_is_being_edited(database, fake_completer):
    async def scenario():
        async with open_db() as db:
            result = await start_generation(db, "user-1", SOURCE_TEXT, fake_completer)
            session = _reviewed_session(result)
            session.review(session.proposals[1].proposal_id, ReviewActionType.START_EDIT)
            with pytest.raises(ValidationError):
                await save_proposals(db, "user-1", session, SaveStrategy.NON_REJECTED)
            _, total = await list_flashcards(db, "user-1", FlashcardQuery())
            return session, total

    session, total = asyncio.run(scenario())

    assert total == 0
    assert not session.closed
    assert len(session.proposals) == 3


def test_save_with_empty_selection_is_refused(database, fake_completer):
    async def scenario():
        async with open_db() as db:
            result = await start_generation(db, "user-1", SOURCE_TEXT, fake_completer)
            session = ReviewSession.from_result(result)
            with pytest.raises(ValidationError):
                await save_proposals(db, "user-1", session, SaveStrategy.ACCEPTED_ONLY)
            return session

    assert not asyncio.run(scenario()).closed


def test_closed_session_rejects_further_actions(database, fake_completer):
    async def scenario():
        async with open_db() as db:
            result = await start_generation(db, "user-1", SOURCE_TEXT, fake_completer)
            session = ReviewSession.from_result(result)
            await save_proposals(db, "user-1", session, SaveStrategy.NON_REJECTED)
            with pytest.raises(InvalidReviewAction):
                await save_proposals(db, "user-1", session, SaveStrategy.NON_REJECTED)
            with pytest.raises(InvalidReviewAction):
                session.review(result.proposals[0].proposal_id, ReviewActionType.ACCEPT)

    asyncio.run(scenario())


def test_concurrent_saves_of_one_session_persist_once(database, fake_completer):
    async def scenario():
        async with open_db() as db:
            result = await start_generation(db, "user-1", SOURCE_TEXT, fake_completer)
            session = ReviewSession.from_result(result)
            outcomes = await asyncio.gather(
                save_proposals(db, "user-1", session, SaveStrategy.NON_REJECTED),
                save_proposals(db, "user-1", session, SaveStrategy.NON_REJECTED),
                return_exceptions=True,
            )
            _, total = await list_flashcards(db, "user-1", FlashcardQuery())
            generation = await get_generation(db, "user-1", result.generation_id)
            return outcomes, total, generation

    outcomes, total, generation = asyncio.run(scenario())

    assert outcomes[0] == 3
    assert isinstance(outcomes[1], InvalidReviewAction)
    assert total == 3
    assert generation.count_accepted_unedited == 3
    assert generation.count_generated == 3


def test_failed_persistence_still_discards_proposals(database, fake_completer, monkeypatch):
    async def broken_create(*args, **kwargs):
        raise PersistenceError("Failed to save flashcards")

    monkeypatch.setattr(review_service, "create_flashcards", broken_create)

    async def scenario():
        async with open_db() as db:
            result = await start_generation(db, "user-1", SOURCE_TEXT, fake_completer)
            session = _reviewed_session(result)
            with pytest.raises(PersistenceError):
                await save_proposals(db, "user-1", session, SaveStrategy.ACCEPTED_ONLY)
            return session

    session = asyncio.run(scenario())

    assert session.closed
    assert session.proposals == []
