"""
Proposal review state machine.

Each proposal is in exactly one state:

    Pending ──accept──> Accepted <──reject/accept──> Rejected
       │                    │                           │
       └────────── start_edit (from any of the three) ──┘
                            │
                         Editing{buffer, previous}
                     save_edit ─> Accepted (source = ai-edited)
                     cancel_edit ─> previous

While a proposal is Editing, only save_edit and cancel_edit are accepted, and
a bulk save of the session is refused.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Union

import aiosqlite

from flashgen.errors import InvalidReviewAction, NotFound, ValidationError
from flashgen.models.flashcard import (
    BACK_MAX_CHARS,
    FRONT_MAX_CHARS,
    FlashcardCreate,
    FlashcardSource,
)
from flashgen.models.generation import (
    GenerationResult,
    ProposalView,
    ReviewActionType,
    SaveStrategy,
)
from flashgen.services.provenance import create_flashcards

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pending:
    status: ClassVar[str] = "pending"


@dataclass(frozen=True)
class Accepted:
    status: ClassVar[str] = "accepted"


@dataclass(frozen=True)
class Rejected:
    status: ClassVar[str] = "rejected"


SettledState = Union[Pending, Accepted, Rejected]


@dataclass(frozen=True)
class Editing:
    front: str
    back: str
    previous: SettledState

    @property
    def status(self) -> str:
        return self.previous.status


ProposalState = Union[Pending, Accepted, Rejected, Editing]


@dataclass
class Proposal:
    proposal_id: str
    front: str
    back: str
    source: FlashcardSource = FlashcardSource.AI_FULL
    state: ProposalState = field(default_factory=Pending)

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def is_editing(self) -> bool:
        return isinstance(self.state, Editing)

    def accept(self) -> None:
        self._require_settled("accept")
        self.state = Accepted()

    def reject(self) -> None:
        self._require_settled("reject")
        self.state = Rejected()

    def start_edit(self) -> None:
        self._require_settled("start_edit")
        self.state = Editing(front=self.front, back=self.back, previous=self.state)  # type: ignore[arg-type]

    def save_edit(self, front: str | None, back: str | None) -> None:
        editing = self._require_editing("save_edit")
        new_front = (front if front is not None else editing.front).strip()
        new_back = (back if back is not None else editing.back).strip()
        if not 1 <= len(new_front) <= FRONT_MAX_CHARS:
            raise ValidationError(f"Front must be 1-{FRONT_MAX_CHARS} characters")
        if not 1 <= len(new_back) <= BACK_MAX_CHARS:
            raise ValidationError(f"Back must be 1-{BACK_MAX_CHARS} characters")

        self.front = new_front
        self.back = new_back
        self.source = FlashcardSource.AI_EDITED
        self.state = Accepted()

    def cancel_edit(self) -> None:
        editing = self._require_editing("cancel_edit")
        self.state = editing.previous

    def to_view(self) -> ProposalView:
        editing = self.state if isinstance(self.state, Editing) else None
        return ProposalView(
            proposal_id=self.proposal_id,
            front=self.front,
            back=self.back,
            source=self.source.value,
            status=self.status,
            is_editing=editing is not None,
            edit_front=editing.front if editing else None,
            edit_back=editing.back if editing else None,
        )

    def _require_settled(self, action: str) -> None:
        if isinstance(self.state, Editing):
            raise InvalidReviewAction(
                f"Cannot {action} proposal {self.proposal_id} while it is being edited"
            )

    def _require_editing(self, action: str) -> Editing:
        if not isinstance(self.state, Editing):
            raise InvalidReviewAction(
                f"Cannot {action} proposal {self.proposal_id}: it is not being edited"
            )
        return self.state


class ReviewSession:
    """Client-held review state for the proposals of one generation."""

    def __init__(self, generation_id: str, proposals: list[Proposal]) -> None:
        self.generation_id = generation_id
        self._proposals: dict[str, Proposal] = {p.proposal_id: p for p in proposals}
        self.closed = False

    @classmethod
    def from_result(cls, result: GenerationResult) -> "ReviewSession":
        return cls(
            result.generation_id,
            [Proposal(p.proposal_id, p.front, p.back) for p in result.proposals],
        )

    @property
    def proposals(self) -> list[Proposal]:
        return list(self._proposals.values())

    def get(self, proposal_id: str) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise NotFound(f"Proposal {proposal_id} not found")
        return proposal

    def review(
        self,
        proposal_id: str,
        action: ReviewActionType,
        front: str | None = None,
        back: str | None = None,
    ) -> Proposal:
        if self.closed:
            raise InvalidReviewAction("This review session has already been saved")
        proposal = self.get(proposal_id)
        if action is ReviewActionType.ACCEPT:
            proposal.accept()
        elif action is ReviewActionType.REJECT:
            proposal.reject()
        elif action is ReviewActionType.START_EDIT:
            proposal.start_edit()
        elif action is ReviewActionType.SAVE_EDIT:
            proposal.save_edit(front, back)
        elif action is ReviewActionType.CANCEL_EDIT:
            proposal.cancel_edit()
        return proposal

    def editing(self) -> list[Proposal]:
        return [p for p in self._proposals.values() if p.is_editing]

    def select(self, strategy: SaveStrategy) -> list[Proposal]:
        if strategy is SaveStrategy.ACCEPTED_ONLY:
            wanted = (Accepted,)
        else:
            wanted = (Accepted, Pending)
        return [p for p in self._proposals.values() if isinstance(p.state, wanted)]

    def close(self) -> None:
        self._proposals.clear()
        self.closed = True


async def save_proposals(
    db: aiosqlite.Connection,
    owner_id: str,
    session: ReviewSession,
    strategy: SaveStrategy,
) -> int:
    """
    Persist the proposals selected by ``strategy`` as flashcards.

    Refused (nothing discarded) when the session is closed, when any proposal
    is mid-edit, or when the strategy selects nothing. Once persistence is
    attempted the whole proposal set is discarded, whatever the outcome.
    """
    if session.closed:
        raise InvalidReviewAction("This review session has already been saved")

    in_edit = session.editing()
    if in_edit:
        ids = ", ".join(p.proposal_id for p in in_edit)
        raise ValidationError(f"Finish or cancel editing before saving: {ids}")

    selected = session.select(strategy)
    if not selected:
        raise ValidationError("No proposals match the selected save strategy")

    commands = [
        FlashcardCreate(
            front=p.front,
            back=p.back,
            source=p.source,
            generation_id=session.generation_id,
        )
        for p in selected
    ]
    # Closed before the first await: a concurrent save of this session is refused
    session.close()
    created = await create_flashcards(db, owner_id, commands)

    logger.info(
        "Saved %d of %d proposals for generation %s (%s)",
        len(created),
        len(commands),
        session.generation_id,
        strategy.value,
    )
    return len(created)
