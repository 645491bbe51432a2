from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from flashgen.config import settings


class GenerationSession(BaseModel):
    model_config = {"protected_namespaces": ()}

    id: str
    owner_id: str
    source_text_hash: str
    source_text_length: int
    model_name: str
    count_generated: int
    count_accepted_unedited: int
    count_accepted_edited: int
    created_at: str
    updated_at: str


class GenerationErrorLog(BaseModel):
    model_config = {"protected_namespaces": ()}

    id: str
    owner_id: str
    error_code: str
    error_message: str
    model_name: str
    source_text_hash: str
    source_text_length: int
    created_at: str


class GenerateRequest(BaseModel):
    source_text: str = Field(
        min_length=settings.source_text_min_chars,
        max_length=settings.source_text_max_chars,
    )


class GenerationProposal(BaseModel):
    proposal_id: str
    front: str
    back: str


class GenerationMetadata(BaseModel):
    model_config = {"protected_namespaces": ()}

    model_name: str
    source_text_length: int
    count_generated: int


class GenerationResult(BaseModel):
    generation_id: str
    proposals: list[GenerationProposal]
    metadata: GenerationMetadata


# --- Review surface ---


class ReviewActionType(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    START_EDIT = "start_edit"
    SAVE_EDIT = "save_edit"
    CANCEL_EDIT = "cancel_edit"


class SaveStrategy(str, Enum):
    ACCEPTED_ONLY = "accepted_only"
    NON_REJECTED = "non_rejected"


class ReviewRequest(BaseModel):
    action: ReviewActionType
    front: str | None = None  # save_edit only
    back: str | None = None


class ProposalView(BaseModel):
    proposal_id: str
    front: str
    back: str
    source: str
    status: str
    is_editing: bool
    edit_front: str | None = None
    edit_back: str | None = None


class ProposalList(BaseModel):
    generation_id: str
    items: list[ProposalView]


class SaveRequest(BaseModel):
    strategy: SaveStrategy


class SaveResult(BaseModel):
    saved_count: int
