from flashgen.models.flashcard import (
    Flashcard,
    FlashcardCreate,
    FlashcardList,
    FlashcardQuery,
    FlashcardSource,
    FlashcardUpdate,
    Pagination,
)
from flashgen.models.generation import (
    GenerateRequest,
    GenerationErrorLog,
    GenerationMetadata,
    GenerationProposal,
    GenerationResult,
    GenerationSession,
    ProposalList,
    ProposalView,
    ReviewActionType,
    ReviewRequest,
    SaveRequest,
    SaveResult,
    SaveStrategy,
)

__all__ = [
    "Flashcard",
    "FlashcardCreate",
    "FlashcardList",
    "FlashcardQuery",
    "FlashcardSource",
    "FlashcardUpdate",
    "GenerateRequest",
    "GenerationErrorLog",
    "GenerationMetadata",
    "GenerationProposal",
    "GenerationResult",
    "GenerationSession",
    "Pagination",
    "ProposalList",
    "ProposalView",
    "ReviewActionType",
    "ReviewRequest",
    "SaveRequest",
    "SaveResult",
    "SaveStrategy",
]
