"""
Domain error taxonomy.

Every failure the core reports to a caller is one of these. Each class carries
a stable ``code`` (stored in the generation error log and returned in API
error bodies) and the HTTP status the API layer answers with.
"""
from __future__ import annotations


class FlashgenError(Exception):
    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class DuplicateGeneration(FlashgenError):
    code = "DUPLICATE_GENERATION"
    http_status = 409


class PersistenceError(FlashgenError):
    code = "DB_ERROR"
    http_status = 500


class NotFound(FlashgenError):
    code = "NOT_FOUND"
    http_status = 404


class ValidationError(FlashgenError):
    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidReviewAction(ValidationError):
    code = "INVALID_REVIEW_ACTION"


class InvalidSourceTransition(FlashgenError):
    code = "INVALID_SOURCE_TRANSITION"
    http_status = 400


# --- Completion provider failures ---


class CompletionError(FlashgenError):
    """Base for failures reported by the completion provider."""

    code = "AI_GENERATION_ERROR"
    http_status = 502


class AuthError(CompletionError):
    code = "AI_AUTH_ERROR"


class PaymentError(CompletionError):
    code = "AI_PAYMENT_ERROR"


class RateLimitExceeded(CompletionError):
    code = "AI_RATE_LIMIT_ERROR"
    http_status = 503


class ProviderError(CompletionError):
    code = "AI_PROVIDER_ERROR"


class ApiError(CompletionError):
    code = "AI_API_ERROR"

    def __init__(self, status: int | None, message: str = "") -> None:
        super().__init__(f"Provider API error ({status}): {message}")
        self.status = status


class CompletionValidationError(ValidationError):
    """Provider answered, but the payload was not the structured output we asked for."""

    code = "AI_VALIDATION_ERROR"
    http_status = 502
