"""
CosmoCard Backend — Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for every failure class of the card workflow.
How:   Each exception carries a message and optional context dict. Global
       handlers (registered in main.py) map them to HTTP status codes and the
       `{"success": false, "error", "code", "request_id"}` response body.
Who:   Raised by services, collaborators and dependencies; caught by handlers.

Exception Hierarchy:
    CosmoCardError (base)
    ├── ValidationError          → 400 Bad Request (raised before any external call)
    ├── AuthError                → 401 Unauthorized (token or one-time code)
    ├── NotFoundError            → 404 Not Found
    ├── ConflictError            → 409 Conflict
    │   ├── StaleStageError      → 409 (card is not at the required stage)
    │   └── DuplicateCardError   → 409 (per-user sequence race detected)
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── UpstreamError            → 500 (Drive / Sheets / download failed)
    │   ├── LLMServiceError      → Gemini failed after retries
    │   └── CircuitBreakerOpenError
    └── DatabaseError            → 500 Internal Server Error

Note:
    LLMServiceError and CircuitBreakerOpenError never reach a client directly:
    GeminiService converts them into an AIUnavailable result, and the card
    stays at ai_status='unavailable' instead of failing the request.
"""

from typing import Any, Dict, Optional


class CosmoCardError(Exception):
    """
    Base exception for all CosmoCard application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    code = "internal_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CosmoCardError):
    """Client input is missing or malformed. HTTP 400."""

    code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthError(CosmoCardError):
    """
    Missing, invalid or expired bearer token, or a rejected one-time code.
    HTTP 401.
    """

    code = "auth_error"

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(CosmoCardError):
    """
    Raised when a requested resource does not exist, or belongs to another user.

    Cards owned by someone else are reported as missing so that card ids
    cannot be discovered across accounts. HTTP 404.
    """

    code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(CosmoCardError):
    """The request conflicts with the current registry state. HTTP 409."""

    code = "conflict"

    def __init__(
        self,
        message: str = "The request conflicts with the current state",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StaleStageError(ConflictError):
    """
    A stage operation was called before the card reached its prerequisite.

    Example: uploading photos for a card whose INCI was never processed.
    """

    code = "stale_stage"

    def __init__(
        self,
        card_id: str,
        current_stage: str,
        required_stage: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update(
            {
                "card_id": card_id,
                "current_stage": current_stage,
                "required_stage": required_stage,
            }
        )
        super().__init__(
            message=(
                f"Card '{card_id}' is at stage '{current_stage}'; "
                f"this step requires '{required_stage}'"
            ),
            context=ctx,
        )
        self.card_id = card_id
        self.current_stage = current_stage
        self.required_stage = required_stage


class DuplicateCardError(ConflictError):
    """Two concurrent creates for the same user raced to the same sequence number."""

    code = "duplicate_card"

    def __init__(
        self,
        card_id: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["card_id"] = card_id
        super().__init__(
            message=f"Card '{card_id}' was created concurrently; please retry",
            context=ctx,
        )
        self.card_id = card_id


class RateLimitExceededError(CosmoCardError):
    """Client exceeded the one-time code request limit. HTTP 429."""

    code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class UpstreamError(CosmoCardError):
    """
    An external collaborator (Drive, Sheets, HTTP download) failed.

    HTTP 500. The upstream message reaches the client only in development;
    production responses carry a generic message and the request id.
    """

    code = "upstream_error"

    def __init__(
        self,
        service: str = "upstream",
        message: str = "An external service call failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.service = service


class LLMServiceError(UpstreamError):
    """Gemini failed after all retry attempts."""

    code = "llm_service_error"

    def __init__(
        self,
        message: str = "AI analysis service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(service="gemini", message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(UpstreamError):
    """Too many consecutive Gemini failures; calls are rejected until recovery."""

    code = "circuit_open"

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"AI service is temporarily unavailable due to repeated failures. "
            f"It will be retried in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(service="gemini", message=message, context=ctx)
        self.recovery_time = recovery_time


class DatabaseError(CosmoCardError):
    """Registry operation failed unexpectedly. HTTP 500, generic message to client."""

    code = "database_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
