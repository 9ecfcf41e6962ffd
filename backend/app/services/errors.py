"""
Domain error taxonomy shared by the orchestrator, the transfer gateway and
the HTTP layer. Each error carries the HTTP status it maps to; the API
renders every one of them as ``{"error": message}``.
"""
from __future__ import annotations


class DomainError(RuntimeError):
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthError(DomainError):
    status_code = 401


class NotFound(DomainError):
    status_code = 404


class AgentNotActive(DomainError):
    status_code = 403


class ValidationError(DomainError):
    status_code = 400


class IdempotencyConflictError(DomainError):
    """Raised when an idempotency key is reused with a different payload or by another caller."""

    status_code = 409


class IdempotencyInProgressError(DomainError):
    """Raised when the key is already reserved and still running."""

    status_code = 409


class ApprovalStateError(DomainError):
    status_code = 409


class RateLimitExceeded(DomainError):
    status_code = 429


class ExternalServiceError(DomainError):
    status_code = 500
    retryable = True


class ConfirmationError(DomainError):
    """Missing, expired or forged transfer confirmation."""

    status_code = 403


class TransactionStateError(DomainError):
    status_code = 409


class Forbidden(DomainError):
    status_code = 403
