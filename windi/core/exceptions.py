"""Ledger error taxonomy.

Every error raised by the billing services derives from LedgerError and
carries the HTTP status the API layer answers with. Idempotent replays
and unknown webhook correlations are not errors; see WebhookOutcome.
"""
from typing import Dict, Optional


class LedgerError(Exception):
    """Base class for billing ledger errors."""
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ==================== VALIDATION ====================

class ValidationError(LedgerError):
    """Bad caller input; surfaced immediately, never retried."""
    status_code = 400


class InvalidPlan(ValidationError):
    """Requested plan is unknown or inactive."""
    pass


class PlanValidationError(ValidationError):
    """Administrative plan edit failed validation."""
    pass


# ==================== GATEWAY ====================

class GatewayError(LedgerError):
    """Payment gateway failure; retryable by the caller."""
    status_code = 502


class GatewayUnavailable(GatewayError):
    """No gateway credential configured."""
    status_code = 503


class GatewayTimeout(GatewayError):
    """Gateway call exceeded its deadline."""
    status_code = 504


class GatewayResponseError(GatewayError):
    """Gateway answered non-2xx or without the expected payload."""

    def __init__(self, message: str, http_status: Optional[int] = None, details: Optional[Dict] = None):
        self.http_status = http_status
        super().__init__(message, details)


# ==================== LEDGER PRECONDITIONS ====================

class InvariantViolation(LedgerError):
    """Operation aborted because a ledger precondition does not hold."""
    status_code = 409


class SaleNotPending(InvariantViolation):
    """Approve/reject attempted on a sale that is not PENDING."""
    pass


class SaleNotReversible(InvariantViolation):
    """Reverse attempted on a sale that is neither APPROVED nor PAID."""
    pass


class NoEligibleSales(InvariantViolation):
    """Payout requested for a period without APPROVED unpaid sales."""
    pass


class NotFound(InvariantViolation):
    """Referenced ledger row does not exist."""
    status_code = 404
