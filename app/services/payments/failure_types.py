"""
Formal outcome taxonomy for purchases.
Classifies verification and orchestration results for retry policy,
HTTP mapping and observability.
"""
from enum import Enum
from typing import Any


class PurchaseStatus(str, Enum):
    GRANTED = "granted"
    ALREADY_GRANTED = "already_granted"  # idempotent success signal, not an error
    CANCELLED = "cancelled"  # subscription cancellation succeeded
    UNAUTHORIZED = "unauthorized"  # whitelist not approved (admin action fixes it)
    WALLET_CONFLICT = "wallet_conflict"  # wallet already bound to another user profile
    ITEM_UNAVAILABLE = "item_unavailable"  # missing or inactive item
    CHAIN_UNAVAILABLE = "chain_unavailable"  # RPC down / timeout / breaker open
    TRANSACTION_NOT_FOUND = "transaction_not_found"  # unknown or not yet mined
    INSUFFICIENT_CONFIRMATIONS = "insufficient_confirmations"
    TRANSACTION_REVERTED = "transaction_reverted"
    RECIPIENT_MISMATCH = "recipient_mismatch"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    RATE_LIMITED = "rate_limited"
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    FORBIDDEN = "forbidden"  # content access denied


# Payment-fact failures: permanent for the hash, a new payment is required
PAYMENT_FACT_FAILURES = frozenset({
    PurchaseStatus.TRANSACTION_REVERTED,
    PurchaseStatus.RECIPIENT_MISMATCH,
    PurchaseStatus.INSUFFICIENT_AMOUNT,
})

# Resubmitting the same request later may succeed
RETRYABLE_STATUSES = frozenset({
    PurchaseStatus.CHAIN_UNAVAILABLE,
    PurchaseStatus.TRANSACTION_NOT_FOUND,
    PurchaseStatus.INSUFFICIENT_CONFIRMATIONS,
    PurchaseStatus.RATE_LIMITED,
})

HTTP_STATUS_BY_PURCHASE_STATUS: dict[PurchaseStatus, int] = {
    PurchaseStatus.GRANTED: 200,
    PurchaseStatus.ALREADY_GRANTED: 200,
    PurchaseStatus.CANCELLED: 200,
    PurchaseStatus.UNAUTHORIZED: 403,
    PurchaseStatus.WALLET_CONFLICT: 409,
    PurchaseStatus.ITEM_UNAVAILABLE: 404,
    PurchaseStatus.CHAIN_UNAVAILABLE: 503,
    PurchaseStatus.TRANSACTION_NOT_FOUND: 404,
    PurchaseStatus.INSUFFICIENT_CONFIRMATIONS: 409,
    PurchaseStatus.TRANSACTION_REVERTED: 400,
    PurchaseStatus.RECIPIENT_MISMATCH: 400,
    PurchaseStatus.INSUFFICIENT_AMOUNT: 400,
    PurchaseStatus.RATE_LIMITED: 429,
    PurchaseStatus.NO_ACTIVE_SUBSCRIPTION: 400,
    PurchaseStatus.FORBIDDEN: 403,
}


def is_retryable(status: PurchaseStatus) -> bool:
    return status in RETRYABLE_STATUSES


def http_status_for(status: PurchaseStatus) -> int:
    return HTTP_STATUS_BY_PURCHASE_STATUS.get(status, 400)


class PaymentVerificationError(Exception):
    """Raised by PaymentVerifier; detail holds diagnostics (expected/actual amounts, hashes)."""
    def __init__(self, failure_type: PurchaseStatus, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.failure_type = failure_type
        self.detail = detail or {}

    @property
    def retry_allowed(self) -> bool:
        return is_retryable(self.failure_type)
