"""
Payment-specific exceptions for custody engine operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Order/escrow/refund/dispute lookup failures
    ├── PaymentValidationError - Malformed caller input
    │   ├── FeeValidationError - Amount outside the fee policy window
    │   └── WebhookSignatureError - Backend notification failed verification
    ├── PaymentPermissionError - Caller has the wrong role for the action
    └── GatewayError - Payment backend declined or failed the call
    DomainRuleError - Business rule violated (inherits ConflictError)
    InvalidStateTransitionError - Status change not allowed (inherits ConflictError)
    GatewayConfigurationError - Backend can't be constructed (missing credentials)

Usage:
    from payments.exceptions import DomainRuleError, GatewayError

    raise DomainRuleError(
        "You cannot purchase your own listing",
        error_code="SELF_PURCHASE",
        details={"listing_id": str(listing.id)},
    )

    raise GatewayError(
        "Card was declined",
        error_code="PAYMENT_DECLINED",
        details={"transaction_id": txn.transaction_id},
    )
"""

from __future__ import annotations

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    Example:
        try:
            EscrowService.release_escrow(...)
        except PaymentError as e:
            logger.error(f"Payment operation failed: {e}")
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError, NotFoundError):
    """
    Raised when a custody entity cannot be found.

    Use for Order, Listing, EscrowHold, Refund and Dispute lookups.
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"
    http_status: int = 404


class PaymentValidationError(PaymentError, ValidationError):
    """Raised when caller input fails validation."""

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"
    http_status: int = 400


class FeeValidationError(PaymentValidationError):
    """
    Raised by the fee policy for amounts it won't price.

    Example:
        policy.compute(Decimal("0.50"))  # below min_transaction
    """

    default_error_code: str = "INVALID_AMOUNT"


class WebhookSignatureError(PaymentValidationError):
    """Raised when a backend notification is unsigned, mis-signed or unreadable."""

    default_error_code: str = "INVALID_WEBHOOK_SIGNATURE"


class PaymentPermissionError(PaymentError, PermissionDeniedError):
    """
    Raised when the caller is not the party allowed to act.

    Example:
        if order.buyer_id != caller.id:
            raise PaymentPermissionError(
                "Only the buyer can release escrow",
                error_code="NOT_ORDER_BUYER",
            )
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class GatewayError(PaymentError, ExternalServiceError):
    """
    Raised when the payment backend declines or fails a call.

    The failed PaymentTransaction is persisted before this is surfaced,
    so the provider's reason is on record even though the caller only
    gets the message. When the call ran inside a transaction that is
    about to roll back, ``failed_call`` carries what is needed to record
    it afterwards (see CustodyService.gateway_failure).

    Error codes:
        PAYMENT_DECLINED: Permanent decline (card, fraud, funds)
        GATEWAY_ERROR: Provider unreachable or internal provider error
        NOT_IMPLEMENTED: Backend variant has no implementation yet
    """

    default_error_code: str = "GATEWAY_ERROR"
    http_status: int = 502

    def __init__(self, message: str, error_code: str | None = None, details=None):
        super().__init__(message, error_code=error_code, details=details)
        self.failed_call = None
        if self.error_code == "PAYMENT_DECLINED":
            self.http_status = 402
        elif self.error_code == "NOT_IMPLEMENTED":
            self.http_status = 501


# =============================================================================
# Consistency Exceptions
# =============================================================================


class DomainRuleError(ConflictError):
    """
    Raised when a business rule forbids the operation.

    Examples: self-purchase, insufficient stock, duplicate pending refund,
    duplicate active dispute, order already funded.
    """

    default_error_code: str = "DOMAIN_RULE_VIOLATION"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when an entity can't move to the requested state.

    Example:
        raise InvalidStateTransitionError(
            "Cannot move order from 'completed' to 'pending'",
            details={"current_state": "completed", "target_state": "pending"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


class GatewayConfigurationError(PaymentError):
    """
    Raised when a gateway backend cannot be constructed.

    The gateway factory catches this and applies the fallback policy, so
    it only escapes when fallback is disabled.
    """

    default_error_code: str = "GATEWAY_MISCONFIGURED"
    http_status: int = 500
