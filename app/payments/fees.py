"""
Fee policy for marketplace orders.

Canonical fee formula (buyer pays on top):

    subtotal        = unit_price * quantity
    platform_fee    = max(subtotal * platform_rate, minimum_fee)
    processing_fee  = max(subtotal * processing_rate, minimum_fee)
    total           = subtotal + platform_fee + processing_fee
    seller_amount   = subtotal

Every amount is rounded to two decimal places with ROUND_HALF_UP. The
transaction window [min_transaction, max_transaction] is checked against
the subtotal.

Everything in this module is pure: no database access, no settings lookups
at call time. Build a policy with FeePolicy.from_profile() and reuse it.

Usage:
    from payments.fees import FeePolicy

    policy = FeePolicy()
    breakdown = policy.compute(Decimal("20.00"), "usd")
    breakdown.total  # Decimal("21.58")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from payments.exceptions import FeeValidationError

if TYPE_CHECKING:
    from payments.gateways.profiles import PaymentProfile

CENT = Decimal("0.01")

DEFAULT_PLATFORM_RATE = Decimal("0.05")
DEFAULT_PROCESSING_RATE = Decimal("0.029")
DEFAULT_MINIMUM_FEE = Decimal("0.30")
DEFAULT_MIN_TRANSACTION = Decimal("1.00")
DEFAULT_MAX_TRANSACTION = Decimal("10000.00")


def to_decimal(value) -> Decimal:
    """
    Convert ints, strings and Decimals to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than its
    binary expansion. NaN and infinities are rejected.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise FeeValidationError(
            f"Invalid amount: {value!r}",
            details={"amount": ["A valid number is required."]},
        ) from e
    if not amount.is_finite():
        raise FeeValidationError(
            f"Invalid amount: {value!r}",
            details={"amount": ["A finite number is required."]},
        )
    return amount


def round_money(value) -> Decimal:
    """Round to two decimal places, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeBreakdown:
    """
    Result of a fee computation.

    Attributes:
        subtotal: Base amount before fees
        platform_fee: Marketplace commission
        processing_fee: Payment processing cost passed to the buyer
        total: Amount the buyer is charged
        seller_amount: Amount the seller receives on release
        currency: ISO 4217 code (lowercase)
    """

    subtotal: Decimal
    platform_fee: Decimal
    processing_fee: Decimal
    total: Decimal
    seller_amount: Decimal
    currency: str = "usd"

    @property
    def total_fees(self) -> Decimal:
        return self.platform_fee + self.processing_fee

    def as_dict(self) -> dict[str, str]:
        """Serialise amounts as strings for JSON metadata."""
        return {
            "subtotal": str(self.subtotal),
            "platform_fee": str(self.platform_fee),
            "processing_fee": str(self.processing_fee),
            "total": str(self.total),
            "seller_amount": str(self.seller_amount),
            "currency": self.currency,
        }


@dataclass(frozen=True)
class FeePolicy:
    """
    Fee rates and transaction bounds for one payment profile.

    Attributes:
        platform_rate: Fraction of the subtotal kept by the marketplace
        processing_rate: Fraction of the subtotal charged for processing
        minimum_fee: Floor applied to each fee separately
        min_transaction: Smallest accepted subtotal
        max_transaction: Largest accepted subtotal
    """

    platform_rate: Decimal = DEFAULT_PLATFORM_RATE
    processing_rate: Decimal = DEFAULT_PROCESSING_RATE
    minimum_fee: Decimal = DEFAULT_MINIMUM_FEE
    min_transaction: Decimal = DEFAULT_MIN_TRANSACTION
    max_transaction: Decimal = DEFAULT_MAX_TRANSACTION

    @classmethod
    def from_profile(cls, profile: PaymentProfile) -> FeePolicy:
        """Build the policy carried by a payment profile."""
        return cls(
            platform_rate=to_decimal(profile.platform_rate),
            processing_rate=to_decimal(profile.processing_rate),
            minimum_fee=to_decimal(profile.minimum_fee),
            min_transaction=to_decimal(profile.min_transaction),
            max_transaction=to_decimal(profile.max_transaction),
        )

    def validate_amount(self, amount) -> Decimal:
        """
        Check a subtotal against the transaction window.

        Returns:
            The amount rounded to cents

        Raises:
            FeeValidationError: If the amount is non-positive or outside
                [min_transaction, max_transaction]
        """
        value = round_money(amount)
        if value <= 0:
            raise FeeValidationError(
                "Amount must be positive",
                details={"amount": ["Ensure this value is greater than 0."]},
            )
        if value < self.min_transaction or value > self.max_transaction:
            raise FeeValidationError(
                f"Amount must be between {self.min_transaction} and "
                f"{self.max_transaction}",
                error_code="AMOUNT_OUT_OF_RANGE",
                details={
                    "amount": [
                        f"Ensure this value is between {self.min_transaction} "
                        f"and {self.max_transaction}."
                    ]
                },
            )
        return value

    def compute(self, amount, currency: str = "usd") -> FeeBreakdown:
        """
        Compute fees, total and seller proceeds for a subtotal.

        Args:
            amount: Subtotal (unit price * quantity)
            currency: ISO 4217 currency code

        Returns:
            FeeBreakdown with every amount rounded to cents

        Raises:
            FeeValidationError: If the subtotal is outside the window
        """
        subtotal = self.validate_amount(amount)
        platform_fee = max(round_money(subtotal * self.platform_rate), self.minimum_fee)
        processing_fee = max(
            round_money(subtotal * self.processing_rate), self.minimum_fee
        )
        platform_fee = round_money(platform_fee)
        processing_fee = round_money(processing_fee)
        return FeeBreakdown(
            subtotal=subtotal,
            platform_fee=platform_fee,
            processing_fee=processing_fee,
            total=subtotal + platform_fee + processing_fee,
            seller_amount=subtotal,
            currency=(currency or "usd").lower(),
        )


def calculate_order_total(
    unit_price,
    quantity: int,
    platform_fee_rate,
    processing_fee_rate,
) -> FeeBreakdown:
    """
    Compute an order total from explicit rates, without minimum fee or bounds.

    Used for quotes and for checking stored orders against their rates.

    Example:
        calculate_order_total(1000, 2, Decimal("0.05"), Decimal("0.03"))
        # subtotal 2000.00, platform_fee 100.00, processing_fee 60.00, total 2160.00
    """
    if quantity < 1:
        raise FeeValidationError(
            "Quantity must be at least 1",
            details={"quantity": ["Ensure this value is greater than or equal to 1."]},
        )
    subtotal = round_money(to_decimal(unit_price) * quantity)
    platform_fee = round_money(subtotal * to_decimal(platform_fee_rate))
    processing_fee = round_money(subtotal * to_decimal(processing_fee_rate))
    return FeeBreakdown(
        subtotal=subtotal,
        platform_fee=platform_fee,
        processing_fee=processing_fee,
        total=subtotal + platform_fee + processing_fee,
        seller_amount=subtotal,
    )
