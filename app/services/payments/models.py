"""
Payment value types: PaymentClaim (caller-asserted, untrusted) and
VerifiedPayment (chain-derived, authoritative).
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class TokenKind(str, Enum):
    """Wire literals: the network's native coin or its canonical stablecoin."""

    NATIVE = "ETH"
    FUNGIBLE = "USDC"


@dataclass(frozen=True)
class PaymentClaim:
    transaction_hash: str
    token_kind: TokenKind
    expected_amount: Decimal  # floor, never the amount credited
    recipient_address: str

    def __post_init__(self) -> None:
        if self.expected_amount < 0:
            raise ValueError("expected_amount must be >= 0")


@dataclass(frozen=True)
class VerifiedPayment:
    transaction_hash: str
    token_kind: TokenKind
    actual_amount: Decimal
    payer_address: str
    block_number: int
    confirmations: int
