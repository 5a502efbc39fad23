"""
Base types for the payment-network client.
Used by ChainClient, the ABI helpers and PaymentVerifier.
"""
from dataclasses import dataclass, field


# Native coin of an EVM chain (ETH on Base) always has 18 decimals.
NATIVE_DECIMALS = 18


@dataclass(frozen=True)
class LogEntry:
    """One log emitted by a transaction (raw, undecoded)."""
    address: str
    topics: tuple[str, ...] = ()
    data: str = "0x"
    log_index: int | None = None


@dataclass(frozen=True)
class TransactionInfo:
    hash: str
    from_address: str
    to_address: str | None  # None for contract creation
    value: int  # wei
    block_number: int | None = None  # None while pending


@dataclass(frozen=True)
class ReceiptInfo:
    transaction_hash: str
    status: int  # 1 = success, 0 = reverted
    block_number: int | None
    logs: tuple[LogEntry, ...] = field(default_factory=tuple)
    gas_used: int | None = None
    effective_gas_price: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class TokenTransfer:
    """Decoded Transfer(address,address,uint256) event."""
    from_address: str
    to_address: str
    amount: int  # smallest token unit
    log_index: int | None = None


class ChainUnavailableError(Exception):
    """Network, timeout or node-side failure; the caller may resubmit."""
    def __init__(self, message: str, method: str | None = None):
        super().__init__(message)
        self.method = method
