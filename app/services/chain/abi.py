"""
Minimal ABI helpers for the one event and one view call the storefront needs:
Transfer(address,address,uint256) and decimals().

Address comparison is case-insensitive everywhere; normalize_address is the
single canonicalisation point.
"""
import logging
from decimal import Decimal, localcontext
from typing import Iterable

from app.services.chain.base import LogEntry, TokenTransfer

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
# bytes4(keccak256("decimals()"))
DECIMALS_SELECTOR = "0x313ce567"

_WORD_HEX_LEN = 64


def normalize_address(address: str | None) -> str | None:
    """Canonical form for comparisons and storage: stripped, lowercased."""
    if address is None:
        return None
    return address.strip().lower()


def addresses_equal(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return normalize_address(a) == normalize_address(b)


def normalize_tx_hash(tx_hash: str) -> str:
    return tx_hash.strip().lower()


def hex_to_int(value: str | int | None, field_name: str = "value") -> int:
    """Decode a JSON-RPC quantity ("0x1a") into int."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if not isinstance(value, str) or not value.startswith("0x"):
        raise ValueError(f"Invalid hex quantity for {field_name}: {value!r}")
    body = value[2:]
    if not body:
        return 0
    return int(body, 16)


def decode_uint256(data: str, field_name: str = "uint256") -> int:
    """Decode exactly one ABI word."""
    if not isinstance(data, str) or not data.startswith("0x"):
        raise ValueError(f"Invalid {field_name} payload: {data!r}")
    body = data[2:]
    if len(body) != _WORD_HEX_LEN:
        raise ValueError(f"Expected one 32-byte word for {field_name}, got {len(body) // 2} bytes")
    return int(body, 16)


def topic_to_address(topic: str) -> str:
    """Indexed address topic: 12 zero bytes followed by the 20-byte address."""
    if not isinstance(topic, str) or not topic.startswith("0x") or len(topic) != 2 + _WORD_HEX_LEN:
        raise ValueError(f"Invalid address topic: {topic!r}")
    body = topic[2:]
    if body[:24].strip("0"):
        raise ValueError(f"Address topic has non-zero padding: {topic!r}")
    int(body, 16)  # reject non-hex
    return "0x" + body[24:].lower()


def decode_transfer_log(log: LogEntry) -> TokenTransfer:
    """Decode one ERC-20 Transfer log. Raises ValueError if the shape does not match."""
    if len(log.topics) != 3:
        raise ValueError(f"Transfer log must have 3 topics, got {len(log.topics)}")
    if (log.topics[0] or "").lower() != TRANSFER_TOPIC:
        raise ValueError("Not a Transfer event")
    return TokenTransfer(
        from_address=topic_to_address(log.topics[1]),
        to_address=topic_to_address(log.topics[2]),
        amount=decode_uint256(log.data, "Transfer.value"),
        log_index=log.log_index,
    )


def decode_transfer_logs(logs: Iterable[LogEntry], token_contract_address: str) -> list[TokenTransfer]:
    """
    Transfers emitted by the given token contract, in log order.
    Entries that fail to parse are dropped (lenient parse), never raised.
    """
    token = normalize_address(token_contract_address)
    transfers: list[TokenTransfer] = []
    for log in logs:
        if normalize_address(log.address) != token:
            continue
        if not log.topics or (log.topics[0] or "").lower() != TRANSFER_TOPIC:
            continue
        try:
            transfers.append(decode_transfer_log(log))
        except ValueError as e:
            logger.debug("transfer_log_skipped", extra={"error": str(e)})
    return transfers


def to_decimal(raw: int, decimals: int) -> Decimal:
    """Smallest-unit integer -> human units (exact, no float)."""
    with localcontext() as ctx:
        ctx.prec = 96
        return Decimal(raw).scaleb(-decimals)
