"""
Payment-network client: JSON-RPC 2.0 over httpx sync client.
One instance is built by the composition root and shared by all requests
(httpx.Client is thread-safe). No retries here: failures surface as
ChainUnavailableError and the caller decides.
"""
import itertools
import logging
import threading
import time
from typing import Any, Iterable

import httpx
import pybreaker

from app.services.chain.abi import (
    DECIMALS_SELECTOR,
    decode_transfer_logs,
    decode_uint256,
    hex_to_int,
    normalize_address,
)
from app.services.chain.base import (
    ChainUnavailableError,
    LogEntry,
    ReceiptInfo,
    TokenTransfer,
    TransactionInfo,
)
from app.utils.metrics import chain_rpc_duration_seconds, chain_rpc_requests_total


logger = logging.getLogger(__name__)


class ChainClient:
    """
    Sync JSON-RPC client for the payment network.
    Lookups return None for unknown hashes; every transport or node error
    raises ChainUnavailableError.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 15.0,
        breaker: pybreaker.CircuitBreaker | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._breaker = breaker
        self._client = http_client
        self._client_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._decimals_cache: dict[str, int] = {}

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def _record_request(self, method: str, status: str, duration: float) -> None:
        chain_rpc_requests_total.labels(method=method, status=status).inc()
        chain_rpc_duration_seconds.labels(method=method).observe(duration)

    def _post(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self.client.post(self._rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            raise ChainUnavailableError(f"{method} timed out after {self._timeout}s", method=method) from e
        except httpx.HTTPError as e:
            raise ChainUnavailableError(f"{method} failed: {e}", method=method) from e
        except ValueError as e:
            raise ChainUnavailableError(f"{method} returned invalid JSON", method=method) from e
        if not isinstance(data, dict):
            raise ChainUnavailableError(f"{method} returned a non-object response", method=method)
        error = data.get("error")
        if error:
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise ChainUnavailableError(f"{method} failed: {message}", method=method)
        return data.get("result")

    def _rpc(self, method: str, *params: Any) -> Any:
        start = time.time()
        try:
            if self._breaker is not None:
                result = self._breaker.call(self._post, method, list(params))
            else:
                result = self._post(method, list(params))
        except pybreaker.CircuitBreakerError as e:
            self._record_request(method, "breaker_open", time.time() - start)
            logger.warning("chain_rpc_breaker_open", extra={"rpc_method": method})
            raise ChainUnavailableError(f"{method} skipped: payment network circuit is open", method=method) from e
        except ChainUnavailableError as e:
            self._record_request(method, "error", time.time() - start)
            logger.warning("chain_rpc_error", extra={"rpc_method": method, "error": str(e)})
            raise
        self._record_request(method, "success", time.time() - start)
        return result

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_transaction(self, tx_hash: str) -> TransactionInfo | None:
        raw = self._rpc("eth_getTransactionByHash", tx_hash)
        if raw is None:
            return None
        try:
            block = raw.get("blockNumber")
            return TransactionInfo(
                hash=raw["hash"],
                from_address=normalize_address(raw["from"]),
                to_address=normalize_address(raw.get("to")),
                value=hex_to_int(raw.get("value", "0x0"), "value"),
                block_number=hex_to_int(block, "blockNumber") if block is not None else None,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ChainUnavailableError(
                f"eth_getTransactionByHash returned a malformed transaction: {e}",
                method="eth_getTransactionByHash",
            ) from e

    def get_receipt(self, tx_hash: str) -> ReceiptInfo | None:
        raw = self._rpc("eth_getTransactionReceipt", tx_hash)
        if raw is None:
            return None
        try:
            block = raw.get("blockNumber")
            gas_used = raw.get("gasUsed")
            gas_price = raw.get("effectiveGasPrice")
            return ReceiptInfo(
                transaction_hash=raw.get("transactionHash", tx_hash),
                status=hex_to_int(raw.get("status", "0x0"), "status"),
                block_number=hex_to_int(block, "blockNumber") if block is not None else None,
                logs=tuple(self._parse_log(log) for log in raw.get("logs") or []),
                gas_used=hex_to_int(gas_used, "gasUsed") if gas_used is not None else None,
                effective_gas_price=hex_to_int(gas_price, "effectiveGasPrice") if gas_price is not None else None,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ChainUnavailableError(
                f"eth_getTransactionReceipt returned a malformed receipt: {e}",
                method="eth_getTransactionReceipt",
            ) from e

    @staticmethod
    def _parse_log(raw: Any) -> LogEntry:
        """Keep whatever the node sent; shape checks happen at decode time."""
        if not isinstance(raw, dict):
            return LogEntry(address="")
        log_index = raw.get("logIndex")
        try:
            index = hex_to_int(log_index, "logIndex") if log_index is not None else None
        except ValueError:
            index = None
        topics = raw.get("topics") or []
        return LogEntry(
            address=normalize_address(raw.get("address") or "") or "",
            topics=tuple(t for t in topics if isinstance(t, str)),
            data=raw.get("data") if isinstance(raw.get("data"), str) else "0x",
            log_index=index,
        )

    def get_block_number(self) -> int:
        raw = self._rpc("eth_blockNumber")
        try:
            return hex_to_int(raw, "blockNumber")
        except ValueError as e:
            raise ChainUnavailableError(f"eth_blockNumber returned {raw!r}", method="eth_blockNumber") from e

    def get_chain_id(self) -> int:
        raw = self._rpc("eth_chainId")
        try:
            return hex_to_int(raw, "chainId")
        except ValueError as e:
            raise ChainUnavailableError(f"eth_chainId returned {raw!r}", method="eth_chainId") from e

    def get_decimals(self, token_contract_address: str) -> int:
        """ERC-20 decimals(); immutable per contract, so cached."""
        token = normalize_address(token_contract_address)
        cached = self._decimals_cache.get(token)
        if cached is not None:
            return cached
        raw = self._rpc("eth_call", {"to": token, "data": DECIMALS_SELECTOR}, "latest")
        try:
            decimals = decode_uint256(raw, "decimals")
        except ValueError as e:
            raise ChainUnavailableError(f"decimals() returned {raw!r}", method="eth_call") from e
        if decimals > 255:
            raise ChainUnavailableError(f"decimals() out of range: {decimals}", method="eth_call")
        self._decimals_cache[token] = decimals
        return decimals

    def decode_transfer_logs(self, logs: Iterable[LogEntry], token_contract_address: str) -> list[TokenTransfer]:
        return decode_transfer_logs(logs, token_contract_address)
