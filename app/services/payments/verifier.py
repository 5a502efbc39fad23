"""
PaymentVerifier — decides from chain data alone whether a claimed payment happened.

Responsibilities:
- receipt lookup and execution-status check
- native-coin payments: recipient/value from the transaction itself
- stablecoin payments: recipient/value from Transfer logs of the configured contract
- amount floor and confirmation-count checks

The claim's expected_amount is only a floor; the amount reported back always
comes from the chain. Nothing here ties a payment to an item: that binding is
made by the grant keyed on the transaction hash.
"""
import logging
from decimal import Decimal

from app.services.chain.abi import addresses_equal, normalize_address, normalize_tx_hash, to_decimal
from app.services.chain.base import NATIVE_DECIMALS, ChainUnavailableError, ReceiptInfo
from app.services.chain.client import ChainClient
from app.services.payments.failure_types import PaymentVerificationError, PurchaseStatus
from app.services.payments.models import PaymentClaim, TokenKind, VerifiedPayment
from app.utils.metrics import payment_verifications_total

logger = logging.getLogger(__name__)


class PaymentVerifier:
    def __init__(self, chain: ChainClient, token_contract_address: str, min_confirmations: int = 1):
        self.chain = chain
        self.token_contract_address = normalize_address(token_contract_address)
        self.min_confirmations = min_confirmations

    def verify(self, claim: PaymentClaim) -> VerifiedPayment:
        """
        Returns VerifiedPayment or raises PaymentVerificationError whose
        failure_type is one of: transaction_not_found, transaction_reverted,
        recipient_mismatch, insufficient_amount, insufficient_confirmations,
        chain_unavailable.
        """
        tx_hash = normalize_tx_hash(claim.transaction_hash)
        try:
            payment = self._verify(claim, tx_hash)
        except PaymentVerificationError as e:
            payment_verifications_total.labels(
                token_kind=claim.token_kind.value, status=e.failure_type.value
            ).inc()
            logger.info(
                "payment_verification_failed",
                extra={
                    "transaction_hash": tx_hash,
                    "token_kind": claim.token_kind.value,
                    "status": e.failure_type.value,
                    "error": str(e),
                },
            )
            raise

        payment_verifications_total.labels(
            token_kind=claim.token_kind.value, status=PurchaseStatus.GRANTED.value
        ).inc()
        logger.info(
            "payment_verified",
            extra={
                "transaction_hash": tx_hash,
                "token_kind": claim.token_kind.value,
                "actual": str(payment.actual_amount),
                "payer": payment.payer_address,
                "block_number": payment.block_number,
                "confirmations": payment.confirmations,
            },
        )
        return payment

    def _verify(self, claim: PaymentClaim, tx_hash: str) -> VerifiedPayment:
        try:
            receipt = self.chain.get_receipt(tx_hash)
            if receipt is None or receipt.block_number is None:
                raise PaymentVerificationError(
                    PurchaseStatus.TRANSACTION_NOT_FOUND,
                    "Transaction not found",
                    {"transaction_hash": tx_hash},
                )
            if not receipt.succeeded:
                raise PaymentVerificationError(
                    PurchaseStatus.TRANSACTION_REVERTED,
                    "Transaction failed on chain",
                    {"transaction_hash": tx_hash, "block_number": receipt.block_number},
                )

            if claim.token_kind is TokenKind.NATIVE:
                amount, payer = self._native_payment(claim, tx_hash)
            else:
                amount, payer = self._fungible_payment(claim, receipt)

            if amount < claim.expected_amount:
                raise PaymentVerificationError(
                    PurchaseStatus.INSUFFICIENT_AMOUNT,
                    f"Insufficient payment: expected {claim.expected_amount}, got {amount}",
                    {"expected": str(claim.expected_amount), "actual": str(amount)},
                )

            confirmations = self._confirmations(receipt.block_number)
        except ChainUnavailableError as e:
            raise PaymentVerificationError(
                PurchaseStatus.CHAIN_UNAVAILABLE,
                str(e),
                {"rpc_method": e.method},
            ) from e

        if confirmations < self.min_confirmations:
            raise PaymentVerificationError(
                PurchaseStatus.INSUFFICIENT_CONFIRMATIONS,
                f"Transaction has {confirmations} confirmations, {self.min_confirmations} required",
                {"confirmations": confirmations, "required": self.min_confirmations},
            )

        return VerifiedPayment(
            transaction_hash=tx_hash,
            token_kind=claim.token_kind,
            actual_amount=amount,
            payer_address=payer,
            block_number=receipt.block_number,
            confirmations=confirmations,
        )

    def _native_payment(self, claim: PaymentClaim, tx_hash: str) -> tuple[Decimal, str]:
        tx = self.chain.get_transaction(tx_hash)
        if tx is None:
            raise PaymentVerificationError(
                PurchaseStatus.TRANSACTION_NOT_FOUND,
                "Transaction not found",
                {"transaction_hash": tx_hash},
            )
        if not addresses_equal(tx.to_address, claim.recipient_address):
            raise PaymentVerificationError(
                PurchaseStatus.RECIPIENT_MISMATCH,
                "Transaction not directed to store wallet",
                {"to": tx.to_address},
            )
        return to_decimal(tx.value, NATIVE_DECIMALS), tx.from_address

    def _fungible_payment(self, claim: PaymentClaim, receipt: ReceiptInfo) -> tuple[Decimal, str]:
        transfers = self.chain.decode_transfer_logs(receipt.logs, self.token_contract_address)
        transfer = next(
            (t for t in transfers if addresses_equal(t.to_address, claim.recipient_address)),
            None,
        )
        if transfer is None:
            raise PaymentVerificationError(
                PurchaseStatus.RECIPIENT_MISMATCH,
                "No token transfer to store wallet in transaction",
                {"transfers_found": len(transfers)},
            )
        decimals = self.chain.get_decimals(self.token_contract_address)
        return to_decimal(transfer.amount, decimals), transfer.from_address

    def _confirmations(self, block_number: int) -> int:
        latest = self.chain.get_block_number()
        return max(latest - block_number + 1, 0)
