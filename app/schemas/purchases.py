from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services.payments.models import TokenKind

_TX_HASH_LEN = 66


def _check_tx_hash(v: str) -> str:
    v = v.strip()
    if len(v) != _TX_HASH_LEN or not v.lower().startswith("0x"):
        raise ValueError("transactionHash must be a 0x-prefixed 32-byte hex string")
    try:
        int(v[2:], 16)
    except ValueError as e:
        raise ValueError("transactionHash must be hex") from e
    return v.lower()


class VideoPurchaseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_hash: str = Field(..., alias="transactionHash")
    video_id: str = Field(..., alias="videoId", min_length=1)
    payment_token: TokenKind = Field(..., alias="paymentToken")

    @field_validator("transaction_hash")
    @classmethod
    def validate_transaction_hash(cls, v: str) -> str:
        return _check_tx_hash(v)


class SubscriptionPurchaseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_hash: str = Field(..., alias="transactionHash")
    tier_id: str = Field(..., alias="tierId", min_length=1)
    payment_token: TokenKind = Field(..., alias="paymentToken")

    @field_validator("transaction_hash")
    @classmethod
    def validate_transaction_hash(cls, v: str) -> str:
        return _check_tx_hash(v)


class SubscriptionOut(BaseModel):
    tierId: str | None
    startDate: datetime | None
    endDate: datetime | None
    isActive: bool


class PurchaseOut(BaseModel):
    success: bool
    status: str
    message: str
    itemId: str | None = None
    transactionHash: str | None = None
    amountPaid: str | None = None
    payerAddress: str | None = None
    blockNumber: int | None = None
    confirmations: int | None = None
    subscription: SubscriptionOut | None = None
    retryAllowed: bool = False
    newPaymentRequired: bool = False
    explorerUrl: str | None = None
    detail: dict[str, Any] = {}


class SubscriptionStatusOut(BaseModel):
    hasSubscription: bool
    isActive: bool
    status: str  # none / active / expired / cancelled
    subscription: SubscriptionOut | None = None


class SubscriptionTierOut(BaseModel):
    id: str
    name: str
    priceUsd: Decimal
    durationDays: int
    benefits: list[Any]


class VideoOut(BaseModel):
    id: str
    title: str
    description: str
    videoType: str
    category: str | None
    priceUsd: Decimal
    isFreeWithSubscription: bool
    thumbnailUrl: str | None
    previewUrl: str | None


class VideoContentOut(BaseModel):
    videoUrl: str
    expiresAt: datetime
    accessReason: str
