"""
Entitlement model: audit trail of access grants produced by on-chain payments.
transaction_hash is unique: one payment can never produce a second grant.
Rows are never updated or deleted.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import BigInteger, Column, DateTime, Index, Numeric, String, UniqueConstraint

from app.db.base import Base


class Entitlement(Base):
    __tablename__ = "entitlements"
    __table_args__ = (
        UniqueConstraint("transaction_hash", name="uq_entitlements_transaction_hash"),
        Index("ix_entitlements_user_item", "user_id", "item_id"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    item_id = Column(String, nullable=False)
    kind = Column(String, nullable=False)                     # "purchase" / "subscription_grant"
    transaction_hash = Column(String, nullable=False)         # lowercased 0x-hash
    token_kind = Column(String, nullable=False)               # "ETH" / "USDC"
    amount_paid = Column(Numeric(38, 18), nullable=False)
    payer_address = Column(String, nullable=False)
    block_number = Column(BigInteger, nullable=False)
    granted_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
