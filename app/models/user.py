"""
User model: persisted profile of a wallet holder.
Subscription state is embedded in the profile (one subscription per user).
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    wallet_address = Column(String, unique=True, nullable=False, index=True)  # lowercased
    role = Column(String, nullable=False, default="user")  # user / admin
    whitelist_status = Column(String, nullable=False, default="pending")  # pending / approved / rejected

    # NB: subscription_is_active is a stored flag, cancellation clears it even
    # if subscription_end_date is still in the future.
    subscription_tier_id = Column(String, nullable=True)
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    subscription_is_active = Column(Boolean, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    last_login = Column(DateTime(timezone=True), nullable=True)

    def has_subscription(self) -> bool:
        return self.subscription_is_active is not None
