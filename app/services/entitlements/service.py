"""
EntitlementStore — persisted access grants and subscription state.

Grants are keyed by transaction hash. The unique index on
entitlements.transaction_hash is the enforcement point: the existence check
before the insert only saves a write, and a concurrent duplicate that slips
past it fails on flush with IntegrityError and is reported as already_granted.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.entitlement import Entitlement
from app.models.user import User
from app.services.chain.abi import normalize_address, normalize_tx_hash
from app.utils.dates import as_utc
from app.utils.metrics import entitlement_conflicts_total

logger = logging.getLogger(__name__)


class EntitlementKind(str, Enum):
    PURCHASE = "purchase"
    SUBSCRIPTION_GRANT = "subscription_grant"


class GrantStatus(str, Enum):
    GRANTED = "granted"
    ALREADY_GRANTED = "already_granted"


@dataclass(frozen=True)
class EntitlementGrant:
    """A grant to record; becomes an Entitlement row."""
    user_id: str
    item_id: str
    kind: EntitlementKind
    transaction_hash: str
    token_kind: str
    amount_paid: Decimal
    payer_address: str
    block_number: int


@dataclass(frozen=True)
class GrantResult:
    status: GrantStatus
    entitlement: Entitlement | None

    @property
    def granted(self) -> bool:
        return self.status is GrantStatus.GRANTED


@dataclass(frozen=True)
class SubscriptionState:
    tier_id: str | None
    start_date: datetime | None
    end_date: datetime | None
    is_active: bool

    def is_effective(self, now: datetime | None = None) -> bool:
        """Stored flag AND not yet expired."""
        now = now or datetime.now(timezone.utc)
        return self.is_active and self.end_date is not None and now < self.end_date

    def status(self, now: datetime | None = None) -> str:
        if not self.is_active:
            return "cancelled"
        return "active" if self.is_effective(now) else "expired"


class EntitlementStore:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def get_grant(self, transaction_hash: str) -> Entitlement | None:
        return (
            self.db.query(Entitlement)
            .filter(Entitlement.transaction_hash == normalize_tx_hash(transaction_hash))
            .one_or_none()
        )

    def has_grant(self, transaction_hash: str) -> bool:
        return self.get_grant(transaction_hash) is not None

    def has_item_grant(self, user_id: str, item_id: str) -> bool:
        """Purchase (or subscription grant) of this exact item by this user."""
        return (
            self.db.query(Entitlement.id)
            .filter(Entitlement.user_id == user_id, Entitlement.item_id == item_id)
            .first()
            is not None
        )

    def list_grants(self, user_id: str, kind: EntitlementKind | None = None) -> list[Entitlement]:
        query = self.db.query(Entitlement).filter(Entitlement.user_id == user_id)
        if kind is not None:
            query = query.filter(Entitlement.kind == kind.value)
        return query.order_by(Entitlement.granted_at.desc()).all()

    def try_grant(self, grant: EntitlementGrant, commit: bool = True) -> GrantResult:
        """
        Record the grant unless this transaction hash already produced one.
        With commit=False the row is flushed (the unique index is checked)
        and the caller commits together with its own changes.
        """
        tx_hash = normalize_tx_hash(grant.transaction_hash)
        existing = self.get_grant(tx_hash)
        if existing:
            logger.info(
                "entitlement_already_granted",
                extra={"transaction_hash": tx_hash, "user_id": grant.user_id, "item_id": grant.item_id},
            )
            return GrantResult(GrantStatus.ALREADY_GRANTED, existing)

        entitlement = Entitlement(
            user_id=grant.user_id,
            item_id=grant.item_id,
            kind=grant.kind.value,
            transaction_hash=tx_hash,
            token_kind=grant.token_kind,
            amount_paid=grant.amount_paid,
            payer_address=normalize_address(grant.payer_address),
            block_number=grant.block_number,
            granted_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(entitlement)
            self.db.flush()
            if commit:
                self.db.commit()
        except IntegrityError:
            self.db.rollback()
            entitlement_conflicts_total.inc()
            logger.warning(
                "entitlement_duplicate",
                extra={"transaction_hash": tx_hash, "user_id": grant.user_id, "item_id": grant.item_id},
            )
            return GrantResult(GrantStatus.ALREADY_GRANTED, self.get_grant(tx_hash))

        logger.info(
            "entitlement_granted",
            extra={
                "transaction_hash": tx_hash,
                "user_id": grant.user_id,
                "item_id": grant.item_id,
                "item_kind": grant.kind.value,
            },
        )
        return GrantResult(GrantStatus.GRANTED, entitlement)

    # ------------------------------------------------------------------
    # Subscription state (single writer per user, last write wins)
    # ------------------------------------------------------------------

    def get_subscription(self, user_id: str) -> SubscriptionState | None:
        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        if user is None or not user.has_subscription():
            return None
        return SubscriptionState(
            tier_id=user.subscription_tier_id,
            start_date=as_utc(user.subscription_start_date),
            end_date=as_utc(user.subscription_end_date),
            is_active=bool(user.subscription_is_active),
        )

    def set_subscription(self, user_id: str, state: SubscriptionState, commit: bool = True) -> None:
        res = self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                subscription_tier_id=state.tier_id,
                subscription_start_date=state.start_date,
                subscription_end_date=state.end_date,
                subscription_is_active=state.is_active,
                updated_at=datetime.now(timezone.utc),
            )
        )
        if res.rowcount == 0:
            raise LookupError(f"User not found: {user_id}")
        if commit:
            self.db.commit()
