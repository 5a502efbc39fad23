"""
PurchaseOrchestrator — grant-or-reject workflow for paid content.

Stages per purchase request (terminal states in brackets):
    authorizing -> resolving item -> verifying -> granting -> [granted]
with exits [unauthorized], [item_unavailable], [payment failure], [already_granted].

The transaction hash is the only correlation key between a payment and an
item: EntitlementStore.try_grant makes the first grant for a hash win, so
resubmitting the same hash (client retries, chain_unavailable) is safe.
"""
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

import redis
from sqlalchemy.orm import Session

from app.access import AccessContext, AccessDecision, decide_access
from app.models.entitlement import Entitlement
from app.models.subscription_tier import SubscriptionTier
from app.models.user import User
from app.models.video import Video
from app.services.auth.principal import Principal
from app.services.catalog.service import CatalogService
from app.services.chain.abi import normalize_tx_hash
from app.services.entitlements.service import (
    EntitlementGrant,
    EntitlementKind,
    EntitlementStore,
    SubscriptionState,
)
from app.services.payments.failure_types import (
    PAYMENT_FACT_FAILURES,
    PaymentVerificationError,
    PurchaseStatus,
    is_retryable,
)
from app.services.payments.models import PaymentClaim, TokenKind, VerifiedPayment
from app.services.payments.verifier import PaymentVerifier
from app.services.users.service import UserService, WalletConflictError
from app.utils.dates import add_calendar_days
from app.utils.metrics import purchase_duration_seconds, purchases_total, subscription_cancellations_total

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PurchaseResult:
    status: PurchaseStatus
    message: str = ""
    item_id: str | None = None
    entitlement: Entitlement | None = None
    payment: VerifiedPayment | None = None
    subscription: SubscriptionState | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (PurchaseStatus.GRANTED, PurchaseStatus.ALREADY_GRANTED, PurchaseStatus.CANCELLED)

    @property
    def retry_allowed(self) -> bool:
        return is_retryable(self.status)

    @property
    def new_payment_required(self) -> bool:
        """The claimed transaction can never satisfy this item; only a new payment can."""
        return self.status in PAYMENT_FACT_FAILURES


@dataclass(frozen=True)
class ContentAccess:
    status: PurchaseStatus
    decision: AccessDecision | None = None
    video_url: str | None = None
    expires_at: datetime | None = None


class PurchaseOrchestrator:
    def __init__(
        self,
        db: Session,
        verifier: PaymentVerifier,
        store_wallet_address: str,
        redis_client: redis.Redis | None = None,
        rate_limit: int = 5,
        rate_window_seconds: int = 60,
        subscription_timezone: str = "UTC",
        content_url_ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.verifier = verifier
        self.store_wallet_address = store_wallet_address
        self.catalog = CatalogService(db)
        self.entitlements = EntitlementStore(db)
        self.users = UserService(db)
        self._redis = redis_client
        self.rate_limit = rate_limit
        self.rate_window_seconds = rate_window_seconds
        self.subscription_timezone = subscription_timezone
        self.content_url_ttl_seconds = content_url_ttl_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Video purchase
    # ------------------------------------------------------------------

    def purchase_video(
        self,
        principal: Principal,
        video_id: str,
        transaction_hash: str,
        token_kind: TokenKind,
    ) -> PurchaseResult:
        start = time.time()
        result = self._purchase_video(principal, video_id, normalize_tx_hash(transaction_hash), token_kind)
        self._observe("video", principal, video_id, transaction_hash, result, time.time() - start)
        return result

    def _purchase_video(
        self,
        principal: Principal,
        video_id: str,
        tx_hash: str,
        token_kind: TokenKind,
    ) -> PurchaseResult:
        denied = self._authorize(principal)
        if denied:
            return denied

        video = self.catalog.get_video(video_id)
        if not video or not video.is_active:
            return PurchaseResult(PurchaseStatus.ITEM_UNAVAILABLE, "Video is not available for purchase", item_id=video_id)

        user, failure = self._load_user(principal, video.id)
        if failure:
            return failure

        # Ownership checks before any chain call
        existing = self.entitlements.get_grant(tx_hash)
        if existing:
            return PurchaseResult(
                PurchaseStatus.ALREADY_GRANTED,
                "Transaction already used for a grant",
                item_id=existing.item_id,
                entitlement=existing,
            )
        if self.entitlements.has_item_grant(user.id, video.id):
            return PurchaseResult(PurchaseStatus.ALREADY_GRANTED, "User already has access to this video", item_id=video.id)
        subscription = self.entitlements.get_subscription(user.id)
        if subscription and video.is_free_with_subscription and subscription.is_effective(self._clock()):
            return PurchaseResult(
                PurchaseStatus.ALREADY_GRANTED,
                "Video is included in the active subscription",
                item_id=video.id,
                subscription=subscription,
            )

        payment, failure = self._verify(video.price_usd, tx_hash, token_kind, video.id)
        if failure:
            return failure

        grant = self.entitlements.try_grant(
            EntitlementGrant(
                user_id=user.id,
                item_id=video.id,
                kind=EntitlementKind.PURCHASE,
                transaction_hash=tx_hash,
                token_kind=token_kind.value,
                amount_paid=payment.actual_amount,
                payer_address=payment.payer_address,
                block_number=payment.block_number,
            )
        )
        if not grant.granted:
            # concurrent duplicate submission of the same hash won the race
            return PurchaseResult(
                PurchaseStatus.ALREADY_GRANTED,
                "Transaction already used for a grant",
                item_id=video.id,
                entitlement=grant.entitlement,
                payment=payment,
            )
        return PurchaseResult(
            PurchaseStatus.GRANTED,
            "Purchase verified and access granted",
            item_id=video.id,
            entitlement=grant.entitlement,
            payment=payment,
        )

    # ------------------------------------------------------------------
    # Subscription purchase / lifecycle
    # ------------------------------------------------------------------

    def purchase_subscription(
        self,
        principal: Principal,
        tier_id: str,
        transaction_hash: str,
        token_kind: TokenKind,
    ) -> PurchaseResult:
        start = time.time()
        result = self._purchase_subscription(principal, tier_id, normalize_tx_hash(transaction_hash), token_kind)
        self._observe("subscription", principal, tier_id, transaction_hash, result, time.time() - start)
        return result

    def _purchase_subscription(
        self,
        principal: Principal,
        tier_id: str,
        tx_hash: str,
        token_kind: TokenKind,
    ) -> PurchaseResult:
        denied = self._authorize(principal)
        if denied:
            return denied

        tier = self.catalog.get_tier(tier_id)
        if not tier or not tier.is_active:
            return PurchaseResult(PurchaseStatus.ITEM_UNAVAILABLE, "Subscription tier is not available", item_id=tier_id)

        user, failure = self._load_user(principal, tier.id)
        if failure:
            return failure

        existing = self.entitlements.get_grant(tx_hash)
        if existing:
            return PurchaseResult(
                PurchaseStatus.ALREADY_GRANTED,
                "Transaction already used for a grant",
                item_id=existing.item_id,
                entitlement=existing,
                subscription=self.entitlements.get_subscription(user.id),
            )

        payment, failure = self._verify(tier.price_usd, tx_hash, token_kind, tier.id)
        if failure:
            return failure

        try:
            grant = self.entitlements.try_grant(
                EntitlementGrant(
                    user_id=user.id,
                    item_id=tier.id,
                    kind=EntitlementKind.SUBSCRIPTION_GRANT,
                    transaction_hash=tx_hash,
                    token_kind=token_kind.value,
                    amount_paid=payment.actual_amount,
                    payer_address=payment.payer_address,
                    block_number=payment.block_number,
                ),
                commit=False,
            )
            if not grant.granted:
                return PurchaseResult(
                    PurchaseStatus.ALREADY_GRANTED,
                    "Transaction already used for a grant",
                    item_id=tier.id,
                    entitlement=grant.entitlement,
                    payment=payment,
                )
            state = self._new_period(tier)
            # replaces any prior subscription: no stacking of remaining days
            self.entitlements.set_subscription(user.id, state, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return PurchaseResult(
            PurchaseStatus.GRANTED,
            "Subscription purchased successfully",
            item_id=tier.id,
            entitlement=grant.entitlement,
            payment=payment,
            subscription=state,
            detail={"tier_name": tier.name},
        )

    def _new_period(self, tier: SubscriptionTier) -> SubscriptionState:
        start_date = self._clock()
        return SubscriptionState(
            tier_id=tier.id,
            start_date=start_date,
            end_date=add_calendar_days(start_date, tier.duration_days, self.subscription_timezone),
            is_active=True,
        )

    def cancel_subscription(self, principal: Principal) -> PurchaseResult:
        state = self.entitlements.get_subscription(principal.id)
        if state is None or not state.is_active:
            return PurchaseResult(PurchaseStatus.NO_ACTIVE_SUBSCRIPTION, "No active subscription found")

        # tier and dates stay for history
        cancelled = replace(state, is_active=False)
        self.entitlements.set_subscription(principal.id, cancelled)
        subscription_cancellations_total.inc()
        logger.info(
            "subscription_cancelled",
            extra={"user_id": principal.id, "item_id": state.tier_id},
        )
        return PurchaseResult(
            PurchaseStatus.CANCELLED,
            "Subscription cancelled successfully",
            item_id=state.tier_id,
            subscription=cancelled,
        )

    def get_subscription_status(self, principal: Principal) -> dict[str, Any]:
        state = self.entitlements.get_subscription(principal.id)
        now = self._clock()
        return {
            "hasSubscription": state is not None,
            "isActive": bool(state and state.is_effective(now)),
            "status": state.status(now) if state else "none",
            "subscription": state,
        }

    def list_subscription_tiers(self) -> list[SubscriptionTier]:
        return self.catalog.list_active_tiers()

    # ------------------------------------------------------------------
    # Content access
    # ------------------------------------------------------------------

    def has_access(self, principal: Principal, video: Video) -> AccessDecision:
        subscription = self.entitlements.get_subscription(principal.id)
        ctx = AccessContext(
            user_id=principal.id,
            whitelist_approved=principal.is_whitelisted,
            has_entitlement=self.entitlements.has_item_grant(principal.id, video.id),
            subscription_effective=bool(subscription and subscription.is_effective(self._clock())),
            item_free_with_subscription=bool(video.is_free_with_subscription),
        )
        return decide_access(ctx)

    def get_video_content(self, principal: Principal, video_id: str) -> ContentAccess:
        video = self.catalog.get_video(video_id)
        if not video or not video.is_active:
            return ContentAccess(PurchaseStatus.ITEM_UNAVAILABLE)
        decision = self.has_access(principal, video)
        if not decision.allowed:
            return ContentAccess(PurchaseStatus.FORBIDDEN, decision=decision)
        return ContentAccess(
            PurchaseStatus.GRANTED,
            decision=decision,
            video_url=video.video_url,
            expires_at=self._clock() + timedelta(seconds=self.content_url_ttl_seconds),
        )

    def list_purchased_videos(self, principal: Principal) -> list[Video]:
        grants = self.entitlements.list_grants(principal.id, EntitlementKind.PURCHASE)
        return self.catalog.get_videos([g.item_id for g in grants])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _authorize(self, principal: Principal) -> PurchaseResult | None:
        if not principal.is_whitelisted:
            return PurchaseResult(PurchaseStatus.UNAUTHORIZED, "User not whitelisted for purchases")
        if not self._check_rate_limit(principal.id):
            return PurchaseResult(PurchaseStatus.RATE_LIMITED, "Too many purchase attempts. Try again later.")
        return None

    def _load_user(self, principal: Principal, item_id: str) -> tuple[User | None, PurchaseResult | None]:
        try:
            return self.users.get_or_create_user(principal), None
        except WalletConflictError as e:
            return None, PurchaseResult(
                PurchaseStatus.WALLET_CONFLICT,
                "Wallet is already registered to another account",
                item_id=item_id,
                detail={"walletAddress": e.wallet_address},
            )

    def _verify(
        self,
        price_usd: Decimal,
        tx_hash: str,
        token_kind: TokenKind,
        item_id: str,
    ) -> tuple[VerifiedPayment | None, PurchaseResult | None]:
        claim = PaymentClaim(
            transaction_hash=tx_hash,
            token_kind=token_kind,
            expected_amount=Decimal(price_usd),
            recipient_address=self.store_wallet_address,
        )
        try:
            return self.verifier.verify(claim), None
        except PaymentVerificationError as e:
            return None, PurchaseResult(e.failure_type, str(e), item_id=item_id, detail=e.detail)

    def _check_rate_limit(self, user_id: str) -> bool:
        """At most rate_limit purchase attempts per window. Shared by all API replicas."""
        if self._redis is None:
            return True
        key = f"purchase_rate:{user_id}"
        try:
            current = self._redis.incr(key)
            if current == 1:
                self._redis.expire(key, self.rate_window_seconds)
            return current <= self.rate_limit
        except redis.RedisError as e:
            logger.warning("purchase_rate_limit_redis_error", extra={"error": str(e)})
            return True  # fail open: Redis outage must not block paid purchases

    def _observe(
        self,
        item_kind: str,
        principal: Principal,
        item_id: str,
        transaction_hash: str,
        result: PurchaseResult,
        duration: float,
    ) -> None:
        purchases_total.labels(item_kind=item_kind, status=result.status.value).inc()
        purchase_duration_seconds.labels(item_kind=item_kind).observe(duration)
        extra = {
            "user_id": principal.id,
            "item_id": item_id,
            "item_kind": item_kind,
            "transaction_hash": normalize_tx_hash(transaction_hash),
            "status": result.status.value,
        }
        if result.payment:
            extra["actual"] = str(result.payment.actual_amount)
            extra["payer"] = result.payment.payer_address
        if result.status is PurchaseStatus.GRANTED:
            logger.info("purchase_granted", extra=extra)
        elif result.ok:
            logger.info("purchase_already_granted", extra=extra)
        else:
            extra["new_payment_required"] = result.new_payment_required
            logger.warning("purchase_rejected", extra={**extra, "error": result.message})
