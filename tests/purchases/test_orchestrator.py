"""Tests for PurchaseOrchestrator: SQLite-backed store, mocked verifier and Redis."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import redis

from app.models.entitlement import Entitlement
from app.models.subscription_tier import SubscriptionTier
from app.services.auth.principal import Principal, WhitelistStatus
from app.services.entitlements.service import EntitlementStore, SubscriptionState
from app.services.payments.failure_types import PaymentVerificationError, PurchaseStatus
from app.services.payments.models import TokenKind, VerifiedPayment
from app.services.purchases.service import PurchaseOrchestrator
from app.services.users.service import UserService, WalletConflictError

STORE = "0x1111111111111111111111111111111111111111"
PAYER = "0x2222222222222222222222222222222222222222"
TX_HASH = "0x" + "aa" * 32
NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def _payment(amount: str = "5.00", tx_hash: str = TX_HASH) -> VerifiedPayment:
    return VerifiedPayment(
        transaction_hash=tx_hash,
        token_kind=TokenKind.FUNGIBLE,
        actual_amount=Decimal(amount),
        payer_address=PAYER,
        block_number=100,
        confirmations=1,
    )


@pytest.fixture
def verifier():
    v = MagicMock()
    v.verify.return_value = _payment()
    return v


@pytest.fixture
def orchestrator(db, verifier):
    return PurchaseOrchestrator(db, verifier, STORE, clock=lambda: NOW)


class TestPurchaseVideo:
    def test_granted_then_already_granted(self, orchestrator, verifier, principal, video, db):
        first = orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        second = orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)

        assert first.status is PurchaseStatus.GRANTED
        assert first.payment.actual_amount == Decimal("5.00")
        assert second.status is PurchaseStatus.ALREADY_GRANTED
        assert second.ok
        assert verifier.verify.call_count == 1
        assert db.query(Entitlement).count() == 1

    def test_claim_uses_price_and_store_wallet(self, orchestrator, verifier, principal, video):
        orchestrator.purchase_video(principal, video.id, TX_HASH.upper().replace("0X", "0x"), TokenKind.NATIVE)

        claim = verifier.verify.call_args.args[0]
        assert claim.expected_amount == Decimal("5.00")
        assert claim.recipient_address == STORE
        assert claim.token_kind is TokenKind.NATIVE
        assert claim.transaction_hash == TX_HASH

    def test_not_whitelisted(self, orchestrator, verifier, pending_principal, video):
        result = orchestrator.purchase_video(pending_principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        assert result.status is PurchaseStatus.UNAUTHORIZED
        verifier.verify.assert_not_called()

    def test_unknown_video(self, orchestrator, verifier, principal):
        result = orchestrator.purchase_video(principal, "missing", TX_HASH, TokenKind.FUNGIBLE)
        assert result.status is PurchaseStatus.ITEM_UNAVAILABLE
        verifier.verify.assert_not_called()

    def test_inactive_video(self, orchestrator, principal, video, db):
        video.is_active = False
        db.commit()
        result = orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        assert result.status is PurchaseStatus.ITEM_UNAVAILABLE

    def test_payment_failure_propagated_unchanged(self, orchestrator, verifier, principal, video, db):
        verifier.verify.side_effect = PaymentVerificationError(
            PurchaseStatus.INSUFFICIENT_AMOUNT,
            "Insufficient payment",
            {"expected": "5.00", "actual": "4.99"},
        )
        result = orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)

        assert result.status is PurchaseStatus.INSUFFICIENT_AMOUNT
        assert result.detail == {"expected": "5.00", "actual": "4.99"}
        assert not result.ok
        assert result.new_payment_required
        assert db.query(Entitlement).count() == 0

    def test_chain_unavailable_then_retry_succeeds(self, orchestrator, verifier, principal, video):
        verifier.verify.side_effect = [
            PaymentVerificationError(PurchaseStatus.CHAIN_UNAVAILABLE, "timed out"),
            _payment(),
        ]
        first = orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        second = orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)

        assert first.status is PurchaseStatus.CHAIN_UNAVAILABLE
        assert first.retry_allowed
        assert not first.new_payment_required
        assert second.status is PurchaseStatus.GRANTED

    def test_owned_video_short_circuits_before_chain(self, orchestrator, verifier, principal, video):
        orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        result = orchestrator.purchase_video(principal, video.id, "0x" + "bb" * 32, TokenKind.FUNGIBLE)

        assert result.status is PurchaseStatus.ALREADY_GRANTED
        assert verifier.verify.call_count == 1

    def test_subscription_covers_free_video(self, orchestrator, verifier, principal, video, db):
        video.is_free_with_subscription = True
        db.commit()
        UserService(db).get_or_create_user(principal)
        EntitlementStore(db).set_subscription(
            principal.id, SubscriptionState("tier-monthly", NOW, NOW + timedelta(days=5), True)
        )

        result = orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)

        assert result.status is PurchaseStatus.ALREADY_GRANTED
        verifier.verify.assert_not_called()

    def test_creates_user_profile_from_principal(self, orchestrator, principal, video, db):
        orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        user = UserService(db).get_by_id(principal.id)
        assert user.wallet_address == PAYER
        assert user.whitelist_status == "approved"

    def test_wallet_bound_to_other_user(self, orchestrator, verifier, principal, video, tier, db):
        orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        verifier.verify.reset_mock()
        other = Principal(id="user-9", walletAddress=PAYER, whitelistStatus=WhitelistStatus.APPROVED)

        result = orchestrator.purchase_video(other, video.id, "0x" + "bb" * 32, TokenKind.FUNGIBLE)
        assert result.status is PurchaseStatus.WALLET_CONFLICT
        assert result.detail == {"walletAddress": PAYER}
        assert not result.retry_allowed

        result = orchestrator.purchase_subscription(other, tier.id, "0x" + "cc" * 32, TokenKind.NATIVE)
        assert result.status is PurchaseStatus.WALLET_CONFLICT
        verifier.verify.assert_not_called()
        assert UserService(db).get_by_id("user-9") is None


class TestUserService:
    def test_existing_profile_returned(self, principal, db):
        created = UserService(db).get_or_create_user(principal)
        assert UserService(db).get_or_create_user(principal).id == created.id
        assert UserService(db).get_by_wallet(PAYER).id == principal.id

    def test_wallet_conflict_raises(self, principal, db):
        UserService(db).get_or_create_user(principal)
        other = Principal(id="user-9", walletAddress=PAYER)
        with pytest.raises(WalletConflictError) as exc:
            UserService(db).get_or_create_user(other)
        assert exc.value.owner_id == principal.id

    def test_wallet_taken_between_check_and_insert(self, principal, db):
        owner = UserService(db).get_or_create_user(principal)
        other = Principal(id="user-9", walletAddress=PAYER)
        with patch.object(UserService, "get_by_wallet", side_effect=[None, owner]):
            with pytest.raises(WalletConflictError) as exc:
                UserService(db).get_or_create_user(other)
        assert exc.value.owner_id == principal.id
        assert UserService(db).get_by_id("user-9") is None


class TestRateLimit:
    def test_rate_limited_after_limit(self, db, verifier, principal, video):
        redis_client = MagicMock()
        redis_client.incr.side_effect = [1, 2, 3]
        orch = PurchaseOrchestrator(db, verifier, STORE, redis_client=redis_client, rate_limit=2, clock=lambda: NOW)

        results = [
            orch.purchase_video(principal, video.id, "0x" + f"{i:02x}" * 32, TokenKind.FUNGIBLE).status
            for i in range(3)
        ]

        assert results[-1] is PurchaseStatus.RATE_LIMITED
        redis_client.expire.assert_called_once_with(f"purchase_rate:{principal.id}", 60)

    def test_redis_error_fails_open(self, db, verifier, principal, video):
        redis_client = MagicMock()
        redis_client.incr.side_effect = redis.ConnectionError("down")
        orch = PurchaseOrchestrator(db, verifier, STORE, redis_client=redis_client, clock=lambda: NOW)

        result = orch.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        assert result.status is PurchaseStatus.GRANTED


class TestSubscriptions:
    def test_purchase_sets_calendar_period(self, orchestrator, verifier, principal, tier):
        verifier.verify.return_value = _payment("10.00")
        result = orchestrator.purchase_subscription(principal, tier.id, TX_HASH, TokenKind.FUNGIBLE)

        assert result.status is PurchaseStatus.GRANTED
        assert result.subscription.start_date == NOW
        assert result.subscription.end_date == NOW + timedelta(days=30)
        assert result.subscription.is_active
        claim = verifier.verify.call_args.args[0]
        assert claim.expected_amount == Decimal("10.00")

    def test_end_date_keeps_wall_clock_across_dst(self, db, verifier, principal, tier):
        # 2026-03-08 is the US spring-forward date
        orch = PurchaseOrchestrator(db, verifier, STORE, subscription_timezone="America/New_York", clock=lambda: NOW)
        result = orch.purchase_subscription(principal, tier.id, TX_HASH, TokenKind.FUNGIBLE)
        assert result.subscription.end_date == NOW + timedelta(days=30) - timedelta(hours=1)

    def test_subscription_state_persisted(self, orchestrator, principal, tier, db):
        orchestrator.purchase_subscription(principal, tier.id, TX_HASH, TokenKind.FUNGIBLE)

        state = EntitlementStore(db).get_subscription(principal.id)
        assert state.tier_id == tier.id
        assert state.end_date == NOW + timedelta(days=30)

    def test_same_hash_twice(self, orchestrator, verifier, principal, tier):
        orchestrator.purchase_subscription(principal, tier.id, TX_HASH, TokenKind.FUNGIBLE)
        result = orchestrator.purchase_subscription(principal, tier.id, TX_HASH, TokenKind.FUNGIBLE)

        assert result.status is PurchaseStatus.ALREADY_GRANTED
        assert verifier.verify.call_count == 1

    def test_repurchase_replaces_period(self, db, verifier, principal, tier):
        later = NOW + timedelta(days=10)
        PurchaseOrchestrator(db, verifier, STORE, clock=lambda: NOW).purchase_subscription(
            principal, tier.id, TX_HASH, TokenKind.FUNGIBLE
        )
        result = PurchaseOrchestrator(db, verifier, STORE, clock=lambda: later).purchase_subscription(
            principal, tier.id, "0x" + "bb" * 32, TokenKind.FUNGIBLE
        )

        assert result.subscription.start_date == later
        assert result.subscription.end_date == later + timedelta(days=30)

    def test_failed_payment_leaves_no_state(self, orchestrator, verifier, principal, tier, db):
        verifier.verify.side_effect = PaymentVerificationError(PurchaseStatus.TRANSACTION_NOT_FOUND, "not found")
        result = orchestrator.purchase_subscription(principal, tier.id, TX_HASH, TokenKind.FUNGIBLE)

        assert result.status is PurchaseStatus.TRANSACTION_NOT_FOUND
        assert EntitlementStore(db).get_subscription(principal.id) is None

    def test_unknown_tier(self, orchestrator, principal):
        result = orchestrator.purchase_subscription(principal, "missing", TX_HASH, TokenKind.FUNGIBLE)
        assert result.status is PurchaseStatus.ITEM_UNAVAILABLE

    def test_cancel_keeps_end_date(self, orchestrator, principal, tier):
        orchestrator.purchase_subscription(principal, tier.id, TX_HASH, TokenKind.FUNGIBLE)

        result = orchestrator.cancel_subscription(principal)
        status = orchestrator.get_subscription_status(principal)

        assert result.status is PurchaseStatus.CANCELLED
        assert status["hasSubscription"] is True
        assert status["isActive"] is False
        assert status["status"] == "cancelled"
        assert status["subscription"].end_date == NOW + timedelta(days=30)
        assert status["subscription"].tier_id == tier.id

    def test_cancel_twice(self, orchestrator, principal, tier):
        orchestrator.purchase_subscription(principal, tier.id, TX_HASH, TokenKind.FUNGIBLE)
        orchestrator.cancel_subscription(principal)
        assert orchestrator.cancel_subscription(principal).status is PurchaseStatus.NO_ACTIVE_SUBSCRIPTION

    def test_cancel_without_subscription(self, orchestrator, principal):
        assert orchestrator.cancel_subscription(principal).status is PurchaseStatus.NO_ACTIVE_SUBSCRIPTION

    def test_status_without_subscription(self, orchestrator, principal):
        status = orchestrator.get_subscription_status(principal)
        assert status == {"hasSubscription": False, "isActive": False, "status": "none", "subscription": None}

    def test_expired_subscription_status(self, db, verifier, principal, tier):
        PurchaseOrchestrator(db, verifier, STORE, clock=lambda: NOW).purchase_subscription(
            principal, tier.id, TX_HASH, TokenKind.FUNGIBLE
        )
        later = PurchaseOrchestrator(db, verifier, STORE, clock=lambda: NOW + timedelta(days=31))
        status = later.get_subscription_status(principal)
        assert status["isActive"] is False
        assert status["status"] == "expired"

    def test_list_tiers_only_active(self, orchestrator, tier, db):
        tier_off = SubscriptionTier(id="tier-old", name="Old", price_usd=Decimal("1"), duration_days=7, is_active=False)
        db.add(tier_off)
        db.commit()
        assert [t.id for t in orchestrator.list_subscription_tiers()] == [tier.id]


class TestAccess:
    def _buyer(self, status: WhitelistStatus) -> Principal:
        return Principal(id="buyer", walletAddress="0x5555555555555555555555555555555555555555", whitelistStatus=status)

    def test_whitelisted_always_has_access(self, orchestrator, principal, video):
        decision = orchestrator.has_access(principal, video)
        assert decision.allowed
        assert decision.reason == "whitelist"

    def test_pending_without_purchase_denied(self, orchestrator, pending_principal, video):
        content = orchestrator.get_video_content(pending_principal, video.id)
        assert content.status is PurchaseStatus.FORBIDDEN
        assert content.video_url is None

    def test_entitlement_survives_whitelist_revocation(self, orchestrator, video):
        orchestrator.purchase_video(self._buyer(WhitelistStatus.APPROVED), video.id, TX_HASH, TokenKind.FUNGIBLE)
        decision = orchestrator.has_access(self._buyer(WhitelistStatus.REJECTED), video)
        assert decision.allowed
        assert decision.reason == "entitlement"

    def test_subscription_opens_free_video_only(self, orchestrator, db, video):
        buyer = self._buyer(WhitelistStatus.PENDING)
        UserService(db).get_or_create_user(buyer)
        EntitlementStore(db).set_subscription(buyer.id, SubscriptionState("t", NOW, NOW + timedelta(days=3), True))

        assert not orchestrator.has_access(buyer, video).allowed
        video.is_free_with_subscription = True
        db.commit()
        assert orchestrator.has_access(buyer, video).reason == "subscription"

    def test_content_url_expires_in_an_hour(self, orchestrator, principal, video):
        content = orchestrator.get_video_content(principal, video.id)
        assert content.status is PurchaseStatus.GRANTED
        assert content.video_url == video.video_url
        assert content.expires_at == NOW + timedelta(hours=1)

    def test_content_for_unknown_video(self, orchestrator, principal):
        assert orchestrator.get_video_content(principal, "missing").status is PurchaseStatus.ITEM_UNAVAILABLE

    def test_list_purchased_videos(self, orchestrator, principal, video, tier):
        orchestrator.purchase_video(principal, video.id, TX_HASH, TokenKind.FUNGIBLE)
        orchestrator.purchase_subscription(principal, tier.id, "0x" + "bb" * 32, TokenKind.FUNGIBLE)

        assert [v.id for v in orchestrator.list_purchased_videos(principal)] == [video.id]
