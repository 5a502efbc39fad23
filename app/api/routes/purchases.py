"""
Purchase and subscription routes.
Every orchestrator outcome maps to a status code through http_status_for;
the body always carries the outcome name and a retry hint.
"""
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_current_principal, get_purchase_orchestrator
from app.core.config import settings
from app.schemas.purchases import (
    PurchaseOut,
    SubscriptionOut,
    SubscriptionPurchaseIn,
    SubscriptionStatusOut,
    SubscriptionTierOut,
    VideoPurchaseIn,
)
from app.services.auth.principal import Principal
from app.services.entitlements.service import SubscriptionState
from app.services.payments.failure_types import http_status_for
from app.services.purchases.service import PurchaseOrchestrator, PurchaseResult

router = APIRouter(tags=["purchases"])


def _subscription_out(state: SubscriptionState | None) -> SubscriptionOut | None:
    if state is None:
        return None
    return SubscriptionOut(
        tierId=state.tier_id,
        startDate=state.start_date,
        endDate=state.end_date,
        isActive=state.is_active,
    )


def _explorer_tx_url(transaction_hash: str) -> str:
    return f"{settings.chain_explorer_url.rstrip('/')}/tx/{transaction_hash}"


def _purchase_response(result: PurchaseResult, transaction_hash: str | None = None) -> JSONResponse:
    body = PurchaseOut(
        success=result.ok,
        status=result.status.value,
        message=result.message,
        itemId=result.item_id,
        transactionHash=transaction_hash,
        subscription=_subscription_out(result.subscription),
        retryAllowed=result.retry_allowed,
        newPaymentRequired=result.new_payment_required,
        detail=result.detail,
    )
    if result.payment:
        body.amountPaid = str(result.payment.actual_amount)
        body.payerAddress = result.payment.payer_address
        body.blockNumber = result.payment.block_number
        body.confirmations = result.payment.confirmations
        body.explorerUrl = _explorer_tx_url(result.payment.transaction_hash)
    return JSONResponse(status_code=http_status_for(result.status), content=body.model_dump(mode="json"))


@router.post("/purchase/video", response_model=PurchaseOut)
def purchase_video(
    body: VideoPurchaseIn = Body(...),
    principal: Principal = Depends(get_current_principal),
    orchestrator: PurchaseOrchestrator = Depends(get_purchase_orchestrator),
):
    """Verify an on-chain payment for a video and grant access."""
    result = orchestrator.purchase_video(principal, body.video_id, body.transaction_hash, body.payment_token)
    return _purchase_response(result, body.transaction_hash)


@router.post("/purchase/subscription", response_model=PurchaseOut)
def purchase_subscription(
    body: SubscriptionPurchaseIn = Body(...),
    principal: Principal = Depends(get_current_principal),
    orchestrator: PurchaseOrchestrator = Depends(get_purchase_orchestrator),
):
    """Verify an on-chain payment for a subscription tier and start a new period."""
    result = orchestrator.purchase_subscription(principal, body.tier_id, body.transaction_hash, body.payment_token)
    return _purchase_response(result, body.transaction_hash)


@router.post("/subscription/cancel", response_model=PurchaseOut)
def cancel_subscription(
    principal: Principal = Depends(get_current_principal),
    orchestrator: PurchaseOrchestrator = Depends(get_purchase_orchestrator),
):
    result = orchestrator.cancel_subscription(principal)
    return _purchase_response(result)


@router.get("/subscription/status", response_model=SubscriptionStatusOut)
def subscription_status(
    principal: Principal = Depends(get_current_principal),
    orchestrator: PurchaseOrchestrator = Depends(get_purchase_orchestrator),
) -> SubscriptionStatusOut:
    status = orchestrator.get_subscription_status(principal)
    return SubscriptionStatusOut(
        hasSubscription=status["hasSubscription"],
        isActive=status["isActive"],
        status=status["status"],
        subscription=_subscription_out(status["subscription"]),
    )


@router.get("/subscription/tiers", response_model=list[SubscriptionTierOut])
def list_tiers(
    orchestrator: PurchaseOrchestrator = Depends(get_purchase_orchestrator),
) -> list[SubscriptionTierOut]:
    return [
        SubscriptionTierOut(
            id=tier.id,
            name=tier.name,
            priceUsd=tier.price_usd,
            durationDays=tier.duration_days,
            benefits=tier.benefits or [],
        )
        for tier in orchestrator.list_subscription_tiers()
    ]
