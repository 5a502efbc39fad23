from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_current_principal, get_purchase_orchestrator
from app.schemas.purchases import VideoContentOut, VideoOut
from app.services.auth.principal import Principal
from app.services.payments.failure_types import PurchaseStatus, http_status_for
from app.services.purchases.service import PurchaseOrchestrator


router = APIRouter(prefix="/videos", tags=["videos"])


@router.get("/purchased", response_model=list[VideoOut])
def list_purchased(
    principal: Principal = Depends(get_current_principal),
    orchestrator: PurchaseOrchestrator = Depends(get_purchase_orchestrator),
) -> list[VideoOut]:
    videos = orchestrator.list_purchased_videos(principal)
    return [
        VideoOut(
            id=video.id,
            title=video.title,
            description=video.description,
            videoType=video.video_type,
            category=video.category,
            priceUsd=video.price_usd,
            isFreeWithSubscription=video.is_free_with_subscription,
            thumbnailUrl=video.thumbnail_url,
            previewUrl=video.preview_url,
        )
        for video in videos
    ]


@router.get("/{video_id}/content", response_model=VideoContentOut)
def get_content(
    video_id: str,
    principal: Principal = Depends(get_current_principal),
    orchestrator: PurchaseOrchestrator = Depends(get_purchase_orchestrator),
) -> VideoContentOut:
    """Media URL for a video the principal has access to."""
    content = orchestrator.get_video_content(principal, video_id)
    if content.status is PurchaseStatus.ITEM_UNAVAILABLE:
        raise HTTPException(status_code=http_status_for(content.status), detail="Video not found")
    if content.status is PurchaseStatus.FORBIDDEN:
        raise HTTPException(
            status_code=http_status_for(content.status),
            detail="Purchase this video or subscribe to watch it",
        )
    return VideoContentOut(
        videoUrl=content.video_url,
        expiresAt=content.expires_at,
        accessReason=content.decision.reason,
    )
