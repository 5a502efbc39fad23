from sqlalchemy.orm import Session

from app.models.subscription_tier import SubscriptionTier
from app.models.video import Video


class CatalogService:
    """Read side of the catalog: prices and active flags of purchasable items."""

    def __init__(self, db: Session):
        self.db = db

    def get_video(self, video_id: str) -> Video | None:
        return self.db.query(Video).filter(Video.id == video_id).one_or_none()

    def get_tier(self, tier_id: str) -> SubscriptionTier | None:
        return self.db.query(SubscriptionTier).filter(SubscriptionTier.id == tier_id).one_or_none()

    def list_active_tiers(self) -> list[SubscriptionTier]:
        return (
            self.db.query(SubscriptionTier)
            .filter(SubscriptionTier.is_active.is_(True))
            .order_by(SubscriptionTier.price_usd)
            .all()
        )

    def get_videos(self, video_ids: list[str]) -> list[Video]:
        if not video_ids:
            return []
        return self.db.query(Video).filter(Video.id.in_(video_ids)).all()
