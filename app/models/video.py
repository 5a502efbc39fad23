"""
Video model: paid content item.
price_usd is the single-purchase price; is_free_with_subscription opens it to subscribers.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, Text

from app.db.base import Base


class Video(Base):
    __tablename__ = "videos"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    video_type = Column(String, nullable=False, default="tutorial")  # exercise / meditation / tutorial
    category = Column(String, nullable=True)
    price_usd = Column(Numeric(20, 6), nullable=False)
    is_free_with_subscription = Column(Boolean, nullable=False, default=False)
    video_url = Column(String, nullable=False)
    thumbnail_url = Column(String, nullable=True)
    preview_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
