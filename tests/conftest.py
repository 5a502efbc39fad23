"""
Shared fixtures. Settings are read at import time, so the environment is
filled in before any app module is imported.
"""
import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")

os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_DIR}/app.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("STORE_WALLET_ADDRESS", "0x1111111111111111111111111111111111111111")
os.environ.setdefault("AUTH_TOKEN_SECRET", "test-secret-for-principal-tokens")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.db.base import Base  # noqa: E402
from app.models.entitlement import Entitlement  # noqa: E402,F401
from app.models.subscription_tier import SubscriptionTier  # noqa: E402
from app.models.user import User  # noqa: E402,F401
from app.models.video import Video  # noqa: E402
from app.services.auth.principal import Principal, WhitelistStatus  # noqa: E402

STORE_WALLET = os.environ["STORE_WALLET_ADDRESS"]
USDC = "0x036cbd53842c5426634e792954da7dfd334ff160"
PAYER = "0x2222222222222222222222222222222222222222"


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite, so separate connections (threads) share one database."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'store.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng, tables=[User.__table__, Video.__table__, SubscriptionTier.__table__, Entitlement.__table__])
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def principal():
    return Principal(
        id="user-1",
        walletAddress=PAYER,
        whitelistStatus=WhitelistStatus.APPROVED,
    )


@pytest.fixture
def pending_principal():
    return Principal(id="user-2", walletAddress="0x3333333333333333333333333333333333333333")


@pytest.fixture
def video(db):
    v = Video(
        id="video-1",
        title="Three-card spread",
        description="Reading the past, present and future cards",
        price_usd=Decimal("5.00"),
        is_free_with_subscription=False,
        video_url="https://cdn.example.com/videos/video-1.mp4",
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(v)
    db.commit()
    return v


@pytest.fixture
def tier(db):
    t = SubscriptionTier(
        id="tier-monthly",
        name="Monthly",
        price_usd=Decimal("10.00"),
        duration_days=30,
        benefits=["All subscriber videos"],
        is_active=True,
    )
    db.add(t)
    db.commit()
    return t
