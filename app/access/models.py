"""
DTO access: AccessContext (input of decide_access) and AccessDecision.
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class AccessContext(BaseModel):
    """Single input contract for decide_access: who asks, what they own, what the item allows."""

    user_id: str
    whitelist_approved: bool = False
    has_entitlement: bool = False
    # stored flag AND now < end_date, already evaluated by the caller
    subscription_effective: bool = False
    item_free_with_subscription: bool = False

    model_config = {"frozen": True}


class AccessDecision(BaseModel):
    allowed: bool
    reason: str = Field(
        ...,
        description="whitelist / entitlement / subscription / none",
    )

    model_config = {"frozen": True}
