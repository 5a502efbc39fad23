"""
Decision only: decide_access(ctx) -> AccessDecision.
Pure function, no I/O. Whitelist approval alone is sufficient, so access is
monotonic in it regardless of payment state.
"""
from __future__ import annotations

from app.access.models import AccessContext, AccessDecision


def decide_access(ctx: AccessContext) -> AccessDecision:
    if ctx.whitelist_approved:
        return AccessDecision(allowed=True, reason="whitelist")

    if ctx.has_entitlement:
        return AccessDecision(allowed=True, reason="entitlement")

    if ctx.subscription_effective and ctx.item_free_with_subscription:
        return AccessDecision(allowed=True, reason="subscription")

    return AccessDecision(allowed=False, reason="none")
