"""
Content access rules (internal library).
Decision is a pure function; data loading lives in PurchaseOrchestrator.
"""
from app.access.access import decide_access
from app.access.models import AccessContext, AccessDecision

__all__ = [
    "AccessContext",
    "AccessDecision",
    "decide_access",
]
