"""
Principal: the authenticated actor of a request, as issued by the credential service.
Immutable for the duration of a request.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class WhitelistStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Principal(BaseModel):
    id: str
    wallet_address: str = Field(..., alias="walletAddress")
    role: Role = Role.USER
    whitelist_status: WhitelistStatus = Field(WhitelistStatus.PENDING, alias="whitelistStatus")

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def is_whitelisted(self) -> bool:
        return self.whitelist_status is WhitelistStatus.APPROVED

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
