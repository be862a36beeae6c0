"""
Pydantic schemas for jar membership endpoints.
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class MemberPermissions(BaseModel):
    """Optional flag overrides; omitted flags take the role's defaults."""
    can_deposit: bool | None = None
    can_withdraw: bool | None = None
    can_invite: bool | None = None
    can_view_transactions: bool | None = None


class InviteMemberRequest(BaseModel):
    """Request body for POST /jars/{id}/members."""
    user_id: uuid.UUID
    role: Literal["member", "admin"] = "member"
    permissions: MemberPermissions | None = None


class UpdateRoleRequest(BaseModel):
    """Request body for PUT /jars/{id}/members/{user_id}/role."""
    role: Literal["member", "admin"]
    permissions: MemberPermissions | None = None


class MembershipResponse(BaseModel):
    user_id: uuid.UUID
    role: str
    can_deposit: bool
    can_withdraw: bool
    can_invite: bool
    can_view_transactions: bool
    joined_at: datetime

    model_config = {"from_attributes": True}
