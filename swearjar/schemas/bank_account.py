"""
Pydantic schemas for linked bank account endpoints.

The Plaid access token is accepted on link and never returned.
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

AccountType = Literal["checking", "savings", "credit", "investment", "loan", "other"]


class BankAccountLinkRequest(BaseModel):
    """Request body for POST /bank-accounts (outcome of the Plaid token exchange)."""
    plaid_account_id: str = Field(min_length=1, max_length=255)
    plaid_item_id: str = Field(min_length=1, max_length=255)
    access_token: str = Field(min_length=1)
    institution_name: str = Field(min_length=1, max_length=255)
    account_name: str = Field(min_length=1, max_length=255)
    account_type: AccountType = "checking"
    mask: str | None = Field(None, max_length=10)


class BankAccountPermissionsRequest(BaseModel):
    """Request body for PATCH /bank-accounts/{id}."""
    can_deposit: bool | None = None
    can_withdraw: bool | None = None


class BankAccountResponse(BaseModel):
    id: uuid.UUID
    institution_name: str
    account_name: str
    account_type: str
    mask: str | None
    verification_status: str
    verified_at: datetime | None
    can_deposit: bool
    can_withdraw: bool
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}
