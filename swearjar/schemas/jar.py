"""
Pydantic schemas for Jar endpoints.

All monetary amounts are expressed in integer cents (e.g., $2.50 = 250).
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from swearjar.schemas.membership import MembershipResponse

Currency = Literal["USD", "CAD", "EUR", "GBP"]


class SwearWord(BaseModel):
    """One entry of a jar's penalty table."""
    word: str = Field(min_length=1, max_length=50)
    penalty_cents: int = Field(ge=1, description="Penalty in cents")


class JarSettings(BaseModel):
    """
    Jar settings. Every field is optional so the same model serves as a
    partial update: omitted fields keep their current value.
    """
    minimum_deposit_cents: int | None = Field(None, ge=1)
    maximum_deposit_cents: int | None = Field(None, ge=1)
    require_approval_for_withdrawals: bool | None = None
    is_public: bool | None = None
    auto_deduct_on_swear: bool | None = None
    swear_words: list[SwearWord] | None = None

    @model_validator(mode="after")
    def limits_are_ordered(self):
        if (
            self.minimum_deposit_cents is not None
            and self.maximum_deposit_cents is not None
            and self.minimum_deposit_cents > self.maximum_deposit_cents
        ):
            raise ValueError("minimum_deposit_cents cannot exceed maximum_deposit_cents")
        return self


class JarCreateRequest(BaseModel):
    """Request body for POST /jars."""
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    currency: Currency = "USD"
    settings: JarSettings | None = None


class JarUpdateRequest(BaseModel):
    """Request body for PATCH /jars/{id}."""
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    settings: JarSettings | None = None


class JarResponse(BaseModel):
    """Public representation of a jar, including its settings and statistics."""
    id: uuid.UUID
    name: str
    description: str | None
    owner_id: uuid.UUID
    balance_cents: int
    currency: str

    minimum_deposit_cents: int
    maximum_deposit_cents: int
    require_approval_for_withdrawals: bool
    is_public: bool
    auto_deduct_on_swear: bool
    swear_words: list[SwearWord]

    total_deposits_cents: int
    total_withdrawals_cents: int
    total_penalties_cents: int
    total_refunds_cents: int
    transaction_count: int
    average_deposit_cents: int
    last_activity_at: datetime | None

    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class JarDetailResponse(JarResponse):
    members: list[MembershipResponse]


class BalanceResponse(BaseModel):
    """
    Balance check response: includes both cached and computed values.

    The `match` field indicates whether the cached balance agrees with the
    balance computed from all completed transactions.
    """
    jar_id: uuid.UUID
    balance_cents: int
    computed_balance_cents: int
    match: bool
    currency: str
    formatted_balance: str


class SummaryResponse(BaseModel):
    """Running statistics plus per-type totals of completed transactions."""
    jar_id: uuid.UUID
    currency: str
    balance_cents: int
    deposit_cents: int
    withdrawal_cents: int
    penalty_cents: int
    transfer_cents: int
    refund_cents: int
    count: int
    total_deposits_cents: int
    total_withdrawals_cents: int
    total_penalties_cents: int
    total_refunds_cents: int
    transaction_count: int
    average_deposit_cents: int
    last_activity_at: datetime | None
