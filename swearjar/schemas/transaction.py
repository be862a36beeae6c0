"""
Pydantic schemas for Transaction endpoints.

All monetary amounts are in integer cents (e.g., $10.50 = 1050).
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from swearjar.schemas.jar import JarResponse


class DepositRequest(BaseModel):
    """Request body for POST /jars/{id}/deposits."""
    amount_cents: int = Field(gt=0, description="Amount in cents (must be positive)")
    description: str | None = Field(None, max_length=500)
    bank_account_id: uuid.UUID | None = Field(
        None, description="Fund the deposit from a linked bank account (settles asynchronously)"
    )
    metadata: dict | None = None


class WithdrawalRequest(BaseModel):
    """Request body for POST /jars/{id}/withdrawals."""
    amount_cents: int = Field(gt=0, description="Amount in cents (must be positive)")
    bank_account_id: uuid.UUID
    description: str | None = Field(None, max_length=500)
    metadata: dict | None = None


class PenaltyRequest(BaseModel):
    """Request body for POST /jars/{id}/penalties."""
    word: str = Field(min_length=1, max_length=50)
    amount_cents: int | None = Field(
        None, gt=0, description="Overrides the jar's configured penalty for the word"
    )

    @field_validator("word")
    @classmethod
    def word_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("word cannot be blank")
        return value.strip()


class ReasonRequest(BaseModel):
    """Optional reason for cancel and reverse."""
    reason: str | None = Field(None, max_length=500)


class TransactionResponse(BaseModel):
    """Public representation of a transaction."""
    id: uuid.UUID
    jar_id: uuid.UUID
    user_id: uuid.UUID
    type: str
    amount_cents: int
    currency: str
    description: str | None
    status: str
    bank_account_id: uuid.UUID | None
    balance_after_cents: int
    fee_cents: int
    metadata: dict = Field(validation_alias="metadata_json")
    reverses_transaction_id: uuid.UUID | None
    settlement_status: str
    external_transaction_id: str | None
    created_at: datetime
    processed_at: datetime | None

    model_config = {"from_attributes": True}


class LedgerResultResponse(BaseModel):
    """A transaction together with the jar state it left behind."""
    transaction: TransactionResponse
    jar: JarResponse

    model_config = {"from_attributes": True}


class TransactionPage(BaseModel):
    """One page of the caller's transactions with the total matching count."""
    transactions: list[TransactionResponse]
    total: int
    limit: int
    offset: int
    has_next: bool

    model_config = {"from_attributes": True}


TransactionTypeFilter = Literal["deposit", "withdrawal", "penalty", "transfer", "refund"]
TransactionStatusFilter = Literal["pending", "completed", "failed", "cancelled"]
