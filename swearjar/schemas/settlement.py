"""
Pydantic schemas for callbacks from the external providers.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SettlementCallback(BaseModel):
    """Request body for POST /settlements/{transaction_id}."""
    status: Literal["completed", "failed"]
    external_transaction_id: str | None = Field(None, max_length=255)
    processed_at: datetime | None = None
    reason: str | None = Field(None, max_length=500)


class VerificationCallback(BaseModel):
    """Request body for POST /settlements/bank-accounts/{id}/verification."""
    verified: bool
