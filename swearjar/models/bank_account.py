"""
BankAccount model: an external bank account a user linked through Plaid.

The linking flow itself (Link tokens, public-token exchange) happens outside
this service; what lands here is the result: the Plaid identifiers, display
details, and the access token needed to move money later.

Security:
  The Plaid access token is encrypted with Fernet before storage and is never
  returned in any API response. Only the last digits (`mask`) are shown.

Permissions:
  A freshly linked account may fund deposits but not receive withdrawals.
  It becomes eligible for withdrawals only once verification has succeeded
  AND can_withdraw has been granted.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, DateTime, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from swearjar.database import Base


class VerificationStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


BANK_ACCOUNT_TYPES = ("checking", "savings", "credit", "investment", "loan", "other")


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    __table_args__ = (
        CheckConstraint(
            "account_type IN ('checking', 'savings', 'credit', 'investment', 'loan', 'other')",
            name="ck_bank_accounts_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)

    plaid_account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    plaid_item_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Fernet-encrypted Plaid access token
    access_token_encrypted: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    institution_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False, default="checking")

    # Last digits of the account number, for display
    mask: Mapped[str | None] = mapped_column(String(10), nullable=True)

    verification_status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=VerificationStatus.PENDING.value,
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    can_deposit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_withdraw: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def is_verified_for_withdrawals(self) -> bool:
        return (
            self.is_active
            and self.can_withdraw
            and self.verification_status == VerificationStatus.VERIFIED.value
        )

    @property
    def can_be_used_for_deposits(self) -> bool:
        return self.is_active and self.can_deposit
