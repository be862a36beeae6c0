"""
Jar model: a shared monetary pool ("swear jar").

Each jar has:
  - An owner (the creator), who is also recorded as an owner Membership
  - A cached balance in integer cents, mutated only by the LedgerStore
  - A currency (USD, CAD, EUR or GBP)
  - Settings: deposit limits, withdrawal approval, per-word penalty table
  - Statistics: running totals maintained by the Statistics Aggregator

Balance management:
  `balance_cents` changes only through the LedgerStore's atomic apply
  operation, in the same database transaction as the Transaction row that
  explains the change. A CHECK constraint enforces that the balance can never
  go negative, backing up the conditional UPDATE the store issues.

Deletion:
  Jars are never hard-deleted. The owner soft-deletes a jar by clearing
  `is_active`, and only while its balance is zero.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from swearjar.config import settings
from swearjar.database import Base


class Jar(Base):
    __tablename__ = "jars"

    __table_args__ = (
        CheckConstraint("balance_cents >= 0", name="ck_jars_non_negative_balance"),
        CheckConstraint(
            "minimum_deposit_cents <= maximum_deposit_cents",
            name="ck_jars_deposit_limits_ordered",
        ),
        CheckConstraint("currency IN ('USD', 'CAD', 'EUR', 'GBP')", name="ck_jars_currency"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Balance in cents. Only LedgerStore writes this column.
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    owner_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)

    # --- Settings ---
    minimum_deposit_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=lambda: settings.DEFAULT_MINIMUM_DEPOSIT_CENTS,
    )
    maximum_deposit_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=lambda: settings.DEFAULT_MAXIMUM_DEPOSIT_CENTS,
    )
    require_approval_for_withdrawals: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_deduct_on_swear: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Penalty table: [{"word": "dang", "penalty_cents": 250}, ...]
    swear_words: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # --- Statistics (derived; see services/statistics.py) ---
    total_deposits_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_withdrawals_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_penalties_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_refunds_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_deposit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Soft-delete marker
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # Audit timestamps
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

    def penalty_for_word(self, word: str) -> int | None:
        """Configured penalty for `word` (case-insensitive), or None if not configured."""
        needle = word.strip().lower()
        for entry in self.swear_words or []:
            if str(entry.get("word", "")).strip().lower() == needle:
                return int(entry["penalty_cents"])
        return None
