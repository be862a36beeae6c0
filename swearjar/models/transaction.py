"""
Transaction model: records every monetary event on a jar.

A transaction is an immutable-intent record with a mutable status:

  - type: deposit, withdrawal, penalty, transfer or refund
  - amount_cents: Always positive (direction is implied by the type)
  - status: pending -> completed | failed | cancelled, exactly once
  - balance_after_cents: The jar balance right after this transaction was
    applied. For a pending transaction it holds the optimistic projection
    made at creation time and is restamped with the real balance when the
    transaction completes.

Reversals:
  A completed deposit or penalty is reversed by inserting a NEW refund
  transaction whose `reverses_transaction_id` points at the original. The
  column is UNIQUE, so the database refuses a second reversal of the same
  transaction even if two requests race. The original row is never edited.

Settlement:
  `settlement_status` tracks the external bank leg separately from the
  ledger status. A withdrawal that needs no approval is `completed` in the
  ledger at once while its bank transfer is still `pending` settlement.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from swearjar.database import Base


class TransactionType(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PENALTY = "penalty"
    TRANSFER = "transfer"
    REFUND = "refund"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.COMPLETED.value, TransactionStatus.FAILED.value, TransactionStatus.CANCELLED.value}
)

# Only these may be reversed, and only once completed
REVERSIBLE_TYPES = frozenset({TransactionType.DEPOSIT.value, TransactionType.PENALTY.value})


class SettlementStatus(str, enum.Enum):
    NOT_REQUIRED = "not_required"    # no bank account involved
    NOT_REQUESTED = "not_requested"  # bank leg exists, withdrawal still awaiting approval
    PENDING = "pending"              # intent issued, waiting for the adapter callback
    SETTLED = "settled"
    FAILED = "failed"


class Transaction(Base):
    __tablename__ = "jar_transactions"

    __table_args__ = (
        CheckConstraint("amount_cents >= 1", name="ck_jar_transactions_min_amount"),
        CheckConstraint("balance_after_cents >= 0", name="ck_jar_transactions_balance_after"),
        CheckConstraint(
            "type IN ('deposit', 'withdrawal', 'penalty', 'transfer', 'refund')",
            name="ck_jar_transactions_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'cancelled')",
            name="ck_jar_transactions_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    jar_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("jars.id"),
        nullable=False,
        index=True,
    )

    # The actor who initiated the transaction
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)

    type: Mapped[str] = mapped_column(String(12), nullable=False)

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=TransactionStatus.PENDING.value,
        index=True,
    )

    bank_account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("bank_accounts.id"),
        nullable=True,
        index=True,
    )

    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fee_description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Free-form bag: swearWord, approvedBy, originalTransactionId, ...
    # ("metadata" is reserved on declarative classes)
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    reverses_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("jar_transactions.id"),
        nullable=True,
        unique=True,
    )

    settlement_status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SettlementStatus.NOT_REQUIRED.value,
    )

    # Reference returned by the settlement adapter, if any
    external_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_reversible(self) -> bool:
        return self.type in REVERSIBLE_TYPES and self.status == TransactionStatus.COMPLETED.value
