"""
External settlement adapter contract.

Bank-backed deposits and withdrawals need money to actually move between the
user's bank and the jar's holding account (via Plaid Transfer, ACH, ...).
The ledger does not speak that protocol. It only:

  1. hands the adapter a SettlementIntent once the ledger change that needs
     settling has committed, and
  2. exposes one re-entry point, TransactionEngine.transition_transaction_status,
     which the adapter (through the /settlements webhook) calls with
     "completed" or "failed" for a given transaction id.

Anything implementing `SettlementAdapter` can be plugged into the engine.
`LoggingSettlementAdapter` is the default: it records the intent in the log
and leaves the transaction waiting for its callback.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class SettlementDirection(str, enum.Enum):
    DEBIT_BANK = "debit_bank"    # pull from the user's bank into the jar (deposit)
    CREDIT_BANK = "credit_bank"  # push from the jar out to the user's bank (withdrawal)


@dataclass(frozen=True)
class SettlementIntent:
    transaction_id: uuid.UUID
    jar_id: uuid.UUID
    bank_account_id: uuid.UUID
    direction: SettlementDirection
    amount_cents: int
    currency: str


class SettlementAdapter(Protocol):
    async def initiate_transfer(self, intent: SettlementIntent) -> str | None:
        """
        Ask the external system to move the money.

        Returns:
            The external transfer reference, if the provider returns one
            synchronously; None otherwise.
        """
        ...


class LoggingSettlementAdapter:
    """Adapter that only logs intents; outcomes arrive through the webhook."""

    async def initiate_transfer(self, intent: SettlementIntent) -> str | None:
        logger.info(
            "Settlement requested: %s %d %s for transaction %s (bank account %s)",
            intent.direction.value, intent.amount_cents, intent.currency,
            intent.transaction_id, intent.bank_account_id,
        )
        return None
