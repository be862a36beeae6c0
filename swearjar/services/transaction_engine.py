"""
Transaction engine: the business rules for every way a jar balance moves.

Operations and their effect on the jar:

  deposit     CAN_DEPOSIT    within min/max limits. Without a bank account the
                             balance moves at once (completed). With one, the
                             transaction waits as pending until settlement
                             reports success.
  withdraw    CAN_WITHDRAW   needs a bank account verified for withdrawals and
                             enough balance. Pending (no balance effect) when
                             the jar requires approval, otherwise completed
                             immediately with the bank leg settling afterwards.
  approve     CAN_WITHDRAW   completes a pending withdrawal, debiting the jar,
                             once funds and the bank account are re-checked.
  cancel      actor or CAN_WITHDRAW   cancels any pending transaction.
  penalty     MEMBER         explicit amount, else the jar's per-word table,
                             else the default; always completed.
  reverse     ADMIN          inserts a refund undoing a completed deposit or
                             penalty; the original row is left untouched.

Every operation runs as one LedgerStore unit of work holding the jar lock.
Business-rule failures are raised to the caller and never retried here.

Settlement:
  Bank-backed operations emit a SettlementIntent to the adapter AFTER their
  unit of work has committed, so a slow or failing bank call can never hold
  the jar lock or roll back the ledger. The adapter later reports the outcome
  through transition_transaction_status(), the engine's only re-entry point.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession

from swearjar.config import settings
from swearjar.exceptions import (
    AccessDeniedError,
    BankAccountNotVerifiedError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
    SettlementFailedError,
)
from swearjar.models.bank_account import BankAccount
from swearjar.models.jar import Jar
from swearjar.models.transaction import (
    SettlementStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from swearjar.money import MINIMUM_AMOUNT_CENTS
from swearjar.services.ledger_store import LedgerStore
from swearjar.services.permission_gate import Capability, PermissionGate
from swearjar.services.settlement import (
    LoggingSettlementAdapter,
    SettlementAdapter,
    SettlementDirection,
    SettlementIntent,
)

logger = logging.getLogger(__name__)

COMPLETED = TransactionStatus.COMPLETED.value
PENDING = TransactionStatus.PENDING.value
FAILED = TransactionStatus.FAILED.value
CANCELLED = TransactionStatus.CANCELLED.value


class LedgerResult(NamedTuple):
    """Outcome of a successful ledger operation."""
    transaction: Transaction
    jar: Jar


def _check_amount(amount_cents: int) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < MINIMUM_AMOUNT_CENTS:
        raise InvalidAmountError(amount_cents)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionEngine:
    """
    State machine for jar transactions.

    Args:
        store: The LedgerStore shared by every writer of the database.
        settlement_adapter: Receives intents for bank-backed operations.
        gate: Permission gate; built on `store` when omitted.
        default_penalty_cents: Penalty for words missing from a jar's table.
    """

    def __init__(
        self,
        store: LedgerStore,
        settlement_adapter: SettlementAdapter | None = None,
        gate: PermissionGate | None = None,
        default_penalty_cents: int | None = None,
    ) -> None:
        self._store = store
        self._adapter = settlement_adapter or LoggingSettlementAdapter()
        self._gate = gate or PermissionGate(store)
        self._default_penalty_cents = (
            default_penalty_cents if default_penalty_cents is not None else settings.DEFAULT_PENALTY_CENTS
        )

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    async def deposit(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        amount_cents: int,
        description: str | None = None,
        bank_account_id: uuid.UUID | None = None,
        metadata: dict | None = None,
    ) -> LedgerResult:
        """
        Put money into a jar.

        Raises:
            InvalidAmountError: If amount_cents < 1.
            NotFoundError: If the jar (or the actor's bank account) doesn't exist.
            AccessDeniedError: If the actor lacks CAN_DEPOSIT, or the bank
                               account may not fund deposits.
            LimitExceededError: If the amount is outside the jar's limits.
        """
        _check_amount(amount_cents)

        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id, lock=True)
            await self._gate.require(db, actor_id, jar, Capability.CAN_DEPOSIT)

            if amount_cents < jar.minimum_deposit_cents:
                raise LimitExceededError(jar.id, amount_cents, jar.minimum_deposit_cents, "minimum")
            if amount_cents > jar.maximum_deposit_cents:
                raise LimitExceededError(jar.id, amount_cents, jar.maximum_deposit_cents, "maximum")

            txn = Transaction(
                jar_id=jar.id,
                user_id=actor_id,
                type=TransactionType.DEPOSIT.value,
                amount_cents=amount_cents,
                currency=jar.currency,
                metadata_json=dict(metadata or {}),
            )

            if bank_account_id is None:
                txn.status = COMPLETED
                txn.settlement_status = SettlementStatus.NOT_REQUIRED.value
                txn.description = description or "Manual deposit"
                txn, jar = await self._store.record_transaction_and_adjust_balance(
                    db, jar, txn, amount_cents, COMPLETED,
                )
                return txn, jar, None

            bank = await self._bank_account_for(db, actor_id, bank_account_id)
            if not bank.can_deposit:
                raise AccessDeniedError(
                    jar_id=jar.id,
                    capability="bank_account_can_deposit",
                    detail=f"Bank account {bank.id} cannot fund deposits",
                )

            # Balance moves only when settlement confirms; the projection is
            # restamped with the real balance at completion.
            txn.status = PENDING
            txn.settlement_status = SettlementStatus.PENDING.value
            txn.bank_account_id = bank.id
            txn.description = description or "Deposit from bank account"
            txn.balance_after_cents = jar.balance_cents + amount_cents
            txn, jar = await self._store.record_transaction_and_adjust_balance(db, jar, txn, 0, PENDING)
            return txn, jar, self._intent(txn, SettlementDirection.DEBIT_BANK)

        txn, jar, intent = await self._store.run(work, jar_id=jar_id)
        if intent is not None:
            return await self._dispatch(intent, LedgerResult(txn, jar))
        return LedgerResult(txn, jar)

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    async def withdraw(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        amount_cents: int,
        bank_account_id: uuid.UUID,
        description: str | None = None,
        metadata: dict | None = None,
    ) -> LedgerResult:
        """
        Take money out of a jar to the actor's bank account.

        When the jar requires approval the withdrawal is recorded as pending
        and the balance is untouched until approve(). Otherwise the balance
        is debited now and the bank transfer settles asynchronously.

        Raises:
            InvalidAmountError, NotFoundError, AccessDeniedError,
            BankAccountNotVerifiedError, InsufficientFundsError.
        """
        _check_amount(amount_cents)

        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id, lock=True)
            await self._gate.require(db, actor_id, jar, Capability.CAN_WITHDRAW)

            bank = await self._bank_account_for(db, actor_id, bank_account_id)
            if not bank.is_verified_for_withdrawals:
                raise BankAccountNotVerifiedError(bank.id)

            if jar.balance_cents < amount_cents:
                raise InsufficientFundsError(jar.id, amount_cents, jar.balance_cents)

            txn = Transaction(
                jar_id=jar.id,
                user_id=actor_id,
                type=TransactionType.WITHDRAWAL.value,
                amount_cents=amount_cents,
                currency=jar.currency,
                description=description or "Withdrawal to bank account",
                bank_account_id=bank.id,
                metadata_json=dict(metadata or {}),
            )

            if jar.require_approval_for_withdrawals:
                txn.status = PENDING
                txn.settlement_status = SettlementStatus.NOT_REQUESTED.value
                txn.balance_after_cents = jar.balance_cents - amount_cents
                txn, jar = await self._store.record_transaction_and_adjust_balance(db, jar, txn, 0, PENDING)
                return txn, jar, None

            txn.status = COMPLETED
            txn.settlement_status = SettlementStatus.PENDING.value
            txn, jar = await self._store.record_transaction_and_adjust_balance(
                db, jar, txn, -amount_cents, COMPLETED,
            )
            return txn, jar, self._intent(txn, SettlementDirection.CREDIT_BANK)

        txn, jar, intent = await self._store.run(work, jar_id=jar_id)
        if intent is not None:
            return await self._dispatch(intent, LedgerResult(txn, jar))
        return LedgerResult(txn, jar)

    async def approve(self, actor_id: uuid.UUID, transaction_id: uuid.UUID) -> LedgerResult:
        """
        Approve a pending withdrawal: complete it and debit the jar.

        Funds are checked again at approval time, since deposits, penalties
        and other withdrawals may have moved the balance in the meantime.

        Raises:
            NotFoundError: If the transaction or its jar doesn't exist.
            AccessDeniedError: If the actor lacks CAN_WITHDRAW.
            InvalidStateError: If the transaction is not a pending withdrawal.
            InsufficientFundsError: If the jar can no longer cover it.
            BankAccountNotVerifiedError: If the destination account was
                                         disconnected or lost withdrawal rights.
        """
        jar_id = await self._store.jar_id_for_transaction(transaction_id)

        async def work(db: AsyncSession):
            txn = await self._store.get_transaction(db, transaction_id, lock=True)
            jar = await self._store.get_jar(db, txn.jar_id, lock=True)
            await self._gate.require(db, actor_id, jar, Capability.CAN_WITHDRAW)

            if txn.type != TransactionType.WITHDRAWAL.value or txn.status != PENDING:
                raise InvalidStateError(
                    "Only pending withdrawals can be approved",
                    transaction_id=txn.id,
                    current_status=txn.status,
                )

            # The destination may have been disconnected or lost withdrawal
            # eligibility since the request.
            if txn.bank_account_id is not None:
                bank = await self._store.get_bank_account(db, txn.bank_account_id)
                if bank is None or not bank.is_verified_for_withdrawals:
                    raise BankAccountNotVerifiedError(txn.bank_account_id)

            now = _utcnow()
            txn.metadata_json = {
                **(txn.metadata_json or {}),
                "approvedBy": str(actor_id),
                "approvedAt": now.isoformat(),
            }
            await self._store.transition_transaction_status(db, txn, COMPLETED, now)

            if txn.bank_account_id is None:
                return txn, jar, None
            txn.settlement_status = SettlementStatus.PENDING.value
            await db.flush()
            return txn, jar, self._intent(txn, SettlementDirection.CREDIT_BANK)

        txn, jar, intent = await self._store.run(work, jar_id=jar_id)
        logger.info("Withdrawal %s approved by %s", txn.id, actor_id)
        if intent is not None:
            return await self._dispatch(intent, LedgerResult(txn, jar))
        return LedgerResult(txn, jar)

    async def cancel(
        self,
        actor_id: uuid.UUID,
        transaction_id: uuid.UUID,
        reason: str | None = None,
    ) -> LedgerResult:
        """
        Cancel a pending transaction. No balance effect.

        Allowed for the actor who created it, or anyone holding CAN_WITHDRAW
        on the jar.

        Raises:
            NotFoundError, AccessDeniedError, InvalidStateError.
        """
        jar_id = await self._store.jar_id_for_transaction(transaction_id)

        async def work(db: AsyncSession):
            txn = await self._store.get_transaction(db, transaction_id, lock=True)
            jar = await self._store.get_jar(db, txn.jar_id, lock=True)

            if txn.user_id != actor_id:
                await self._gate.require(db, actor_id, jar, Capability.CAN_WITHDRAW)

            if txn.status != PENDING:
                raise InvalidStateError(
                    "Only pending transactions can be cancelled",
                    transaction_id=txn.id,
                    current_status=txn.status,
                )

            txn.metadata_json = {
                **(txn.metadata_json or {}),
                "cancelledBy": str(actor_id),
                "cancelReason": reason,
            }
            await self._store.transition_transaction_status(db, txn, CANCELLED)
            return LedgerResult(txn, jar)

        return await self._store.run(work, jar_id=jar_id)

    # ------------------------------------------------------------------
    # Penalties
    # ------------------------------------------------------------------

    async def penalty(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        word: str,
        amount_cents: int | None = None,
    ) -> LedgerResult:
        """
        Charge a penalty for a swear word. Any member may trigger one.

        Amount resolution: the explicit amount if given; otherwise the jar's
        configured penalty for the word (case-insensitive); otherwise the
        default penalty. Penalties complete immediately and are not subject
        to the jar's deposit limits.

        Raises:
            ValueError: If the word is blank.
            InvalidAmountError, NotFoundError, AccessDeniedError.
        """
        word = (word or "").strip()
        if not word:
            raise ValueError("A swear word is required")
        if amount_cents is not None:
            _check_amount(amount_cents)

        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id, lock=True)
            await self._gate.require(db, actor_id, jar, Capability.MEMBER)

            penalty_cents = amount_cents
            source = "explicit"
            if penalty_cents is None:
                penalty_cents = jar.penalty_for_word(word)
                source = "configured"
            if penalty_cents is None:
                penalty_cents = self._default_penalty_cents
                source = "default"
            _check_amount(penalty_cents)

            txn = Transaction(
                jar_id=jar.id,
                user_id=actor_id,
                type=TransactionType.PENALTY.value,
                amount_cents=penalty_cents,
                currency=jar.currency,
                description=f'Penalty for using "{word}"',
                status=COMPLETED,
                settlement_status=SettlementStatus.NOT_REQUIRED.value,
                metadata_json={"swearWord": word, "penaltySource": source},
            )
            return await self._store.record_transaction_and_adjust_balance(
                db, jar, txn, penalty_cents, COMPLETED,
            )

        txn, jar = await self._store.run(work, jar_id=jar_id)
        return LedgerResult(txn, jar)

    # ------------------------------------------------------------------
    # Reversals
    # ------------------------------------------------------------------

    async def reverse(
        self,
        actor_id: uuid.UUID,
        transaction_id: uuid.UUID,
        reason: str | None = None,
    ) -> LedgerResult:
        """
        Reverse a completed deposit or penalty with a new refund transaction.

        The refund carries the same amount with the inverse balance effect
        and points back at the original through reverses_transaction_id and
        metadata.originalTransactionId. The original record is not modified.

        Raises:
            NotFoundError: If the transaction or its jar doesn't exist.
            AccessDeniedError: If the actor is below admin on the jar.
            InvalidStateError: If the transaction isn't a completed deposit or
                               penalty, or was already reversed.
            InsufficientFundsError: If the jar no longer holds the amount.
        """
        jar_id = await self._store.jar_id_for_transaction(transaction_id)

        async def work(db: AsyncSession):
            original = await self._store.get_transaction(db, transaction_id, lock=True)
            jar = await self._store.get_jar(db, original.jar_id, lock=True)
            await self._gate.require(db, actor_id, jar, Capability.ADMIN)

            if not original.is_reversible:
                raise InvalidStateError(
                    "Only completed deposits and penalties can be reversed",
                    transaction_id=original.id,
                    current_status=original.status,
                )
            if await self._store.find_reversal(db, original.id) is not None:
                raise InvalidStateError(
                    f"Transaction {original.id} has already been reversed",
                    transaction_id=original.id,
                    current_status=original.status,
                )

            refund = Transaction(
                jar_id=jar.id,
                user_id=actor_id,
                type=TransactionType.REFUND.value,
                amount_cents=original.amount_cents,
                currency=original.currency,
                description=f"Reversal: {original.description or original.type}",
                status=COMPLETED,
                settlement_status=SettlementStatus.NOT_REQUIRED.value,
                reverses_transaction_id=original.id,
                metadata_json={
                    **(original.metadata_json or {}),
                    "originalTransactionId": str(original.id),
                    "originalActorId": str(original.user_id),
                    "reverseReason": reason,
                },
            )
            return await self._store.record_transaction_and_adjust_balance(
                db, jar, refund, -original.amount_cents, COMPLETED,
            )

        txn, jar = await self._store.run(work, jar_id=jar_id)
        logger.info("Transaction %s reversed by %s as %s", transaction_id, actor_id, txn.id)
        return LedgerResult(txn, jar)

    # ------------------------------------------------------------------
    # Settlement re-entry point
    # ------------------------------------------------------------------

    async def transition_transaction_status(
        self,
        transaction_id: uuid.UUID,
        new_status: str,
        processed_at: datetime | None = None,
        external_transaction_id: str | None = None,
        reason: str | None = None,
    ) -> LedgerResult:
        """
        Record the outcome the settlement adapter reported for a transaction.

        - Pending bank deposit: "completed" applies the deferred credit,
          "failed" closes it with no balance effect.
        - Completed withdrawal still settling: only the settlement status is
          recorded. The money already left the jar, so a failure is logged
          for manual reconciliation and the balance is not touched.
        - Anything else (including a repeated report) is rejected.

        Raises:
            NotFoundError: If the transaction doesn't exist.
            InvalidStateError: If nothing is awaiting settlement on it.
        """
        if new_status not in (COMPLETED, FAILED):
            raise InvalidStateError(f"Settlement can only report completed or failed, got {new_status}")

        jar_id = await self._store.jar_id_for_transaction(transaction_id)

        async def work(db: AsyncSession):
            txn = await self._store.get_transaction(db, transaction_id, lock=True)

            if txn.settlement_status != SettlementStatus.PENDING.value or txn.status not in (PENDING, COMPLETED):
                if txn.status == CANCELLED and txn.settlement_status == SettlementStatus.PENDING.value:
                    logger.warning(
                        "Settlement %s reported for cancelled transaction %s; needs manual reconciliation",
                        new_status, txn.id,
                    )
                raise InvalidStateError(
                    f"Transaction {txn.id} is not awaiting settlement",
                    transaction_id=txn.id,
                    current_status=txn.status,
                )

            if txn.status == PENDING:
                await self._store.transition_transaction_status(db, txn, new_status, processed_at)
            elif new_status == FAILED:
                logger.error(
                    "Bank transfer failed for completed withdrawal %s (%d cents, jar %s); "
                    "jar balance already debited, manual reconciliation required",
                    txn.id, txn.amount_cents, txn.jar_id,
                )
            else:
                txn.processed_at = processed_at or _utcnow()

            txn.settlement_status = (
                SettlementStatus.SETTLED.value if new_status == COMPLETED else SettlementStatus.FAILED.value
            )
            if external_transaction_id:
                txn.external_transaction_id = external_transaction_id
            if new_status == FAILED and reason:
                txn.metadata_json = {**(txn.metadata_json or {}), "settlementFailureReason": reason}
            await db.flush()

            jar = await self._store.get_jar(db, txn.jar_id, include_inactive=True)
            return LedgerResult(txn, jar)

        return await self._store.run(work, jar_id=jar_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_transactions(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        type_filter: str | None = None,
        status_filter: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """List a jar's transactions, newest first. Requires CAN_VIEW_TRANSACTIONS."""

        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id)
            await self._gate.require(db, actor_id, jar, Capability.CAN_VIEW_TRANSACTIONS)
            return await self._store.list_transactions(
                db, jar.id, type_filter=type_filter, status_filter=status_filter, limit=limit, offset=offset,
            )

        return await self._store.run(work)

    async def list_user_transactions(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID | None = None,
        type_filter: str | None = None,
        status_filter: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        """
        The actor's own transactions across their jars, newest first, plus
        the total count matching the filters.

        Transactions on jars the actor has left, or that were deleted, are
        not included.

        Raises:
            NotFoundError: If `jar_id` names a missing or deleted jar.
            AccessDeniedError: If the actor is not a member of `jar_id`.
        """

        async def work(db: AsyncSession):
            if jar_id is not None:
                jar = await self._store.get_jar(db, jar_id)
                await self._gate.require(db, actor_id, jar, Capability.MEMBER)
            return await self._store.list_transactions_for_user(
                db, actor_id, jar_id=jar_id, type_filter=type_filter, status_filter=status_filter,
                limit=limit, offset=offset,
            )

        return await self._store.run(work)

    async def get_transaction(self, actor_id: uuid.UUID, transaction_id: uuid.UUID) -> Transaction:
        """A single transaction, visible to its own actor or to CAN_VIEW_TRANSACTIONS holders."""

        async def work(db: AsyncSession):
            txn = await self._store.get_transaction(db, transaction_id)
            if txn.user_id != actor_id:
                jar = await self._store.get_jar(db, txn.jar_id, include_inactive=True)
                await self._gate.require(db, actor_id, jar, Capability.CAN_VIEW_TRANSACTIONS)
            return txn

        return await self._store.run(work)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _bank_account_for(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        bank_account_id: uuid.UUID,
    ) -> BankAccount:
        """The actor's own active bank account; other users' accounts look missing."""
        bank = await self._store.get_bank_account(db, bank_account_id)
        if bank is None or bank.user_id != actor_id or not bank.is_active:
            raise NotFoundError("bank_account", bank_account_id)
        return bank

    @staticmethod
    def _intent(txn: Transaction, direction: SettlementDirection) -> SettlementIntent:
        return SettlementIntent(
            transaction_id=txn.id,
            jar_id=txn.jar_id,
            bank_account_id=txn.bank_account_id,
            direction=direction,
            amount_cents=txn.amount_cents,
            currency=txn.currency,
        )

    async def _dispatch(self, intent: SettlementIntent, result: LedgerResult) -> LedgerResult:
        """
        Hand a committed operation's intent to the settlement adapter.

        A SettlementFailedError from the adapter is a definitive rejection and
        is recorded exactly like a failed callback. Any other adapter error is
        logged and noted on the transaction, which then keeps waiting for its
        callback; the committed ledger change is never undone here.
        """
        try:
            reference = await self._adapter.initiate_transfer(intent)
        except SettlementFailedError as exc:
            logger.warning("Settlement rejected for transaction %s: %s", intent.transaction_id, exc.reason)
            return await self.transition_transaction_status(intent.transaction_id, FAILED, reason=exc.reason)
        except Exception as exc:
            logger.exception("Settlement adapter error for transaction %s", intent.transaction_id)
            return await self._annotate(intent, metadata={"settlementError": str(exc)})

        if reference is None:
            return result
        return await self._annotate(intent, external_transaction_id=reference)

    async def _annotate(
        self,
        intent: SettlementIntent,
        metadata: dict | None = None,
        external_transaction_id: str | None = None,
    ) -> LedgerResult:
        async def work(db: AsyncSession):
            txn = await self._store.get_transaction(db, intent.transaction_id, lock=True)
            if metadata:
                txn.metadata_json = {**(txn.metadata_json or {}), **metadata}
            if external_transaction_id:
                txn.external_transaction_id = external_transaction_id
            await db.flush()
            jar = await self._store.get_jar(db, txn.jar_id, include_inactive=True)
            return LedgerResult(txn, jar)

        return await self._store.run(work, jar_id=intent.jar_id)
