"""
Ledger store: durable storage for jars, memberships and transactions.

THIS IS THE ONLY CODE THAT WRITES A JAR BALANCE. Every other component
reads balances, but all changes go through one of two operations:

  - record_transaction_and_adjust_balance(): insert a transaction and apply
    its balance delta (plus statistics) in the same unit of work
  - transition_transaction_status(): move a pending transaction to a terminal
    state, applying its deferred delta when it completes

Atomicity:
  A unit of work is one session inside one database transaction. The
  transaction row, the balance change and the statistics update commit
  together or not at all.

Per-jar serialization (three layers):
  1. In-process: an asyncio.Lock per jar id is held for the whole unit of
     work, from before the first read until after commit. Two concurrent
     withdrawals on the same jar therefore run one after the other, and the
     second sees the balance the first left behind. Different jars have
     different locks and proceed in parallel.
  2. In the database: the balance is changed by a single conditional
     statement, UPDATE jars SET balance = balance + :delta WHERE ... AND
     balance + :delta >= 0. If another process slipped in between our read
     and our write, the statement matches no row instead of going negative.
     Rows are also read with SELECT ... FOR UPDATE (no-op on SQLite, row
     locks on PostgreSQL).
  3. The CHECK constraint on jars.balance_cents, as the last safety net.

Transient contention:
  `run()` retries a unit of work a few times when the database reports a
  lock timeout or serialization failure. If the retries are exhausted a
  ConflictError is raised; the failure is surfaced, never swallowed.
"""

import asyncio
import contextlib
import logging
import uuid
import weakref
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from swearjar.exceptions import (
    ConflictError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
)
from swearjar.models.bank_account import BankAccount
from swearjar.models.jar import Jar
from swearjar.models.membership import MemberRole, Membership, default_permissions
from swearjar.models.transaction import TERMINAL_STATUSES, Transaction, TransactionStatus
from swearjar.money import signed_delta
from swearjar.services import statistics

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATEs for serialization failure and deadlock (PostgreSQL)
_TRANSIENT_SQLSTATES = {"40001", "40P01"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_transient(exc: DBAPIError) -> bool:
    """True for lock timeouts / serialization failures that are safe to retry."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


class LedgerStore:
    """
    Handle to the ledger's persistent state.

    One instance is created per application (or per test) around a session
    factory and injected into the Permission Gate, Transaction Engine and
    jar/bank-account services. It owns the per-jar lock registry, so every
    writer of a given database must share the same instance.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = 3,
        retry_delay: float = 0.05,
    ) -> None:
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        # Locks disappear once no coroutine holds or waits on them
        self._jar_locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------

    def _lock_for(self, jar_id: uuid.UUID) -> asyncio.Lock:
        lock = self._jar_locks.get(jar_id)
        if lock is None:
            lock = asyncio.Lock()
            self._jar_locks[jar_id] = lock
        return lock

    @contextlib.asynccontextmanager
    async def unit_of_work(self, jar_id: uuid.UUID | None = None):
        """
        Open a session inside a database transaction.

        When `jar_id` is given, that jar's lock is held until the transaction
        has committed or rolled back. Any exception rolls the unit back.
        """
        guard = self._lock_for(jar_id) if jar_id is not None else contextlib.nullcontext()
        async with guard:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session

    async def run(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        jar_id: uuid.UUID | None = None,
    ) -> T:
        """
        Execute `work(session)` in a unit of work, retrying transient conflicts.

        Domain errors raised by `work` propagate immediately (after rollback);
        only database-level contention is retried.

        Raises:
            ConflictError: If contention persisted through every attempt.
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self.unit_of_work(jar_id) as session:
                    return await work(session)
            except DBAPIError as exc:
                if not _is_transient(exc):
                    raise
                logger.warning(
                    "Transient conflict on jar %s (attempt %d/%d): %s",
                    jar_id, attempt, self._max_attempts, exc.orig,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._retry_delay * attempt)
        raise ConflictError(jar_id)

    async def jar_id_for_transaction(self, transaction_id: uuid.UUID) -> uuid.UUID:
        """
        Look up which jar a transaction belongs to (immutable, so safe to read unlocked).

        Used to pick the jar lock before re-reading the transaction inside the unit.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Transaction.jar_id).where(Transaction.id == transaction_id)
            )
            jar_id = result.scalar_one_or_none()
        if jar_id is None:
            raise NotFoundError("transaction", transaction_id)
        return jar_id

    # ------------------------------------------------------------------
    # Jars and memberships
    # ------------------------------------------------------------------

    async def create_jar(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        name: str,
        description: str | None = None,
        currency: str = "USD",
        settings: dict | None = None,
    ) -> Jar:
        """
        Create a jar with a zero balance and its owner membership.

        Both rows are flushed in the caller's unit of work, so they commit
        (or roll back) together.
        """
        jar = Jar(
            owner_id=owner_id,
            name=name,
            description=description,
            currency=currency,
            balance_cents=0,
            **(settings or {}),
        )
        db.add(jar)
        await db.flush()

        owner = Membership(
            jar_id=jar.id,
            user_id=owner_id,
            role=MemberRole.OWNER.value,
            **default_permissions(MemberRole.OWNER),
        )
        db.add(owner)
        await db.flush()

        logger.info("Created jar %s (%s) for owner %s", jar.id, currency, owner_id)
        return jar

    async def get_jar(
        self,
        db: AsyncSession,
        jar_id: uuid.UUID,
        lock: bool = False,
        include_inactive: bool = False,
    ) -> Jar:
        """
        Fetch a jar by id.

        Raises:
            NotFoundError: If the jar doesn't exist, or is soft-deleted and
                           include_inactive is False.
        """
        query = select(Jar).where(Jar.id == jar_id)
        if lock:
            query = query.with_for_update()  # No-op on SQLite, locks row on PostgreSQL
        result = await db.execute(query)
        jar = result.scalar_one_or_none()

        if jar is None or (not jar.is_active and not include_inactive):
            raise NotFoundError("jar", jar_id)
        return jar

    async def get_membership(
        self,
        db: AsyncSession,
        jar_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Membership | None:
        result = await db.execute(
            select(Membership)
            .where(Membership.jar_id == jar_id)
            .where(Membership.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_memberships(self, db: AsyncSession, jar_id: uuid.UUID) -> list[Membership]:
        result = await db.execute(
            select(Membership)
            .where(Membership.jar_id == jar_id)
            .order_by(Membership.joined_at)
        )
        return list(result.scalars().all())

    async def list_jars_for_user(self, db: AsyncSession, user_id: uuid.UUID) -> list[Jar]:
        """Active jars the user belongs to, newest first."""
        result = await db.execute(
            select(Jar)
            .join(Membership, Membership.jar_id == Jar.id)
            .where(Membership.user_id == user_id)
            .where(Jar.is_active.is_(True))
            .order_by(Jar.created_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(
        self,
        db: AsyncSession,
        transaction_id: uuid.UUID,
        lock: bool = False,
    ) -> Transaction:
        query = select(Transaction).where(Transaction.id == transaction_id)
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        txn = result.scalar_one_or_none()
        if txn is None:
            raise NotFoundError("transaction", transaction_id)
        return txn

    async def find_reversal(self, db: AsyncSession, transaction_id: uuid.UUID) -> Transaction | None:
        """The refund that reversed `transaction_id`, if one exists."""
        result = await db.execute(
            select(Transaction).where(Transaction.reverses_transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def list_transactions(
        self,
        db: AsyncSession,
        jar_id: uuid.UUID,
        type_filter: str | None = None,
        status_filter: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """Transactions of a jar, newest first, with optional filters."""
        query = (
            select(Transaction)
            .where(Transaction.jar_id == jar_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        if type_filter:
            query = query.where(Transaction.type == type_filter)
        if status_filter:
            query = query.where(Transaction.status == status_filter)

        result = await db.execute(query)
        return list(result.scalars().all())

    async def list_transactions_for_user(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        jar_id: uuid.UUID | None = None,
        type_filter: str | None = None,
        status_filter: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        """
        A user's own transactions across the active jars they still belong to.

        Returns:
            Tuple of (one page of transactions newest first, total matching).
        """
        conditions = [
            Transaction.user_id == user_id,
            Membership.user_id == user_id,
            Jar.is_active.is_(True),
        ]
        if jar_id is not None:
            conditions.append(Transaction.jar_id == jar_id)
        if type_filter:
            conditions.append(Transaction.type == type_filter)
        if status_filter:
            conditions.append(Transaction.status == status_filter)

        def scoped(query):
            return (
                query
                .join(Membership, Membership.jar_id == Transaction.jar_id)
                .join(Jar, Jar.id == Transaction.jar_id)
                .where(*conditions)
            )

        total = (await db.execute(scoped(select(func.count()).select_from(Transaction)))).scalar_one()
        result = await db.execute(
            scoped(select(Transaction))
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def count_pending(self, db: AsyncSession, jar_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Transaction)
            .where(Transaction.jar_id == jar_id)
            .where(Transaction.status == TransactionStatus.PENDING.value)
        )
        return result.scalar_one()

    async def list_stale_pending(
        self,
        db: AsyncSession,
        older_than: datetime,
        limit: int = 100,
    ) -> list[Transaction]:
        """
        Pending transactions created before `older_than`, oldest first.

        The ledger imposes no timeout on pending transactions; this exists so
        an external sweeper can decide what to cancel.
        """
        result = await db.execute(
            select(Transaction)
            .where(Transaction.status == TransactionStatus.PENDING.value)
            .where(Transaction.created_at < older_than)
            .order_by(Transaction.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def computed_balance(self, db: AsyncSession, jar_id: uuid.UUID) -> int:
        """
        Recompute a jar's balance from its completed transactions.

        This is the integrity-check counterpart to jars.balance_cents: the
        two must always agree.
        """
        result = await db.execute(
            select(Transaction.type, func.coalesce(func.sum(Transaction.amount_cents), 0))
            .where(Transaction.jar_id == jar_id)
            .where(Transaction.status == TransactionStatus.COMPLETED.value)
            .group_by(Transaction.type)
        )
        return sum(signed_delta(txn_type, int(total)) for txn_type, total in result.all())

    async def get_bank_account(self, db: AsyncSession, bank_account_id: uuid.UUID) -> BankAccount | None:
        result = await db.execute(select(BankAccount).where(BankAccount.id == bank_account_id))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Balance-changing writes
    # ------------------------------------------------------------------

    async def _apply_delta(self, db: AsyncSession, jar: Jar, delta: int) -> int:
        """
        Atomically add `delta` to the jar balance, refusing to go negative.

        Returns:
            The balance after the change.

        Raises:
            InsufficientFundsError: If the result would be negative.
            NotFoundError: If the jar was soft-deleted underneath us.
        """
        result = await db.execute(
            update(Jar)
            .where(Jar.id == jar.id)
            .where(Jar.is_active.is_(True))
            .where(Jar.balance_cents + delta >= 0)
            .values(balance_cents=Jar.balance_cents + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.refresh(jar)
            if not jar.is_active:
                raise NotFoundError("jar", jar.id)
            raise InsufficientFundsError(
                jar_id=jar.id,
                requested_cents=-delta,
                available_cents=jar.balance_cents,
            )

        await db.refresh(jar, attribute_names=["balance_cents"])
        return jar.balance_cents

    async def record_transaction_and_adjust_balance(
        self,
        db: AsyncSession,
        jar: Jar,
        draft: Transaction,
        balance_delta: int,
        expected_status: str,
    ) -> tuple[Transaction, Jar]:
        """
        Insert a transaction and apply its balance delta as one atomic step.

        For a completed transaction the delta is applied with the conditional
        UPDATE, `balance_after_cents` is stamped from the real post-update
        balance and the statistics are updated. For a pending (deferred)
        transaction the delta must be 0: the row is inserted with the
        optimistic `balance_after_cents` the caller projected, and neither
        the balance nor the statistics move until it completes.

        Args:
            db: The unit of work's session (must hold the jar lock).
            jar: The jar, as read in this unit of work.
            draft: Unsaved Transaction with type, amount, status, etc. set.
            balance_delta: Signed change to apply now (0 for deferred).
            expected_status: The status the draft must carry.

        Returns:
            Tuple of (transaction, jar) after the write.

        Raises:
            InvalidStateError: If the draft's status doesn't match expected_status.
            InsufficientFundsError: If the balance would become negative.
        """
        if draft.status != expected_status:
            raise InvalidStateError(
                f"Transaction draft is {draft.status}, expected {expected_status}",
                current_status=draft.status,
            )
        completed = expected_status == TransactionStatus.COMPLETED.value
        if completed == (balance_delta == 0):
            raise ValueError("Completed transactions must move the balance; pending ones must not")

        now = _utcnow()
        if completed:
            draft.balance_after_cents = await self._apply_delta(db, jar, balance_delta)
            draft.processed_at = draft.processed_at or now
            statistics.apply_balance_change(jar, draft.type, draft.amount_cents, now)
        elif draft.balance_after_cents is None:
            draft.balance_after_cents = jar.balance_cents

        db.add(draft)
        await db.flush()

        logger.info(
            "Recorded %s %s of %d cents on jar %s (status=%s, balance_after=%d)",
            draft.type, draft.id, draft.amount_cents, jar.id, draft.status, draft.balance_after_cents,
        )
        return draft, jar

    async def transition_transaction_status(
        self,
        db: AsyncSession,
        transaction: Transaction,
        new_status: str,
        processed_at: datetime | None = None,
    ) -> Transaction:
        """
        Move a pending transaction to a terminal status, exactly once.

        Completing a transaction applies its deferred balance delta in the
        same unit of work and restamps `balance_after_cents` with the actual
        balance. Failing or cancelling it has no balance effect.

        Raises:
            InvalidStateError: If the transaction is not pending, or
                               new_status is not terminal.
            InsufficientFundsError: If completing it would overdraw the jar.
        """
        if new_status not in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Cannot transition to non-terminal status {new_status}",
                transaction_id=transaction.id,
                current_status=transaction.status,
            )
        if transaction.status != TransactionStatus.PENDING.value:
            raise InvalidStateError(
                f"Transaction {transaction.id} is already {transaction.status}",
                transaction_id=transaction.id,
                current_status=transaction.status,
            )

        processed_at = processed_at or _utcnow()
        if new_status == TransactionStatus.COMPLETED.value:
            jar = await self.get_jar(db, transaction.jar_id, lock=True)
            delta = signed_delta(transaction.type, transaction.amount_cents)
            transaction.balance_after_cents = await self._apply_delta(db, jar, delta)
            statistics.apply_balance_change(jar, transaction.type, transaction.amount_cents, processed_at)

        previous = transaction.status
        transaction.status = new_status
        transaction.processed_at = processed_at
        await db.flush()

        logger.info(
            "Transaction %s on jar %s: %s -> %s",
            transaction.id, transaction.jar_id, previous, new_status,
        )
        return transaction
