"""
Bank account service: external accounts linked by the Plaid flow.

The Link flow itself (link tokens, public-token exchange, micro-deposit
checks) runs outside this service. What arrives here is its outcome:
  - link_bank_account(): an account the exchange produced, with its access token
  - mark_verified() / mark_verification_failed(): the verification result,
    reported by the provider through the secret-authenticated callback in
    routers/settlements.py and never by the account holder

Ownership enforcement:
  Every user-facing lookup is scoped to the authenticated user. An account
  that belongs to somebody else is reported as not found, exactly like a
  missing one, so account ids cannot be enumerated.

A new account may fund deposits but cannot receive withdrawals until it has
been verified; successful verification grants can_withdraw.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from swearjar.exceptions import InvalidStateError, NotFoundError
from swearjar.models.bank_account import BANK_ACCOUNT_TYPES, BankAccount, VerificationStatus
from swearjar.security import encrypt_value
from swearjar.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class BankAccountService:
    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    async def _owned(self, db: AsyncSession, user_id: uuid.UUID, bank_account_id: uuid.UUID) -> BankAccount:
        account = await self._store.get_bank_account(db, bank_account_id)
        if account is None or account.user_id != user_id or not account.is_active:
            raise NotFoundError("bank_account", bank_account_id)
        return account

    async def link_bank_account(
        self,
        user_id: uuid.UUID,
        plaid_account_id: str,
        plaid_item_id: str,
        access_token: str,
        institution_name: str,
        account_name: str,
        account_type: str = "checking",
        mask: str | None = None,
    ) -> BankAccount:
        """
        Record a linked bank account for `user_id`.

        The Plaid access token is Fernet-encrypted before it is stored.

        Raises:
            ValueError: If the account type is unknown.
        """
        if account_type not in BANK_ACCOUNT_TYPES:
            raise ValueError(f"Unknown account type {account_type!r}")

        async def work(db: AsyncSession):
            account = BankAccount(
                user_id=user_id,
                plaid_account_id=plaid_account_id,
                plaid_item_id=plaid_item_id,
                access_token_encrypted=encrypt_value(access_token),
                institution_name=institution_name,
                account_name=account_name,
                account_type=account_type,
                mask=mask,
            )
            db.add(account)
            await db.flush()
            logger.info("Linked bank account %s (%s ...%s) for user %s", account.id, institution_name, mask, user_id)
            return account

        return await self._store.run(work)

    async def list_bank_accounts(self, user_id: uuid.UUID) -> list[BankAccount]:
        """Active bank accounts of a user, oldest first."""
        async def work(db: AsyncSession):
            result = await db.execute(
                select(BankAccount)
                .where(BankAccount.user_id == user_id)
                .where(BankAccount.is_active.is_(True))
                .order_by(BankAccount.created_at)
            )
            return list(result.scalars().all())

        return await self._store.run(work)

    async def get_bank_account(self, user_id: uuid.UUID, bank_account_id: uuid.UUID) -> BankAccount:
        async def work(db: AsyncSession):
            return await self._owned(db, user_id, bank_account_id)

        return await self._store.run(work)

    # ------------------------------------------------------------------
    # Verification outcome (reported by the linking provider, not the user)
    # ------------------------------------------------------------------

    async def _active(self, db: AsyncSession, bank_account_id: uuid.UUID) -> BankAccount:
        account = await self._store.get_bank_account(db, bank_account_id)
        if account is None or not account.is_active:
            raise NotFoundError("bank_account", bank_account_id)
        return account

    async def mark_verified(self, bank_account_id: uuid.UUID) -> BankAccount:
        """
        Record a successful verification and enable withdrawals to the account.

        Only the provider callback calls this; account holders have no way
        to verify their own accounts.

        Raises:
            NotFoundError: If the account doesn't exist or was disconnected.
            InvalidStateError: If it is already verified.
        """
        async def work(db: AsyncSession):
            account = await self._active(db, bank_account_id)
            if account.verification_status == VerificationStatus.VERIFIED.value:
                raise InvalidStateError(f"Bank account {account.id} is already verified")
            account.verification_status = VerificationStatus.VERIFIED.value
            account.verified_at = datetime.now(timezone.utc)
            account.can_withdraw = True
            await db.flush()
            logger.info("Bank account %s verified", account.id)
            return account

        return await self._store.run(work)

    async def mark_verification_failed(self, bank_account_id: uuid.UUID) -> BankAccount:
        async def work(db: AsyncSession):
            account = await self._active(db, bank_account_id)
            if account.verification_status == VerificationStatus.VERIFIED.value:
                raise InvalidStateError(f"Bank account {account.id} is already verified")
            account.verification_status = VerificationStatus.FAILED.value
            account.can_withdraw = False
            await db.flush()
            logger.warning("Verification failed for bank account %s", account.id)
            return account

        return await self._store.run(work)

    async def update_permissions(
        self,
        user_id: uuid.UUID,
        bank_account_id: uuid.UUID,
        can_deposit: bool | None = None,
        can_withdraw: bool | None = None,
    ) -> BankAccount:
        """
        Toggle what the account may be used for.

        Withdrawals can only be enabled on a verified account.

        Raises:
            NotFoundError, InvalidStateError.
        """
        async def work(db: AsyncSession):
            account = await self._owned(db, user_id, bank_account_id)
            if can_withdraw and account.verification_status != VerificationStatus.VERIFIED.value:
                raise InvalidStateError(f"Bank account {account.id} must be verified before enabling withdrawals")
            if can_deposit is not None:
                account.can_deposit = can_deposit
            if can_withdraw is not None:
                account.can_withdraw = can_withdraw
            await db.flush()
            return account

        return await self._store.run(work)

    async def deactivate_bank_account(self, user_id: uuid.UUID, bank_account_id: uuid.UUID) -> BankAccount:
        """Disconnect an account. It stays on record for past transactions."""
        async def work(db: AsyncSession):
            account = await self._owned(db, user_id, bank_account_id)
            account.is_active = False
            await db.flush()
            logger.info("Bank account %s disconnected by user %s", account.id, user_id)
            return account

        return await self._store.run(work)
