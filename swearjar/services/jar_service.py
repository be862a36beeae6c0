"""
Jar service: jar lifecycle and membership management.

This module handles:
  - Jar creation (the creator becomes the owner member)
  - Jar retrieval, scoped to members
  - Settings updates (admins), soft deletion (owner only)
  - Inviting, removing and re-roling members
  - Balance verification (cached vs. computed from transactions)
  - Per-type summaries over a date range

None of these operations move money. The only exception to "no jar lock
needed" is deletion: it takes the jar lock so that a deposit cannot land on
a jar in the middle of being deleted.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from swearjar.config import settings as app_settings
from swearjar.exceptions import (
    AlreadyMemberError,
    InvalidSettingsError,
    InvalidStateError,
    NotAMemberError,
)
from swearjar.models.jar import Jar
from swearjar.models.membership import MemberRole, Membership, default_permissions
from swearjar.money import MINIMUM_AMOUNT_CENTS, SUPPORTED_CURRENCIES, format_cents
from swearjar.services import statistics
from swearjar.services.ledger_store import LedgerStore
from swearjar.services.permission_gate import Capability, PermissionGate

logger = logging.getLogger(__name__)

# Settings a caller may change on an existing jar
SETTING_FIELDS = (
    "minimum_deposit_cents",
    "maximum_deposit_cents",
    "require_approval_for_withdrawals",
    "is_public",
    "auto_deduct_on_swear",
    "swear_words",
)

PERMISSION_FLAGS = ("can_deposit", "can_withdraw", "can_invite", "can_view_transactions")

ASSIGNABLE_ROLES = (MemberRole.MEMBER.value, MemberRole.ADMIN.value)


def _normalize_swear_words(entries: list) -> list[dict]:
    """Lower-cased, de-duplicated penalty table; raises ValueError on bad entries."""
    table: dict[str, int] = {}
    for entry in entries:
        word = str(entry.get("word", "")).strip().lower()
        if not word:
            raise ValueError("Swear words cannot be blank")
        penalty = entry.get("penalty_cents")
        if isinstance(penalty, bool) or not isinstance(penalty, int) or penalty < MINIMUM_AMOUNT_CENTS:
            raise ValueError(f"Penalty for {word!r} must be at least {MINIMUM_AMOUNT_CENTS} cent")
        table[word] = penalty
    return [{"word": word, "penalty_cents": cents} for word, cents in table.items()]


def _validate_settings(jar_id: uuid.UUID | None, merged: dict) -> None:
    minimum = merged["minimum_deposit_cents"]
    maximum = merged["maximum_deposit_cents"]
    if minimum < MINIMUM_AMOUNT_CENTS:
        raise InvalidSettingsError(
            jar_id, "minimum_deposit_cents", f"Minimum deposit must be at least {MINIMUM_AMOUNT_CENTS} cent",
        )
    if minimum > maximum:
        raise InvalidSettingsError(
            jar_id, "minimum_deposit_cents",
            f"Minimum deposit ({minimum} cents) exceeds maximum deposit ({maximum} cents)",
        )


class JarService:
    """Jar and membership operations, authorized through the Permission Gate."""

    def __init__(self, store: LedgerStore, gate: PermissionGate | None = None) -> None:
        self._store = store
        self._gate = gate or PermissionGate(store)

    # ------------------------------------------------------------------
    # Jars
    # ------------------------------------------------------------------

    async def create_jar(
        self,
        owner_id: uuid.UUID,
        name: str,
        description: str | None = None,
        currency: str = "USD",
        settings: dict | None = None,
    ) -> Jar:
        """
        Create a jar owned by `owner_id`, starting at a zero balance.

        Raises:
            ValueError: If the currency is unsupported or a setting is malformed.
            InvalidSettingsError: If the deposit limits are inverted.
        """
        if currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency {currency!r}")

        settings = {k: v for k, v in (settings or {}).items() if k in SETTING_FIELDS and v is not None}
        if "swear_words" in settings:
            settings["swear_words"] = _normalize_swear_words(settings["swear_words"])
        if "minimum_deposit_cents" in settings or "maximum_deposit_cents" in settings:
            _validate_settings(None, {
                "minimum_deposit_cents": settings.get(
                    "minimum_deposit_cents", app_settings.DEFAULT_MINIMUM_DEPOSIT_CENTS,
                ),
                "maximum_deposit_cents": settings.get(
                    "maximum_deposit_cents", app_settings.DEFAULT_MAXIMUM_DEPOSIT_CENTS,
                ),
            })

        async def work(db: AsyncSession):
            return await self._store.create_jar(db, owner_id, name.strip(), description, currency, settings)

        return await self._store.run(work)

    async def list_jars_for_user(self, user_id: uuid.UUID) -> list[Jar]:
        async def work(db: AsyncSession):
            return await self._store.list_jars_for_user(db, user_id)

        return await self._store.run(work)

    async def get_jar_for_member(self, actor_id: uuid.UUID, jar_id: uuid.UUID) -> tuple[Jar, list[Membership]]:
        """
        A jar together with its member list.

        Raises:
            NotFoundError: If the jar doesn't exist or was deleted.
            AccessDeniedError: If the actor is not a member.
        """
        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id)
            await self._gate.require(db, actor_id, jar, Capability.MEMBER)
            return jar, await self._store.list_memberships(db, jar.id)

        return await self._store.run(work)

    async def update_jar(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        name: str | None = None,
        description: str | None = None,
        settings: dict | None = None,
    ) -> Jar:
        """
        Update a jar's name, description and settings (admin and above).

        `settings` is merged into the current settings: keys that are absent
        or None keep their current value.

        Raises:
            NotFoundError, AccessDeniedError,
            InvalidSettingsError: If the merged deposit limits are invalid.
            ValueError: If the swear-word table is malformed.
        """
        changes = {k: v for k, v in (settings or {}).items() if k in SETTING_FIELDS and v is not None}
        if "swear_words" in changes:
            changes["swear_words"] = _normalize_swear_words(changes["swear_words"])

        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id, lock=True)
            await self._gate.require(db, actor_id, jar, Capability.ADMIN)

            merged = {field: getattr(jar, field) for field in SETTING_FIELDS}
            merged.update(changes)
            _validate_settings(jar.id, merged)

            if name is not None:
                jar.name = name.strip()
            if description is not None:
                jar.description = description
            for field, value in changes.items():
                setattr(jar, field, value)
            await db.flush()
            await db.refresh(jar)

            logger.info("Jar %s updated by %s (%s)", jar.id, actor_id, ", ".join(sorted(changes)) or "details")
            return jar

        return await self._store.run(work, jar_id=jar_id)

    async def delete_jar(self, actor_id: uuid.UUID, jar_id: uuid.UUID) -> Jar:
        """
        Soft-delete a jar (owner only).

        Raises:
            InvalidStateError: If the jar still holds money or has pending
                               transactions.
        """
        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id, lock=True)
            await self._gate.require(db, actor_id, jar, Capability.OWNER)

            if jar.balance_cents > 0:
                raise InvalidStateError(
                    f"Jar still holds {format_cents(jar.balance_cents, jar.currency)}; withdraw funds first"
                )
            pending = await self._store.count_pending(db, jar.id)
            if pending:
                raise InvalidStateError(f"Jar has {pending} pending transaction(s)")

            jar.is_active = False
            await db.flush()
            logger.info("Jar %s deleted by %s", jar.id, actor_id)
            return jar

        return await self._store.run(work, jar_id=jar_id)

    async def get_balance(self, actor_id: uuid.UUID, jar_id: uuid.UUID) -> dict:
        """
        Get the jar balance: both cached and computed from transactions.

        A mismatch between the two would indicate a data integrity issue.
        """
        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id)
            await self._gate.require(db, actor_id, jar, Capability.MEMBER)
            computed = await self._store.computed_balance(db, jar.id)
            return {
                "jar_id": jar.id,
                "balance_cents": jar.balance_cents,
                "computed_balance_cents": computed,
                "match": jar.balance_cents == computed,
                "currency": jar.currency,
                "formatted_balance": format_cents(jar.balance_cents, jar.currency),
            }

        return await self._store.run(work)

    async def summary(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        """Running statistics plus per-type totals over an optional date range."""
        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id)
            await self._gate.require(db, actor_id, jar, Capability.MEMBER)
            totals = await statistics.summarize(db, jar.id, start, end)
            return {
                **totals,
                "currency": jar.currency,
                "balance_cents": jar.balance_cents,
                "total_deposits_cents": jar.total_deposits_cents,
                "total_withdrawals_cents": jar.total_withdrawals_cents,
                "total_penalties_cents": jar.total_penalties_cents,
                "total_refunds_cents": jar.total_refunds_cents,
                "transaction_count": jar.transaction_count,
                "average_deposit_cents": jar.average_deposit_cents,
                "last_activity_at": jar.last_activity_at,
            }

        return await self._store.run(work)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def invite_member(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        user_id: uuid.UUID,
        role: str = MemberRole.MEMBER.value,
        permissions: dict | None = None,
    ) -> Membership:
        """
        Add a user to a jar (requires can_invite).

        Only admins and the owner may hand out the admin role.

        Raises:
            ValueError: If the role is not member or admin.
            AlreadyMemberError: If the user already belongs to the jar.
        """
        if role not in ASSIGNABLE_ROLES:
            raise ValueError("Role must be member or admin")

        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id)
            await self._gate.require(db, actor_id, jar, Capability.CAN_INVITE)
            if role == MemberRole.ADMIN.value:
                await self._gate.require(db, actor_id, jar, Capability.ADMIN)

            if await self._store.get_membership(db, jar.id, user_id) is not None:
                raise AlreadyMemberError(jar.id, user_id)

            flags = default_permissions(MemberRole(role))
            flags.update({k: bool(v) for k, v in (permissions or {}).items() if k in PERMISSION_FLAGS and v is not None})
            membership = Membership(jar_id=jar.id, user_id=user_id, role=role, **flags)
            db.add(membership)
            try:
                await db.flush()
            except IntegrityError:
                raise AlreadyMemberError(jar.id, user_id)

            logger.info("User %s joined jar %s as %s (invited by %s)", user_id, jar.id, role, actor_id)
            return membership

        return await self._store.run(work)

    async def remove_member(self, actor_id: uuid.UUID, jar_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """
        Remove a member from a jar (admin and above).

        Raises:
            NotAMemberError: If the user is not in the jar.
            InvalidStateError: If the target is the owner.
            AccessDeniedError: If an admin tries to remove another admin.
        """
        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id)
            await self._gate.require(db, actor_id, jar, Capability.ADMIN)

            membership = await self._store.get_membership(db, jar.id, user_id)
            if membership is None:
                raise NotAMemberError(jar.id, user_id)
            if membership.is_owner:
                raise InvalidStateError("The jar owner cannot be removed")
            if membership.role == MemberRole.ADMIN.value and user_id != actor_id:
                await self._gate.require(db, actor_id, jar, Capability.OWNER)

            await db.delete(membership)
            await db.flush()
            logger.info("User %s removed from jar %s by %s", user_id, jar.id, actor_id)

        await self._store.run(work)

    async def update_member_role(
        self,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        user_id: uuid.UUID,
        role: str,
        permissions: dict | None = None,
    ) -> Membership:
        """
        Change a member's role (owner only), resetting their flags to the
        role's defaults unless overridden.

        Raises:
            ValueError: If the role is not member or admin.
            NotAMemberError: If the user is not in the jar.
            InvalidStateError: If the target is the owner.
        """
        if role not in ASSIGNABLE_ROLES:
            raise ValueError("Role must be member or admin")

        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id)
            await self._gate.require(db, actor_id, jar, Capability.OWNER)

            membership = await self._store.get_membership(db, jar.id, user_id)
            if membership is None:
                raise NotAMemberError(jar.id, user_id)
            if membership.is_owner:
                raise InvalidStateError("The owner's role cannot be changed")

            flags = default_permissions(MemberRole(role))
            flags.update({k: bool(v) for k, v in (permissions or {}).items() if k in PERMISSION_FLAGS and v is not None})
            membership.role = role
            for flag, value in flags.items():
                setattr(membership, flag, value)
            await db.flush()

            logger.info("User %s is now %s on jar %s", user_id, role, jar.id)
            return membership

        return await self._store.run(work)

    async def leave_jar(self, actor_id: uuid.UUID, jar_id: uuid.UUID) -> None:
        """
        Leave a jar.

        Raises:
            NotAMemberError: If the actor is not in the jar.
            InvalidStateError: If the actor is the owner.
        """
        async def work(db: AsyncSession):
            jar = await self._store.get_jar(db, jar_id)
            membership = await self._store.get_membership(db, jar.id, actor_id)
            if membership is None:
                raise NotAMemberError(jar.id, actor_id)
            if membership.is_owner or jar.owner_id == actor_id:
                raise InvalidStateError("The owner cannot leave their own jar")

            await db.delete(membership)
            await db.flush()
            logger.info("User %s left jar %s", actor_id, jar.id)

        await self._store.run(work)

