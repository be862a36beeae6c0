"""
Permission gate: the single place jar authorization is decided.

Rules:
  - The jar owner passes every check, whatever their stored flags say.
  - Non-members fail every check.
  - MEMBER is satisfied by any membership.
  - Flag capabilities (CAN_DEPOSIT, CAN_WITHDRAW, CAN_INVITE,
    CAN_VIEW_TRANSACTIONS) pass only if the membership's flag is set.
  - Role capabilities (ADMIN, OWNER) compare ranks on the hierarchy
    member (0) < admin (1) < owner (2); the actor passes at or above the
    required rank.

`authorize` answers yes/no for a jar the caller has already loaded through the
LedgerStore (which is where NotFoundError comes from); `authorize_by_id` takes
only the jar id and answers no for a missing or deleted jar. `require` is the
raising form used by the services.
"""

import enum
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from swearjar.exceptions import AccessDeniedError, NotFoundError
from swearjar.models.jar import Jar
from swearjar.models.membership import ROLE_RANK, MemberRole, Membership
from swearjar.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class Capability(str, enum.Enum):
    MEMBER = "member"
    CAN_DEPOSIT = "can_deposit"
    CAN_WITHDRAW = "can_withdraw"
    CAN_INVITE = "can_invite"
    CAN_VIEW_TRANSACTIONS = "can_view_transactions"
    ADMIN = "admin"
    OWNER = "owner"


_FLAG_CAPABILITIES = {
    Capability.CAN_DEPOSIT,
    Capability.CAN_WITHDRAW,
    Capability.CAN_INVITE,
    Capability.CAN_VIEW_TRANSACTIONS,
}

_ROLE_CAPABILITIES = {
    Capability.ADMIN: ROLE_RANK[MemberRole.ADMIN],
    Capability.OWNER: ROLE_RANK[MemberRole.OWNER],
}


def membership_allows(jar: Jar, membership: Membership | None, capability: Capability) -> bool:
    """Pure decision for an already-loaded membership (None = not a member)."""
    if membership is None:
        return False
    if membership.is_owner or membership.user_id == jar.owner_id:
        return True

    capability = Capability(capability)
    if capability == Capability.MEMBER:
        return True
    if capability in _FLAG_CAPABILITIES:
        return bool(getattr(membership, capability.value))
    return membership.rank >= _ROLE_CAPABILITIES[capability]


class PermissionGate:
    """Authorizes actors against jars using memberships read through the store."""

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    async def authorize(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        jar: Jar,
        capability: Capability,
    ) -> bool:
        if actor_id == jar.owner_id:
            return True
        membership = await self._store.get_membership(db, jar.id, actor_id)
        return membership_allows(jar, membership, capability)

    async def authorize_by_id(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        jar_id: uuid.UUID,
        capability: Capability,
    ) -> bool:
        """Like `authorize`, for callers holding only a jar id. False for a missing or deleted jar."""
        try:
            jar = await self._store.get_jar(db, jar_id)
        except NotFoundError:
            return False
        return await self.authorize(db, actor_id, jar, capability)

    async def require(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        jar: Jar,
        capability: Capability,
    ) -> None:
        """
        Raise unless the actor holds `capability` on `jar`.

        Raises:
            AccessDeniedError: Carrying the jar id and capability name.
        """
        if not await self.authorize(db, actor_id, jar, capability):
            logger.warning("Denied %s on jar %s to user %s", capability.value, jar.id, actor_id)
            raise AccessDeniedError(jar_id=jar.id, capability=capability.value)
