"""
Membership model: a user's role and permission flags within a jar.

Roles form a strict hierarchy: member (0) < admin (1) < owner (2).
Exactly one owner exists per jar (the creator); the owner role is never
granted or removed after creation, and it implies every permission flag
regardless of the stored values.

Default flags for a new membership:
  can_deposit=True, can_view_transactions=True, and can_withdraw /
  can_invite only for admins and owners. Explicit flags override these.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from swearjar.database import Base


class MemberRole(str, enum.Enum):
    """Role a user holds within a jar. Stored as its string value."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


ROLE_RANK = {
    MemberRole.MEMBER: 0,
    MemberRole.ADMIN: 1,
    MemberRole.OWNER: 2,
}


def default_permissions(role: MemberRole) -> dict[str, bool]:
    elevated = role in (MemberRole.OWNER, MemberRole.ADMIN)
    return {
        "can_deposit": True,
        "can_withdraw": elevated,
        "can_invite": elevated,
        "can_view_transactions": True,
    }


class Membership(Base):
    __tablename__ = "jar_memberships"

    __table_args__ = (
        UniqueConstraint("jar_id", "user_id", name="uq_jar_memberships_jar_user"),
        CheckConstraint("role IN ('owner', 'admin', 'member')", name="ck_jar_memberships_role"),
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

    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)

    role: Mapped[str] = mapped_column(String(10), nullable=False, default=MemberRole.MEMBER.value)

    can_deposit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_withdraw: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_invite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_view_transactions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def rank(self) -> int:
        return ROLE_RANK[MemberRole(self.role)]

    @property
    def is_owner(self) -> bool:
        return self.role == MemberRole.OWNER.value
