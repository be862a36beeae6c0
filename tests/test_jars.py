"""
Tests for jar lifecycle and membership management.

These tests verify:
  - Jar creation makes the creator an owner member with every permission
  - Listing is scoped to jars the user belongs to
  - Settings updates merge and are validated
  - Deletion is owner-only and requires an empty, settled jar
  - Invites, removals, role changes and leaving follow the role hierarchy
  - Balance checks and summaries agree with the transactions
"""

import pytest

from swearjar.exceptions import (
    AccessDeniedError,
    AlreadyMemberError,
    InvalidSettingsError,
    InvalidStateError,
    NotAMemberError,
    NotFoundError,
)


class TestCreateJar:

    async def test_creator_becomes_owner(self, jars, owner_id):
        jar = await jars.create_jar(owner_id, "  Team jar  ", description="Keep it clean", currency="EUR")

        assert jar.name == "Team jar"
        assert jar.balance_cents == 0
        assert jar.currency == "EUR"
        assert jar.minimum_deposit_cents == 1
        assert jar.maximum_deposit_cents == 100_000
        assert jar.require_approval_for_withdrawals is True

        _, members = await jars.get_jar_for_member(owner_id, jar.id)
        assert len(members) == 1
        assert members[0].role == "owner"
        assert members[0].can_withdraw and members[0].can_invite

    async def test_unsupported_currency(self, jars, owner_id):
        with pytest.raises(ValueError):
            await jars.create_jar(owner_id, "Yen jar", currency="JPY")

    async def test_inverted_limits_rejected(self, jars, owner_id):
        with pytest.raises(InvalidSettingsError):
            await jars.create_jar(owner_id, "Bad", settings={"minimum_deposit_cents": 500, "maximum_deposit_cents": 100})

    async def test_swear_words_are_normalized(self, jars, owner_id):
        jar = await jars.create_jar(
            owner_id, "Words", settings={"swear_words": [{"word": " Dang ", "penalty_cents": 250}]},
        )
        assert jar.swear_words == [{"word": "dang", "penalty_cents": 250}]

    async def test_list_is_scoped_to_membership(self, jars, jar, owner_id, member_id, outsider_id):
        other = await jars.create_jar(outsider_id, "Not yours")

        assert [j.id for j in await jars.list_jars_for_user(member_id)] == [jar.id]
        assert {j.id for j in await jars.list_jars_for_user(outsider_id)} == {other.id}


class TestUpdateJar:

    async def test_partial_settings_merge(self, jars, jar, admin_id):
        updated = await jars.update_jar(admin_id, jar.id, settings={"maximum_deposit_cents": 5000})

        assert updated.maximum_deposit_cents == 5000
        assert updated.minimum_deposit_cents == 1
        assert updated.require_approval_for_withdrawals is True

    async def test_merged_limits_validated(self, jars, jar, admin_id):
        await jars.update_jar(admin_id, jar.id, settings={"maximum_deposit_cents": 5000})

        with pytest.raises(InvalidSettingsError) as exc_info:
            await jars.update_jar(admin_id, jar.id, settings={"minimum_deposit_cents": 6000})

        assert isinstance(exc_info.value, ValueError)
        assert exc_info.value.field == "minimum_deposit_cents"

    async def test_member_cannot_update(self, jars, jar, member_id):
        with pytest.raises(AccessDeniedError):
            await jars.update_jar(member_id, jar.id, name="Mine now")

    async def test_non_positive_swear_word_penalty(self, jars, jar, owner_id):
        with pytest.raises(ValueError):
            await jars.update_jar(owner_id, jar.id, settings={"swear_words": [{"word": "dang", "penalty_cents": 0}]})


class TestDeleteJar:

    async def test_owner_deletes_empty_jar(self, jars, jar, owner_id, member_id):
        deleted = await jars.delete_jar(owner_id, jar.id)

        assert deleted.is_active is False
        with pytest.raises(NotFoundError):
            await jars.get_jar_for_member(owner_id, jar.id)
        assert await jars.list_jars_for_user(member_id) == []

    async def test_admin_cannot_delete(self, jars, jar, admin_id):
        with pytest.raises(AccessDeniedError):
            await jars.delete_jar(admin_id, jar.id)

    async def test_jar_with_balance_cannot_be_deleted(self, jars, ledger, jar, owner_id, member_id):
        await ledger.deposit(member_id, jar.id, 100)

        with pytest.raises(InvalidStateError):
            await jars.delete_jar(owner_id, jar.id)

    async def test_jar_with_pending_transaction_cannot_be_deleted(
        self, jars, ledger, jar, owner_id, member_id, make_bank_account,
    ):
        bank = await make_bank_account(member_id)
        await ledger.deposit(member_id, jar.id, 100, bank_account_id=bank.id)

        with pytest.raises(InvalidStateError):
            await jars.delete_jar(owner_id, jar.id)

    async def test_deleted_jar_refuses_deposits(self, jars, ledger, jar, owner_id, member_id):
        await jars.delete_jar(owner_id, jar.id)

        with pytest.raises(NotFoundError):
            await ledger.deposit(member_id, jar.id, 100)


class TestMembers:

    async def test_default_member_flags(self, jars, jar, owner_id, outsider_id):
        membership = await jars.invite_member(owner_id, jar.id, outsider_id)

        assert membership.role == "member"
        assert membership.can_deposit is True
        assert membership.can_view_transactions is True
        assert membership.can_withdraw is False
        assert membership.can_invite is False

    async def test_already_member(self, jars, jar, owner_id, member_id):
        with pytest.raises(AlreadyMemberError):
            await jars.invite_member(owner_id, jar.id, member_id)

    async def test_member_cannot_invite(self, jars, jar, member_id, outsider_id):
        with pytest.raises(AccessDeniedError):
            await jars.invite_member(member_id, jar.id, outsider_id)

    async def test_invite_flag_does_not_grant_admin_role(self, jars, jar, owner_id, member_id, outsider_id):
        await jars.update_member_role(owner_id, jar.id, member_id, "member", permissions={"can_invite": True})

        with pytest.raises(AccessDeniedError):
            await jars.invite_member(member_id, jar.id, outsider_id, role="admin")
        membership = await jars.invite_member(member_id, jar.id, outsider_id)
        assert membership.role == "member"

    async def test_owner_role_cannot_be_granted(self, jars, jar, owner_id, outsider_id):
        with pytest.raises(ValueError):
            await jars.invite_member(owner_id, jar.id, outsider_id, role="owner")

    async def test_admin_removes_member(self, jars, jar, admin_id, member_id):
        await jars.remove_member(admin_id, jar.id, member_id)

        assert await jars.list_jars_for_user(member_id) == []

    async def test_owner_cannot_be_removed(self, jars, jar, owner_id, admin_id):
        with pytest.raises(InvalidStateError):
            await jars.remove_member(admin_id, jar.id, owner_id)

    async def test_remove_non_member(self, jars, jar, owner_id, outsider_id):
        with pytest.raises(NotAMemberError):
            await jars.remove_member(owner_id, jar.id, outsider_id)

    async def test_admin_cannot_remove_another_admin(self, jars, jar, owner_id, admin_id, outsider_id):
        await jars.invite_member(owner_id, jar.id, outsider_id, role="admin")

        with pytest.raises(AccessDeniedError):
            await jars.remove_member(admin_id, jar.id, outsider_id)

    async def test_owner_promotes_member(self, jars, jar, owner_id, member_id):
        membership = await jars.update_member_role(owner_id, jar.id, member_id, "admin")

        assert membership.role == "admin"
        assert membership.can_withdraw is True

    async def test_admin_cannot_change_roles(self, jars, jar, admin_id, member_id):
        with pytest.raises(AccessDeniedError):
            await jars.update_member_role(admin_id, jar.id, member_id, "admin")

    async def test_owner_role_is_immutable(self, jars, jar, owner_id):
        with pytest.raises(InvalidStateError):
            await jars.update_member_role(owner_id, jar.id, owner_id, "member")

    async def test_member_leaves(self, jars, ledger, jar, member_id):
        await jars.leave_jar(member_id, jar.id)

        with pytest.raises(AccessDeniedError):
            await ledger.deposit(member_id, jar.id, 100)

    async def test_owner_cannot_leave(self, jars, jar, owner_id):
        with pytest.raises(InvalidStateError):
            await jars.leave_jar(owner_id, jar.id)

    async def test_outsider_cannot_leave(self, jars, jar, outsider_id):
        with pytest.raises(NotAMemberError):
            await jars.leave_jar(outsider_id, jar.id)


class TestBalanceAndSummary:

    async def test_balance_matches_computed(self, jars, ledger, jar, owner_id, member_id):
        deposit, _ = await ledger.deposit(member_id, jar.id, 2550)
        await ledger.penalty(member_id, jar.id, "heck")
        await ledger.reverse(owner_id, deposit.id)

        balance = await jars.get_balance(member_id, jar.id)

        assert balance["balance_cents"] == 100
        assert balance["computed_balance_cents"] == 100
        assert balance["match"] is True
        assert balance["formatted_balance"] == "$1.00"

    async def test_summary_totals(self, jars, ledger, jar, owner_id, member_id, make_bank_account):
        deposit, _ = await ledger.deposit(member_id, jar.id, 2500)
        await ledger.penalty(member_id, jar.id, "heck")
        await ledger.reverse(owner_id, deposit.id)
        bank = await make_bank_account(member_id)
        await ledger.deposit(member_id, jar.id, 999, bank_account_id=bank.id)

        summary = await jars.summary(member_id, jar.id)

        assert summary["deposit_cents"] == 2500
        assert summary["penalty_cents"] == 100
        assert summary["refund_cents"] == 2500
        assert summary["withdrawal_cents"] == 0
        assert summary["count"] == 3
        assert summary["transaction_count"] == 3
        assert summary["balance_cents"] == 100

    async def test_outsider_cannot_read_balance(self, jars, jar, outsider_id):
        with pytest.raises(AccessDeniedError):
            await jars.get_balance(outsider_id, jar.id)
