"""
Tests for the HTTP layer.

These tests verify:
  - Bearer tokens are verified (missing, expired, wrong audience -> 401)
  - Jar, member, transaction and bank-account endpoints map to the services
  - Domain errors come back with their status code, error_type and context
  - Provider callbacks (settlement, verification) require the shared secret
  - Account holders cannot verify their own bank accounts
"""

import uuid
from datetime import timedelta

from swearjar.config import settings


SETTLEMENT_HEADERS = {"X-Settlement-Secret": settings.SETTLEMENT_WEBHOOK_SECRET}


async def _create_jar(client, headers, **body):
    response = await client.post("/jars", json={"name": "Office jar", **body}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def _linked_bank_account(client, headers):
    response = await client.post(
        "/bank-accounts",
        json={
            "plaid_account_id": "acc-1",
            "plaid_item_id": "item-1",
            "access_token": "access-sandbox-token",
            "institution_name": "First Platypus Bank",
            "account_name": "Plaid Checking",
            "mask": "0000",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def _verified_bank_account(client, headers):
    account_id = await _linked_bank_account(client, headers)
    response = await client.post(
        f"/settlements/bank-accounts/{account_id}/verification",
        json={"verified": True},
        headers=SETTLEMENT_HEADERS,
    )
    assert response.status_code == 200, response.text
    return account_id


class TestAuthentication:

    async def test_health_is_public(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_missing_token(self, client):
        response = await client.get("/jars")
        assert response.status_code == 401

    async def test_expired_token(self, client, make_token):
        token = make_token(uuid.uuid4(), expires_in=timedelta(minutes=-1))
        response = await client.get("/jars", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_wrong_audience(self, client, make_token):
        token = make_token(uuid.uuid4(), audience="someone-else")
        response = await client.get("/jars", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_wrong_signature(self, client, make_token):
        token = make_token(uuid.uuid4(), secret="not-the-secret")
        response = await client.get("/jars", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestJarEndpoints:

    async def test_create_list_and_get(self, client, auth_headers):
        owner = uuid.uuid4()
        headers = auth_headers(owner)
        jar = await _create_jar(
            client, headers,
            currency="CAD",
            settings={"swear_words": [{"word": "dang", "penalty_cents": 250}]},
        )

        assert jar["balance_cents"] == 0
        assert jar["currency"] == "CAD"
        assert jar["owner_id"] == str(owner)
        assert jar["swear_words"] == [{"word": "dang", "penalty_cents": 250}]

        listed = await client.get("/jars", headers=headers)
        assert [j["id"] for j in listed.json()] == [jar["id"]]

        detail = await client.get(f"/jars/{jar['id']}", headers=headers)
        assert detail.status_code == 200
        assert detail.json()["members"][0]["role"] == "owner"

    async def test_invalid_currency_is_422(self, client, auth_headers):
        response = await client.post("/jars", json={"name": "x", "currency": "JPY"}, headers=auth_headers(uuid.uuid4()))
        assert response.status_code == 422

    async def test_outsider_gets_403_with_context(self, client, auth_headers):
        jar = await _create_jar(client, auth_headers(uuid.uuid4()))

        response = await client.get(f"/jars/{jar['id']}", headers=auth_headers(uuid.uuid4()))

        assert response.status_code == 403
        body = response.json()
        assert body["error_type"] == "access_denied"
        assert body["jar_id"] == jar["id"]
        assert body["capability"] == "member"

    async def test_unknown_jar_is_404(self, client, auth_headers):
        response = await client.get(f"/jars/{uuid.uuid4()}", headers=auth_headers(uuid.uuid4()))
        assert response.status_code == 404
        assert response.json()["error_type"] == "not_found"

    async def test_update_and_delete(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers)

        response = await client.patch(
            f"/jars/{jar['id']}",
            json={"name": "Renamed", "settings": {"require_approval_for_withdrawals": False}},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["require_approval_for_withdrawals"] is False
        assert response.json()["maximum_deposit_cents"] == 100_000

        response = await client.delete(f"/jars/{jar['id']}", headers=headers)
        assert response.status_code == 204
        assert (await client.get(f"/jars/{jar['id']}", headers=headers)).status_code == 404

    async def test_merged_limits_inverted_is_422(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers, settings={"maximum_deposit_cents": 5000})

        response = await client.patch(
            f"/jars/{jar['id']}", json={"settings": {"minimum_deposit_cents": 6000}}, headers=headers,
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error_type"] == "invalid_settings"
        assert body["field"] == "minimum_deposit_cents"


class TestMemberEndpoints:

    async def test_invite_role_change_and_leave(self, client, auth_headers):
        owner, member = uuid.uuid4(), uuid.uuid4()
        jar = await _create_jar(client, auth_headers(owner))

        response = await client.post(
            f"/jars/{jar['id']}/members", json={"user_id": str(member)}, headers=auth_headers(owner),
        )
        assert response.status_code == 201
        assert response.json()["can_withdraw"] is False

        duplicate = await client.post(
            f"/jars/{jar['id']}/members", json={"user_id": str(member)}, headers=auth_headers(owner),
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error_type"] == "already_member"

        response = await client.put(
            f"/jars/{jar['id']}/members/{member}/role", json={"role": "admin"}, headers=auth_headers(owner),
        )
        assert response.status_code == 200
        assert response.json()["role"] == "admin"

        response = await client.post(f"/jars/{jar['id']}/leave", headers=auth_headers(member))
        assert response.status_code == 204

    async def test_remove_non_member_is_404(self, client, auth_headers):
        owner = uuid.uuid4()
        jar = await _create_jar(client, auth_headers(owner))

        response = await client.delete(f"/jars/{jar['id']}/members/{uuid.uuid4()}", headers=auth_headers(owner))
        assert response.status_code == 404
        assert response.json()["error_type"] == "not_a_member"


class TestTransactionEndpoints:

    async def test_deposit_penalty_and_balance(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers, settings={"swear_words": [{"word": "dang", "penalty_cents": 250}]})

        response = await client.post(f"/jars/{jar['id']}/deposits", json={"amount_cents": 2500}, headers=headers)
        assert response.status_code == 201
        body = response.json()
        assert body["transaction"]["status"] == "completed"
        assert body["transaction"]["balance_after_cents"] == 2500
        assert body["jar"]["balance_cents"] == 2500

        response = await client.post(f"/jars/{jar['id']}/penalties", json={"word": "DANG"}, headers=headers)
        assert response.status_code == 201
        assert response.json()["transaction"]["amount_cents"] == 250
        assert response.json()["transaction"]["metadata"]["swearWord"] == "DANG"

        balance = await client.get(f"/jars/{jar['id']}/balance", headers=headers)
        assert balance.json() == {
            "jar_id": jar["id"],
            "balance_cents": 2750,
            "computed_balance_cents": 2750,
            "match": True,
            "currency": "USD",
            "formatted_balance": "$27.50",
        }

        listed = await client.get(f"/jars/{jar['id']}/transactions", params={"type": "penalty"}, headers=headers)
        assert [t["type"] for t in listed.json()] == ["penalty"]

        summary = await client.get(f"/jars/{jar['id']}/summary", headers=headers)
        assert summary.json()["penalty_cents"] == 250
        assert summary.json()["count"] == 2

    async def test_over_limit_deposit_is_422(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers)

        response = await client.post(f"/jars/{jar['id']}/deposits", json={"amount_cents": 150_000}, headers=headers)

        assert response.status_code == 422
        body = response.json()
        assert body["error_type"] == "limit_exceeded"
        assert body["limit_cents"] == 100_000
        assert body["bound"] == "maximum"

    async def test_zero_amount_is_422(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers)

        response = await client.post(f"/jars/{jar['id']}/deposits", json={"amount_cents": 0}, headers=headers)
        assert response.status_code == 422

    async def test_withdraw_approve_flow(self, client, auth_headers, settlement):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers)
        bank_id = await _verified_bank_account(client, headers)
        await client.post(f"/jars/{jar['id']}/deposits", json={"amount_cents": 2750}, headers=headers)

        response = await client.post(
            f"/jars/{jar['id']}/withdrawals",
            json={"amount_cents": 1000, "bank_account_id": bank_id},
            headers=headers,
        )
        assert response.status_code == 201
        pending = response.json()["transaction"]
        assert pending["status"] == "pending"
        assert response.json()["jar"]["balance_cents"] == 2750

        response = await client.post(f"/transactions/{pending['id']}/approve", headers=headers)
        assert response.status_code == 200
        assert response.json()["transaction"]["status"] == "completed"
        assert response.json()["jar"]["balance_cents"] == 1750
        assert len(settlement.intents) == 1

        again = await client.post(f"/transactions/{pending['id']}/approve", headers=headers)
        assert again.status_code == 409
        assert again.json()["error_type"] == "invalid_state"
        assert again.json()["current_status"] == "completed"

    async def test_insufficient_funds_is_422(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers, settings={"require_approval_for_withdrawals": False})
        bank_id = await _verified_bank_account(client, headers)

        response = await client.post(
            f"/jars/{jar['id']}/withdrawals",
            json={"amount_cents": 100, "bank_account_id": bank_id},
            headers=headers,
        )
        assert response.status_code == 422
        assert response.json()["error_type"] == "insufficient_funds"
        assert response.json()["available_cents"] == 0

    async def test_cancel_and_reverse(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers)
        deposit = await client.post(f"/jars/{jar['id']}/deposits", json={"amount_cents": 500}, headers=headers)
        deposit_id = deposit.json()["transaction"]["id"]

        response = await client.post(
            f"/transactions/{deposit_id}/reverse", json={"reason": "mistake"}, headers=headers,
        )
        assert response.status_code == 201
        refund = response.json()["transaction"]
        assert refund["type"] == "refund"
        assert refund["reverses_transaction_id"] == deposit_id
        assert refund["metadata"]["reverseReason"] == "mistake"
        assert response.json()["jar"]["balance_cents"] == 0

        again = await client.post(f"/transactions/{deposit_id}/reverse", headers=headers)
        assert again.status_code == 409

        cancel = await client.post(f"/transactions/{deposit_id}/cancel", headers=headers)
        assert cancel.status_code == 409

        original = await client.get(f"/transactions/{deposit_id}", headers=headers)
        assert original.json()["status"] == "completed"


class TestSettlementWebhook:

    async def _pending_bank_deposit(self, client, headers):
        jar = await _create_jar(client, headers)
        bank_id = await _verified_bank_account(client, headers)
        response = await client.post(
            f"/jars/{jar['id']}/deposits",
            json={"amount_cents": 1200, "bank_account_id": bank_id},
            headers=headers,
        )
        assert response.json()["transaction"]["status"] == "pending"
        return jar, response.json()["transaction"]

    async def test_requires_secret(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        _, txn = await self._pending_bank_deposit(client, headers)

        response = await client.post(f"/settlements/{txn['id']}", json={"status": "completed"})
        assert response.status_code == 401

        response = await client.post(
            f"/settlements/{txn['id']}", json={"status": "completed"}, headers={"X-Settlement-Secret": "wrong"},
        )
        assert response.status_code == 401

    async def test_completion_is_applied_once(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar, txn = await self._pending_bank_deposit(client, headers)

        response = await client.post(
            f"/settlements/{txn['id']}",
            json={"status": "completed", "external_transaction_id": "xfer_9"},
            headers=SETTLEMENT_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["settlement_status"] == "settled"
        assert response.json()["external_transaction_id"] == "xfer_9"

        duplicate = await client.post(f"/settlements/{txn['id']}", json={"status": "completed"}, headers=SETTLEMENT_HEADERS)
        assert duplicate.status_code == 409

        balance = await client.get(f"/jars/{jar['id']}/balance", headers=headers)
        assert balance.json()["balance_cents"] == 1200
        assert balance.json()["match"] is True

    async def test_unknown_status_is_422(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        _, txn = await self._pending_bank_deposit(client, headers)

        response = await client.post(
            f"/settlements/{txn['id']}",
            json={"status": "cancelled"},
            headers=SETTLEMENT_HEADERS,
        )
        assert response.status_code == 422


class TestBankAccountEndpoints:

    async def test_token_never_returned(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        await _verified_bank_account(client, headers)

        listed = await client.get("/bank-accounts", headers=headers)
        assert len(listed.json()) == 1
        account = listed.json()[0]
        assert "access_token" not in account
        assert "access_token_encrypted" not in account
        assert account["verification_status"] == "verified"
        assert account["can_withdraw"] is True

    async def test_disconnect(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        account_id = await _verified_bank_account(client, headers)

        response = await client.delete(f"/bank-accounts/{account_id}", headers=headers)
        assert response.status_code == 204
        assert (await client.get(f"/bank-accounts/{account_id}", headers=headers)).status_code == 404


class TestBankAccountVerification:

    async def test_holder_cannot_verify_own_account(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        jar = await _create_jar(client, headers, settings={"require_approval_for_withdrawals": False})
        await client.post(f"/jars/{jar['id']}/deposits", json={"amount_cents": 5000}, headers=headers)
        account_id = await _linked_bank_account(client, headers)

        response = await client.post(
            f"/bank-accounts/{account_id}/verification", json={"verified": True}, headers=headers,
        )
        assert response.status_code in (404, 405)

        response = await client.post(
            f"/settlements/bank-accounts/{account_id}/verification", json={"verified": True}, headers=headers,
        )
        assert response.status_code == 401

        response = await client.patch(f"/bank-accounts/{account_id}", json={"can_withdraw": True}, headers=headers)
        assert response.status_code == 409

        response = await client.post(
            f"/jars/{jar['id']}/withdrawals",
            json={"amount_cents": 5000, "bank_account_id": account_id},
            headers=headers,
        )
        assert response.status_code == 403
        assert response.json()["error_type"] == "bank_account_not_verified"

        balance = await client.get(f"/jars/{jar['id']}/balance", headers=headers)
        assert balance.json()["balance_cents"] == 5000

    async def test_provider_reports_verification(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        account_id = await _linked_bank_account(client, headers)

        response = await client.post(
            f"/settlements/bank-accounts/{account_id}/verification",
            json={"verified": True},
            headers=SETTLEMENT_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["verification_status"] == "verified"
        assert response.json()["can_withdraw"] is True

        again = await client.post(
            f"/settlements/bank-accounts/{account_id}/verification",
            json={"verified": True},
            headers=SETTLEMENT_HEADERS,
        )
        assert again.status_code == 409

    async def test_provider_reports_failed_verification(self, client, auth_headers):
        headers = auth_headers(uuid.uuid4())
        account_id = await _linked_bank_account(client, headers)

        response = await client.post(
            f"/settlements/bank-accounts/{account_id}/verification",
            json={"verified": False},
            headers=SETTLEMENT_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["verification_status"] == "failed"
        assert response.json()["can_withdraw"] is False

    async def test_unknown_account_is_404(self, client):
        response = await client.post(
            f"/settlements/bank-accounts/{uuid.uuid4()}/verification",
            json={"verified": True},
            headers=SETTLEMENT_HEADERS,
        )
        assert response.status_code == 404


class TestTransactionHistoryEndpoint:

    async def test_lists_callers_transactions_with_total(self, client, auth_headers):
        user, other_user = uuid.uuid4(), uuid.uuid4()
        headers = auth_headers(user)
        first = await _create_jar(client, headers)
        second = await _create_jar(client, headers, name="Second jar")
        await client.post(
            f"/jars/{first['id']}/members", json={"user_id": str(other_user)}, headers=headers,
        )
        for jar_id in (first["id"], first["id"], second["id"]):
            await client.post(f"/jars/{jar_id}/deposits", json={"amount_cents": 100}, headers=headers)
        await client.post(
            f"/jars/{first['id']}/deposits", json={"amount_cents": 500}, headers=auth_headers(other_user),
        )

        response = await client.get("/transactions", params={"limit": 2}, headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 3
        assert len(body["transactions"]) == 2
        assert body["has_next"] is True
        assert all(t["user_id"] == str(user) for t in body["transactions"])

        filtered = await client.get("/transactions", params={"jar_id": second["id"]}, headers=headers)
        assert filtered.json()["total"] == 1
        assert filtered.json()["has_next"] is False

    async def test_jar_filter_outside_membership_is_403(self, client, auth_headers):
        jar = await _create_jar(client, auth_headers(uuid.uuid4()))

        response = await client.get("/transactions", params={"jar_id": jar["id"]}, headers=auth_headers(uuid.uuid4()))

        assert response.status_code == 403
