"""
Test fixtures for the Swear Jar ledger test suite.

This module provides shared fixtures used across all test files:

  - db_engine: Fresh file-backed SQLite database for each test
  - store / gate / ledger / jars / bank_accounts: The services, wired to that database
  - settlement: A recording settlement adapter standing in for the bank
  - owner_id / admin_id / member_id / outsider_id: Actors, with a jar shared by the first three
  - make_bank_account: Factory for linked (optionally verified) bank accounts
  - client / auth_headers: Async HTTP client and bearer-token helper

Key design decisions:
  - The database is a SQLite FILE in tmp_path rather than an in-memory one.
    In-memory aiosqlite shares a single connection between sessions, which
    would hide (or break) the concurrent units of work some tests exercise.
  - Required settings are placed in the environment before any swearjar
    module is imported, since the Settings singleton reads them at import.
  - The HTTP client swaps its own LedgerStore and settlement adapter into
    app.state, so the application code runs exactly as in production.
"""

import os

# Must be set before swearjar.config is imported
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef")
os.environ.setdefault("BANK_TOKEN_ENCRYPTION_KEY", "YWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWE=")
os.environ.setdefault("SETTLEMENT_WEBHOOK_SECRET", "test-settlement-secret")

import uuid  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt  # noqa: E402

from swearjar.config import settings  # noqa: E402
from swearjar.database import Base, build_engine, build_session_factory  # noqa: E402
from swearjar.main import app  # noqa: E402
from swearjar.models.membership import MemberRole  # noqa: E402
from swearjar.services.bank_account_service import BankAccountService  # noqa: E402
from swearjar.services.jar_service import JarService  # noqa: E402
from swearjar.services.ledger_store import LedgerStore  # noqa: E402
from swearjar.services.permission_gate import PermissionGate  # noqa: E402
from swearjar.services.settlement import SettlementIntent  # noqa: E402
from swearjar.services.transaction_engine import TransactionEngine  # noqa: E402


class RecordingSettlementAdapter:
    """
    Settlement adapter that remembers every intent it was given.

    Set `error` to make initiate_transfer raise, or `reference` to have it
    return an external transfer id.
    """

    def __init__(self):
        self.intents: list[SettlementIntent] = []
        self.error: Exception | None = None
        self.reference: str | None = None

    async def initiate_transfer(self, intent: SettlementIntent) -> str | None:
        self.intents.append(intent)
        if self.error is not None:
            raise self.error
        return self.reference


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a fresh async engine with all tables for each test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(db_engine):
    return LedgerStore(build_session_factory(db_engine))


@pytest.fixture
def gate(store):
    return PermissionGate(store)


@pytest.fixture
def settlement():
    return RecordingSettlementAdapter()


@pytest.fixture
def ledger(store, settlement):
    """The transaction engine under test."""
    return TransactionEngine(store, settlement_adapter=settlement)


@pytest.fixture
def jars(store):
    return JarService(store)


@pytest.fixture
def bank_accounts(store):
    return BankAccountService(store)


@pytest.fixture
def owner_id():
    return uuid.uuid4()


@pytest.fixture
def admin_id():
    return uuid.uuid4()


@pytest.fixture
def member_id():
    return uuid.uuid4()


@pytest.fixture
def outsider_id():
    return uuid.uuid4()


@pytest_asyncio.fixture
async def jar(jars, owner_id, admin_id, member_id):
    """
    A USD jar with default settings (limits 1..100000 cents, withdrawals
    require approval) shared by an owner, an admin and a plain member.
    """
    created = await jars.create_jar(owner_id, "Office jar")
    await jars.invite_member(owner_id, created.id, admin_id, role=MemberRole.ADMIN.value)
    await jars.invite_member(owner_id, created.id, member_id)
    return created


@pytest_asyncio.fixture
async def instant_jar(jars, jar, owner_id):
    """The shared jar, reconfigured so withdrawals need no approval."""
    return await jars.update_jar(owner_id, jar.id, settings={"require_approval_for_withdrawals": False})


@pytest.fixture
def make_bank_account(bank_accounts):
    """Factory: link a bank account for a user, verified for withdrawals by default."""

    async def _make(user_id, verified=True, **overrides):
        fields = {
            "plaid_account_id": f"acc-{uuid.uuid4().hex[:8]}",
            "plaid_item_id": "item-1",
            "access_token": "access-sandbox-token",
            "institution_name": "First Platypus Bank",
            "account_name": "Plaid Checking",
            "mask": "0000",
            **overrides,
        }
        account = await bank_accounts.link_bank_account(user_id, **fields)
        if verified:
            account = await bank_accounts.mark_verified(account.id)
        return account

    return _make


@pytest.fixture
def make_token():
    """Mint a bearer token the way the identity provider would."""

    def _make(user_id, expires_in=timedelta(minutes=15), audience="authenticated", secret=None):
        payload = {
            "sub": str(user_id),
            "aud": audience,
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        return jwt.encode(payload, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id):
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


@pytest_asyncio.fixture
async def client(store, settlement):
    """
    Async HTTP test client with the test database injected.

    The app's LedgerStore and settlement adapter are replaced for the
    duration of the test and restored afterwards.
    """
    original_store = app.state.ledger_store
    original_adapter = app.state.settlement_adapter
    app.state.ledger_store = store
    app.state.settlement_adapter = settlement

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.state.ledger_store = original_store
    app.state.settlement_adapter = original_adapter
