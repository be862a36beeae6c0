"""
FastAPI dependencies for authentication and service wiring.

Dependencies are reusable functions that FastAPI injects into route handlers:

  get_current_user_id (bearer JWT -> user UUID)
  get_ledger_store    (app.state -> LedgerStore)
      ├── get_transaction_engine
      ├── get_jar_service
      └── get_bank_account_service
  require_settlement_secret (X-Settlement-Secret header)

Authorization within a jar is NOT decided here. Routers only establish who
the actor is; the services ask the Permission Gate whether that actor may
act on the jar in question.

The LedgerStore and settlement adapter live on `app.state` so that a single
store (and therefore a single per-jar lock registry) serves every request,
and so tests can swap in their own.
"""

import uuid

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from swearjar.security import settlement_secret_matches, user_id_from_token
from swearjar.services.bank_account_service import BankAccountService
from swearjar.services.jar_service import JarService
from swearjar.services.ledger_store import LedgerStore
from swearjar.services.transaction_engine import TransactionEngine

# auto_error=False so a missing header yields our 401 rather than a 403
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> uuid.UUID:
    """
    Verify the bearer token and return the user id it was issued to.

    Raises:
        HTTPException 401: If the token is missing, invalid, expired, or
                           carries no usable subject.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    try:
        return user_id_from_token(credentials.credentials)
    except (JWTError, ValueError):
        raise credentials_exception


def get_ledger_store(request: Request) -> LedgerStore:
    return request.app.state.ledger_store


def get_transaction_engine(
    request: Request,
    store: LedgerStore = Depends(get_ledger_store),
) -> TransactionEngine:
    return TransactionEngine(store, settlement_adapter=request.app.state.settlement_adapter)


def get_jar_service(store: LedgerStore = Depends(get_ledger_store)) -> JarService:
    return JarService(store)


def get_bank_account_service(store: LedgerStore = Depends(get_ledger_store)) -> BankAccountService:
    return BankAccountService(store)


async def require_settlement_secret(
    x_settlement_secret: str | None = Header(None),
) -> None:
    """
    Authenticate a settlement adapter callback by its shared secret.

    Raises:
        HTTPException 401: If the header is missing or doesn't match.
    """
    if not settlement_secret_matches(x_settlement_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid settlement secret",
        )
