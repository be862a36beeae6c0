"""
Transactions router: money movement on jars.

Jar-scoped endpoints:
  POST /jars/{jar_id}/deposits       Deposit (manual or from a bank account)
  POST /jars/{jar_id}/withdrawals    Withdraw to a verified bank account
  POST /jars/{jar_id}/penalties      Charge a swear-word penalty
  GET  /jars/{jar_id}/transactions   List transactions (with filters)

Transaction endpoints:
  GET  /transactions                 Your own transactions across your jars
  GET  /transactions/{id}            Get a single transaction
  POST /transactions/{id}/approve    Approve a pending withdrawal
  POST /transactions/{id}/cancel     Cancel a pending transaction
  POST /transactions/{id}/reverse    Reverse a completed deposit or penalty

Write endpoints return the transaction together with the jar as it stands
afterwards, so clients can update the balance without a second request.
All amounts are in **integer cents** (e.g., $10.50 = 1050).
"""

import uuid

from fastapi import APIRouter, Depends, Query, status

from swearjar.dependencies import get_current_user_id, get_transaction_engine
from swearjar.schemas.transaction import (
    DepositRequest,
    LedgerResultResponse,
    PenaltyRequest,
    ReasonRequest,
    TransactionResponse,
    TransactionPage,
    TransactionStatusFilter,
    TransactionTypeFilter,
    WithdrawalRequest,
)
from swearjar.services.transaction_engine import LedgerResult, TransactionEngine

router = APIRouter()


def _result(result: LedgerResult) -> dict:
    return {"transaction": result.transaction, "jar": result.jar}


# ---------------------------------------------------------------------------
# Jar-scoped endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/jars/{jar_id}/deposits",
    response_model=LedgerResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Deposit into a jar",
)
async def deposit(
    jar_id: uuid.UUID,
    request: DepositRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    """
    Put money into a jar.

    - Without `bank_account_id` the deposit completes immediately.
    - With one, it stays **pending** until the bank transfer settles; the
      balance does not move until then.

    The amount must lie within the jar's deposit limits.
    """
    result = await engine.deposit(
        user_id,
        jar_id,
        request.amount_cents,
        description=request.description,
        bank_account_id=request.bank_account_id,
        metadata=request.metadata,
    )
    return _result(result)


@router.post(
    "/jars/{jar_id}/withdrawals",
    response_model=LedgerResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Withdraw from a jar",
)
async def withdraw(
    jar_id: uuid.UUID,
    request: WithdrawalRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    """
    Take money out of a jar to one of your verified bank accounts.

    If the jar requires approval the withdrawal is created **pending** and
    the balance is untouched until it is approved. Otherwise the balance is
    debited now and the bank transfer settles afterwards.
    """
    result = await engine.withdraw(
        user_id,
        jar_id,
        request.amount_cents,
        request.bank_account_id,
        description=request.description,
        metadata=request.metadata,
    )
    return _result(result)


@router.post(
    "/jars/{jar_id}/penalties",
    response_model=LedgerResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Charge a swear-word penalty",
)
async def penalty(
    jar_id: uuid.UUID,
    request: PenaltyRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    """
    Any member can charge a penalty. The amount is the one given, else the
    jar's configured penalty for the word, else the default penalty.
    """
    result = await engine.penalty(user_id, jar_id, request.word, amount_cents=request.amount_cents)
    return _result(result)


@router.get(
    "/jars/{jar_id}/transactions",
    response_model=list[TransactionResponse],
    summary="List transactions for a jar",
)
async def list_transactions(
    jar_id: uuid.UUID,
    type: TransactionTypeFilter | None = Query(None, description="Filter by type"),
    status: TransactionStatusFilter | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    """List a jar's transactions, newest first, with optional filters and pagination."""
    return await engine.list_transactions(
        user_id, jar_id, type_filter=type, status_filter=status, limit=limit, offset=offset,
    )


# ---------------------------------------------------------------------------
# Transaction endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/transactions",
    response_model=TransactionPage,
    summary="List your transactions",
)
async def list_my_transactions(
    jar_id: uuid.UUID | None = Query(None, description="Only transactions on this jar"),
    type: TransactionTypeFilter | None = Query(None, description="Filter by type"),
    status: TransactionStatusFilter | None = Query(None, description="Filter by status"),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    """
    Transactions you made, newest first, across the jars you still belong
    to. `total` counts every match, not just this page.
    """
    transactions, total = await engine.list_user_transactions(
        user_id, jar_id=jar_id, type_filter=type, status_filter=status, limit=limit, offset=offset,
    )
    return {
        "transactions": transactions,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_next": offset + len(transactions) < total,
    }


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a single transaction",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    return await engine.get_transaction(user_id, transaction_id)


@router.post(
    "/transactions/{transaction_id}/approve",
    response_model=LedgerResultResponse,
    summary="Approve a pending withdrawal",
)
async def approve(
    transaction_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    """Complete a pending withdrawal. Funds are re-checked at approval time."""
    return _result(await engine.approve(user_id, transaction_id))


@router.post(
    "/transactions/{transaction_id}/cancel",
    response_model=LedgerResultResponse,
    summary="Cancel a pending transaction",
)
async def cancel(
    transaction_id: uuid.UUID,
    request: ReasonRequest | None = None,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    reason = request.reason if request else None
    return _result(await engine.cancel(user_id, transaction_id, reason=reason))


@router.post(
    "/transactions/{transaction_id}/reverse",
    response_model=LedgerResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Reverse a completed deposit or penalty",
)
async def reverse(
    transaction_id: uuid.UUID,
    request: ReasonRequest | None = None,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    """
    Create a refund that undoes a completed deposit or penalty. The original
    transaction is left as it was; each one can be reversed only once.
    """
    reason = request.reason if request else None
    return _result(await engine.reverse(user_id, transaction_id, reason=reason))
