"""
Settlements router: callback endpoints for the external providers.

  POST /settlements/{transaction_id}                     Bank leg outcome
  POST /settlements/bank-accounts/{id}/verification      Micro-deposit verification outcome

Requests are authenticated with the shared X-Settlement-Secret header rather
than a user token, so only the provider can report an outcome. A report for
a transaction that is not awaiting settlement (including a duplicate
delivery) is rejected with 409 and changes nothing.
"""

import uuid

from fastapi import APIRouter, Depends

from swearjar.dependencies import (
    get_bank_account_service,
    get_transaction_engine,
    require_settlement_secret,
)
from swearjar.schemas.bank_account import BankAccountResponse
from swearjar.schemas.settlement import SettlementCallback, VerificationCallback
from swearjar.schemas.transaction import TransactionResponse
from swearjar.services.bank_account_service import BankAccountService
from swearjar.services.transaction_engine import TransactionEngine

router = APIRouter(dependencies=[Depends(require_settlement_secret)])


@router.post(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Report a settlement outcome",
)
async def report_settlement(
    transaction_id: uuid.UUID,
    request: SettlementCallback,
    engine: TransactionEngine = Depends(get_transaction_engine),
):
    result = await engine.transition_transaction_status(
        transaction_id,
        request.status,
        processed_at=request.processed_at,
        external_transaction_id=request.external_transaction_id,
        reason=request.reason,
    )
    return result.transaction


@router.post(
    "/bank-accounts/{bank_account_id}/verification",
    response_model=BankAccountResponse,
    summary="Report a bank account verification outcome",
)
async def report_verification(
    bank_account_id: uuid.UUID,
    request: VerificationCallback,
    accounts: BankAccountService = Depends(get_bank_account_service),
):
    """
    Record whether the account's micro-deposit check succeeded. Success
    enables withdrawals to the account; an already verified account is
    rejected with 409.
    """
    if request.verified:
        return await accounts.mark_verified(bank_account_id)
    return await accounts.mark_verification_failed(bank_account_id)
