"""
Bank accounts router: bank accounts linked through Plaid.

  POST   /bank-accounts                        Record a linked account
  GET    /bank-accounts                        List your accounts
  GET    /bank-accounts/{id}                   Get one of your accounts
  PATCH  /bank-accounts/{id}                   Toggle deposit/withdraw use
  DELETE /bank-accounts/{id}                   Disconnect an account

All endpoints are scoped to the caller: another user's account is reported
as not found. Verification is not among them: its outcome is reported by
the linking provider through POST /settlements/bank-accounts/{id}/verification.
"""

import uuid

from fastapi import APIRouter, Depends, status

from swearjar.dependencies import get_bank_account_service, get_current_user_id
from swearjar.schemas.bank_account import (
    BankAccountLinkRequest,
    BankAccountPermissionsRequest,
    BankAccountResponse,
)
from swearjar.services.bank_account_service import BankAccountService

router = APIRouter()


@router.post(
    "",
    response_model=BankAccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Link a bank account",
)
async def link_bank_account(
    request: BankAccountLinkRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    accounts: BankAccountService = Depends(get_bank_account_service),
):
    """
    Record an account produced by the Plaid token exchange. The access token
    is encrypted at rest and never returned. New accounts can fund deposits
    but cannot receive withdrawals until verified.
    """
    return await accounts.link_bank_account(user_id, **request.model_dump())


@router.get("", response_model=list[BankAccountResponse], summary="List your bank accounts")
async def list_bank_accounts(
    user_id: uuid.UUID = Depends(get_current_user_id),
    accounts: BankAccountService = Depends(get_bank_account_service),
):
    return await accounts.list_bank_accounts(user_id)


@router.get("/{bank_account_id}", response_model=BankAccountResponse, summary="Get a bank account")
async def get_bank_account(
    bank_account_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    accounts: BankAccountService = Depends(get_bank_account_service),
):
    return await accounts.get_bank_account(user_id, bank_account_id)


@router.patch("/{bank_account_id}", response_model=BankAccountResponse, summary="Update bank account use")
async def update_bank_account(
    bank_account_id: uuid.UUID,
    request: BankAccountPermissionsRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    accounts: BankAccountService = Depends(get_bank_account_service),
):
    return await accounts.update_permissions(
        user_id, bank_account_id, can_deposit=request.can_deposit, can_withdraw=request.can_withdraw,
    )


@router.delete("/{bank_account_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Disconnect a bank account")
async def deactivate_bank_account(
    bank_account_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    accounts: BankAccountService = Depends(get_bank_account_service),
):
    await accounts.deactivate_bank_account(user_id, bank_account_id)
