"""
Jars router: jar lifecycle, balance and statistics endpoints.

  POST   /jars                 Create a jar (caller becomes owner)
  GET    /jars                 List jars the caller belongs to
  GET    /jars/{jar_id}        Jar details with members        [member]
  PATCH  /jars/{jar_id}        Update name/description/settings [admin]
  DELETE /jars/{jar_id}        Soft-delete an empty jar         [owner]
  GET    /jars/{jar_id}/balance Cached vs. computed balance      [member]
  GET    /jars/{jar_id}/summary Totals per transaction type      [member]

Permission checks happen in the service layer through the Permission Gate;
these handlers only identify the caller.
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from swearjar.dependencies import get_current_user_id, get_jar_service
from swearjar.schemas.jar import (
    BalanceResponse,
    JarCreateRequest,
    JarDetailResponse,
    JarResponse,
    JarUpdateRequest,
    SummaryResponse,
)
from swearjar.schemas.membership import MembershipResponse
from swearjar.services.jar_service import JarService

router = APIRouter()


def _settings_dict(request_settings) -> dict | None:
    if request_settings is None:
        return None
    return request_settings.model_dump(exclude_none=True)


@router.post(
    "",
    response_model=JarResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a swear jar",
)
async def create_jar(
    request: JarCreateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    """
    Create a jar with a zero balance. The caller becomes its owner and
    holds every permission on it.
    """
    return await jars.create_jar(
        owner_id=user_id,
        name=request.name,
        description=request.description,
        currency=request.currency,
        settings=_settings_dict(request.settings),
    )


@router.get("", response_model=list[JarResponse], summary="List your jars")
async def list_jars(
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    return await jars.list_jars_for_user(user_id)


@router.get("/{jar_id}", response_model=JarDetailResponse, summary="Get jar details")
async def get_jar(
    jar_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    jar, members = await jars.get_jar_for_member(user_id, jar_id)
    return JarDetailResponse(
        **JarResponse.model_validate(jar).model_dump(),
        members=[MembershipResponse.model_validate(m) for m in members],
    )


@router.patch("/{jar_id}", response_model=JarResponse, summary="Update a jar")
async def update_jar(
    jar_id: uuid.UUID,
    request: JarUpdateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    """
    Update the jar's name, description or settings. Settings are merged:
    fields left out keep their current value.
    """
    return await jars.update_jar(
        user_id,
        jar_id,
        name=request.name,
        description=request.description,
        settings=_settings_dict(request.settings),
    )


@router.delete("/{jar_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a jar")
async def delete_jar(
    jar_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    """
    Soft-delete a jar. Only the owner may do this, and only once the jar is
    empty and has no pending transactions.
    """
    await jars.delete_jar(user_id, jar_id)


@router.get("/{jar_id}/balance", response_model=BalanceResponse, summary="Check jar balance")
async def get_balance(
    jar_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    """
    Get the jar balance: both cached and computed from transactions.

    The `match` flag reports whether the two agree. A mismatch would indicate
    a data integrity issue that needs investigation.
    """
    return await jars.get_balance(user_id, jar_id)


@router.get("/{jar_id}/summary", response_model=SummaryResponse, summary="Jar statistics")
async def get_summary(
    jar_id: uuid.UUID,
    start: datetime | None = Query(None, description="Only transactions created at or after this time"),
    end: datetime | None = Query(None, description="Only transactions created at or before this time"),
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    return await jars.summary(user_id, jar_id, start=start, end=end)
