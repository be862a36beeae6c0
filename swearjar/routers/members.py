"""
Members router: jar membership endpoints.

  POST   /jars/{jar_id}/members                 Invite a user      [can_invite]
  DELETE /jars/{jar_id}/members/{user_id}       Remove a member    [admin]
  PUT    /jars/{jar_id}/members/{user_id}/role  Change a role      [owner]
  POST   /jars/{jar_id}/leave                   Leave a jar        [member]
"""

import uuid

from fastapi import APIRouter, Depends, status

from swearjar.dependencies import get_current_user_id, get_jar_service
from swearjar.schemas.membership import InviteMemberRequest, MembershipResponse, UpdateRoleRequest
from swearjar.services.jar_service import JarService

router = APIRouter()


def _flags(permissions) -> dict | None:
    return permissions.model_dump(exclude_none=True) if permissions else None


@router.post(
    "/{jar_id}/members",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite a member",
)
async def invite_member(
    jar_id: uuid.UUID,
    request: InviteMemberRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    """
    Add a user to the jar. Flags default from the role (members may deposit
    and view; admins may also withdraw and invite) unless overridden.
    """
    return await jars.invite_member(
        user_id, jar_id, request.user_id, role=request.role, permissions=_flags(request.permissions),
    )


@router.delete(
    "/{jar_id}/members/{member_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a member",
)
async def remove_member(
    jar_id: uuid.UUID,
    member_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    await jars.remove_member(user_id, jar_id, member_id)


@router.put(
    "/{jar_id}/members/{member_id}/role",
    response_model=MembershipResponse,
    summary="Change a member's role",
)
async def update_member_role(
    jar_id: uuid.UUID,
    member_id: uuid.UUID,
    request: UpdateRoleRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    return await jars.update_member_role(
        user_id, jar_id, member_id, request.role, permissions=_flags(request.permissions),
    )


@router.post("/{jar_id}/leave", status_code=status.HTTP_204_NO_CONTENT, summary="Leave a jar")
async def leave_jar(
    jar_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    jars: JarService = Depends(get_jar_service),
):
    await jars.leave_jar(user_id, jar_id)
