"""
Invite endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import get_current_user, get_lending_system
from .schemas import SendInviteRequest, invite_response
from ..system import LendingSystem
from ..users import User


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_invite(
    request: SendInviteRequest,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    invite = await system.invite_manager.send_invite(user.id, user.name, request.email)
    return invite_response(invite)


@router.get("/pending")
async def pending_invites(
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Pending invites addressed to the signed-in user's email"""
    invites = await system.invite_manager.pending_invites_for(user.email)
    return {"invites": [invite_response(i) for i in invites]}


@router.get("/sent")
async def sent_invites(
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    invites = await system.invite_manager.invites_sent_by(user.id)
    return {"invites": [invite_response(i) for i in invites]}


@router.post("/{invite_id}/accept")
async def accept_invite(
    invite_id: str,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    invite = await system.invite_manager.accept_invite(invite_id, user.id)
    return invite_response(invite)
