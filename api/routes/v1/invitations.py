"""
api/routes/v1/invitations.py -- Invitation management for admins.

Routes:
  POST   /api/v1/invitations              -- create; returns the token and link once
  GET    /api/v1/invitations              -- list (optionally ?status=pending)
  DELETE /api/v1/invitations/{id}         -- revoke a pending invitation
  POST   /api/v1/invitations/{id}/resend  -- replace with a fresh token

Every route requires the "create user" capability. Which roles a caller may
invite is checked by InvitationManager (admins cannot hand out admin or
super_admin).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.models import InvitationCreate, InvitationResend, InvitationResponse
from auth.access import Action, Resource
from auth.dependencies import get_credential_service, require_capability
from auth.models import Account, AuditAction, InvitationStatus
from auth.service import CredentialService

router = APIRouter()

_can_invite = require_capability(Action.CREATE, Resource.USER)


@router.post("/invitations", response_model=InvitationResponse, status_code=201)
def create_invitation(
    request: Request,
    body: InvitationCreate,
    actor: Account = Depends(_can_invite),
    service: CredentialService = Depends(get_credential_service),
) -> InvitationResponse:
    ticket = service.invitations.create(
        body.email,
        body.role,
        actor,
        station_id=body.station_id,
        send_email=body.send_email,
    )
    service.audit.record(
        AuditAction.INVITATION_CREATED,
        success=True,
        account_id=actor.id,
        email=ticket.invitation.email,
        source_address=request.client.host if request.client else None,
        metadata={"invitation_id": ticket.invitation.id, "role": ticket.invitation.role.value},
    )
    return InvitationResponse.from_ticket(ticket)


@router.get("/invitations", response_model=list[InvitationResponse])
def list_invitations(
    status: Optional[InvitationStatus] = None,
    actor: Account = Depends(_can_invite),
    service: CredentialService = Depends(get_credential_service),
) -> list[InvitationResponse]:
    return [InvitationResponse.from_invitation(i) for i in service.invitations.list(status)]


@router.delete("/invitations/{invitation_id}", response_model=InvitationResponse)
def revoke_invitation(
    request: Request,
    invitation_id: int,
    actor: Account = Depends(_can_invite),
    service: CredentialService = Depends(get_credential_service),
) -> InvitationResponse:
    """Revoke a pending invitation. Accepted invitations cannot be revoked (400)."""
    invitation = service.invitations.revoke(invitation_id, actor)
    service.audit.record(
        AuditAction.INVITATION_REVOKED,
        success=True,
        account_id=actor.id,
        email=invitation.email,
        source_address=request.client.host if request.client else None,
        metadata={"invitation_id": invitation_id},
    )
    return InvitationResponse.from_invitation(invitation)


@router.post("/invitations/{invitation_id}/resend", response_model=InvitationResponse, status_code=201)
def resend_invitation(
    invitation_id: int,
    body: InvitationResend,
    actor: Account = Depends(_can_invite),
    service: CredentialService = Depends(get_credential_service),
) -> InvitationResponse:
    return InvitationResponse.from_ticket(service.invitations.resend(invitation_id, actor, send_email=body.send_email))
