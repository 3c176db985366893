"""
api/routes/v1/users.py -- Account administration.

Routes:
  POST  /api/v1/users       -- provision an account with an explicit role
  GET   /api/v1/users/{id}  -- read an account (self, or anyone for admin/manager)
  PATCH /api/v1/users/{id}  -- update profile fields and/or role

Type-level capability checks run in the dependency; instance-level checks
("self only") run in CredentialService once the target record is loaded.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from api.models import AccountPatch, AccountProvision, AccountResponse
from auth.access import Action, Resource
from auth.dependencies import get_credential_service, require_capability
from auth.models import Account, RegistrationProfile
from auth.service import CredentialService

router = APIRouter()


@router.post("/users", response_model=AccountResponse, status_code=201)
def provision_user(
    body: AccountProvision,
    actor: Account = Depends(require_capability(Action.CREATE, Resource.USER)),
    service: CredentialService = Depends(get_credential_service),
) -> AccountResponse:
    """Create an account on someone's behalf. Only super_admin may create admins."""
    profile = RegistrationProfile(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    account = service.provision_account(profile, body.role, station_id=body.station_id, actor=actor)
    return AccountResponse.from_account(account)


@router.get("/users/{account_id}", response_model=AccountResponse)
def get_user(
    account_id: int,
    actor: Account = Depends(require_capability(Action.READ, Resource.USER)),
    service: CredentialService = Depends(get_credential_service),
) -> AccountResponse:
    return AccountResponse.from_account(service.get_account(account_id, actor=actor))


@router.patch("/users/{account_id}", response_model=AccountResponse)
def update_user(
    account_id: int,
    body: AccountPatch,
    actor: Account = Depends(require_capability(Action.UPDATE, Resource.USER)),
    service: CredentialService = Depends(get_credential_service),
) -> AccountResponse:
    """Update profile fields and/or the role. Passwords are changed via /auth/password only."""
    fields = body.model_dump(exclude_unset=True, exclude_none=True, exclude={"role"})
    if not fields and body.role is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    account = service.update_profile(account_id, actor=actor, role=body.role, **fields)
    return AccountResponse.from_account(account)
