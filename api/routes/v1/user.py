"""
api/routes/v1/user.py -- Self-service profile endpoints.

Routes:
  GET /api/v1/user/me               -- current account profile
  PUT /api/v1/user/update           -- partial profile update (name, email, general/business)
  PUT /api/v1/user/update-password  -- change password (current password required)

All routes require a session (get_current_account). Accounts only ever act
on themselves here: the target is the session's account, never a path or
body parameter.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AccountResponse, MessageResponse, PasswordUpdate, ProfileUpdate
from auth.dependencies import get_current_account
from auth.models import Account
from auth.service import AuthService

router = APIRouter()


@router.get("/user/me", response_model=AccountResponse)
async def me(request: Request, current_account: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the profile of the logged-in account."""
    service: AuthService = request.app.state.auth_service
    account = await service.get_account(current_account.id)
    return AccountResponse.from_account(account)


@router.put("/user/update", response_model=AccountResponse)
async def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_account: Account = Depends(get_current_account),
) -> AccountResponse:
    """Update name, email and the general/business switch.

    Switching to business needs businessName, businessAddress and
    businessAbn; switching back to general clears them. A new email must not
    belong to another account (409).
    """
    service: AuthService = request.app.state.auth_service
    account = await service.update_profile(
        current_account.id,
        name=body.name,
        email=body.email,
        role=body.role,
        business_name=body.business_name,
        business_address=body.business_address,
        business_abn=body.business_abn,
    )
    return AccountResponse.from_account(account)


@router.put("/user/update-password", response_model=MessageResponse)
async def update_password(
    request: Request,
    body: PasswordUpdate,
    current_account: Account = Depends(get_current_account),
) -> MessageResponse:
    """Replace the password. 401 bad_current_password if currentPassword is wrong.

    Existing session tokens stay valid; there is no server-side revocation.
    """
    service: AuthService = request.app.state.auth_service
    await service.update_password(current_account.id, body.current_password, body.new_password)
    return MessageResponse(message="Password updated.")
