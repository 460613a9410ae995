"""
api/routes/v1/admin.py -- Account administration REST endpoints.

Routes:
  GET    /api/v1/admin/users            -- list all accounts
  PATCH  /api/v1/admin/users/{id}/role  -- change an account's role
  DELETE /api/v1/admin/users/{id}       -- delete an account

Every route depends on require_admin, the single role gate. Handlers never
re-check roles themselves.

[M4] The service refuses to demote or delete the last admin account, so
there is always a recovery path without direct DB access.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AccountResponse, MessageResponse, RoleUpdate
from auth.dependencies import require_admin
from auth.models import Account
from auth.service import AuthService

router = APIRouter()


@router.get("/admin/users", response_model=list[AccountResponse])
async def list_users(
    request: Request,
    admin: Account = Depends(require_admin),
) -> list[AccountResponse]:
    """List all accounts without password hashes or OTP state."""
    service: AuthService = request.app.state.auth_service
    return [AccountResponse.from_account(a) for a in await service.list_accounts()]


@router.patch("/admin/users/{user_id}/role", response_model=AccountResponse)
async def update_user_role(
    request: Request,
    user_id: int,
    body: RoleUpdate,
    admin: Account = Depends(require_admin),
) -> AccountResponse:
    """Set an account's role. Moving to business needs a complete business profile."""
    service: AuthService = request.app.state.auth_service
    account = await service.change_role(
        admin.id,
        user_id,
        body.role,
        business_name=body.business_name,
        business_address=body.business_address,
        business_abn=body.business_abn,
    )
    return AccountResponse.from_account(account)


@router.delete("/admin/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    request: Request,
    user_id: int,
    admin: Account = Depends(require_admin),
) -> MessageResponse:
    """Permanently delete an account. Its sessions die with it: the guard finds no record."""
    service: AuthService = request.app.state.auth_service
    await service.delete_account(admin.id, user_id)
    return MessageResponse(message="User deleted.")
