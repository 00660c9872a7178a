"""
Auth controller — login & current-user introspection.

Login is PUBLIC (no permission dependency).  `/me` only requires a
valid token; it reports the caller's roles and effective permissions
so the frontend can hide what the guards would reject anyway.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.database import get_db
from crm_backend.models.user import User
from crm_backend.rbac.context import AuthContext
from crm_backend.rbac.dependencies import get_auth_context, get_current_active_user
from crm_backend.schemas import LoginRequest, MeResponse, TokenResponse
from crm_backend.services import auth_service

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate with email + password → receive an access token."""
    return await auth_service.authenticate_user(body.email, body.password, db)


@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_active_user),
    ctx: AuthContext = Depends(get_auth_context),
):
    return MeResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        roles=sorted(r.name for r in user.roles),
        permissions=ctx.permissions.sorted(),
    )
