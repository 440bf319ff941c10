"""Authentication and public configuration routes.

The hosted identity provider issues tokens for the dashboard in production;
``/auth/login`` covers accounts created with a local password.
"""

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select

from ..core.config import get_settings
from ..core.dependencies import SessionDep
from ..core.security import create_access_token, verify_password
from ..models import UserProfile
from ..schemas.profile import LoginRequest, PublicConfigResponse, TokenResponse

router = APIRouter(tags=["authentication"])


@router.get("/config", response_model=PublicConfigResponse)
async def get_public_config():
    """Public identity-provider settings for the frontend. No auth required."""
    settings = get_settings()
    return PublicConfigResponse(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
    )


@router.post("/auth/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    session: SessionDep,
):
    """Login with email and password."""
    result = await session.execute(
        select(UserProfile).where(UserProfile.email == request.email.lower())
    )
    user = result.scalar_one_or_none()

    if not user or not user.password_hash or not verify_password(
        request.password, user.password_hash
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    settings = get_settings()
    token = create_access_token(user_id=user.user_id, email=user.email)
    return TokenResponse(
        access_token=token,
        expires_in=settings.access_token_expire_minutes * 60,
    )
