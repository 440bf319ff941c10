"""
Profile API: the caller's profile, company switching and impersonation.

These endpoints act on the authenticated user, never on the impersonated
one, so an admin can always stop impersonating.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from ..core.dependencies import CurrentUserDep, SessionDep
from ..models import UserProfile, UserRole
from ..schemas.base import SuccessResponse
from ..schemas.profile import (
    CompanySummary,
    ImpersonatedUser,
    ProfileResponse,
    SwitchCompanyRequest,
)
from ..services.tenant_context import (
    AccessDeniedError,
    ProfileNotFoundError,
    TargetUserNotFoundError,
    build_context,
    load_profile_with_companies,
    resolve_acting_as,
    start_impersonation,
    stop_impersonation,
    switch_active_company,
)

router = APIRouter(prefix="/profile", tags=["profile"])


def _impersonated(target: UserProfile) -> ImpersonatedUser:
    return ImpersonatedUser(
        id=target.user_id,
        email=target.email,
        full_name=target.full_name,
        role=UserRole(target.role),
        active_company_id=target.active_company_id,
    )


@router.get("", response_model=ProfileResponse)
async def get_profile(user_id: CurrentUserDep, session: SessionDep):
    """The caller's own profile.

    ``isSuperAdmin`` is the effective role; ``isRealSuperAdmin`` stays true
    for an admin who is impersonating so the admin controls remain visible.
    """
    try:
        profile, companies, impersonated = await load_profile_with_companies(
            session, user_id
        )
        ctx = build_context(await resolve_acting_as(session, user_id))
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return ProfileResponse(
        id=profile.user_id,
        email=profile.email,
        full_name=profile.full_name,
        role=UserRole(profile.role),
        active_company_id=profile.active_company_id,
        companies=[CompanySummary.model_validate(c) for c in companies],
        is_super_admin=ctx.is_super_admin,
        is_real_super_admin=ctx.is_real_super_admin,
        is_impersonating=ctx.is_impersonating,
        impersonating=_impersonated(impersonated) if impersonated else None,
    )


@router.post("/switch-company", response_model=SuccessResponse)
async def switch_company(
    request: SwitchCompanyRequest,
    user_id: CurrentUserDep,
    session: SessionDep,
):
    """Make another of the caller's companies the active one."""
    try:
        await switch_active_company(session, user_id, request.company_id)
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    await session.commit()
    return SuccessResponse()


@router.post("/impersonate/{target_user_id}", response_model=ImpersonatedUser)
async def impersonate(
    target_user_id: UUID,
    user_id: CurrentUserDep,
    session: SessionDep,
):
    """View the dashboard as a customer user. Super admins only."""
    try:
        target = await start_impersonation(session, user_id, target_user_id)
    except TargetUserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    response = _impersonated(target)
    await session.commit()
    return response


@router.post("/stop-impersonation", response_model=SuccessResponse)
async def end_impersonation(user_id: CurrentUserDep, session: SessionDep):
    try:
        await stop_impersonation(session, user_id)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    await session.commit()
    return SuccessResponse()
