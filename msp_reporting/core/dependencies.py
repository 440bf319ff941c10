"""FastAPI dependencies for authentication, tenant context and upstream clients."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.factory import UpstreamClients
from ..jobs.sync_worker import SyncTaskQueue
from ..services.tenant_context import (
    AccessDeniedError,
    EffectiveContext,
    resolve_effective_context,
)
from .database import get_session
from .security import decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)

SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def get_current_user_id(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> UUID:
    """Dependency to get the authenticated user's id from the bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(payload.sub)
    except ValueError:
        logger.warning(f"Token subject is not a user id: {payload.sub!r}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
            headers={"WWW-Authenticate": "Bearer"},
        )


CurrentUserDep = Annotated[UUID, Depends(get_current_user_id)]


async def get_tenant_context(
    user_id: CurrentUserDep,
    session: SessionDep,
) -> EffectiveContext:
    """Resolve who the caller acts as and which company they see."""
    try:
        return await resolve_effective_context(session, user_id)
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


TenantContextDep = Annotated[EffectiveContext, Depends(get_tenant_context)]


def require_super_admin(ctx: TenantContextDep) -> EffectiveContext:
    """Require super admin as the effective role.

    An admin who is impersonating a customer loses admin access until they
    stop impersonating.
    """
    if not ctx.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin access required",
        )
    return ctx


SuperAdminDep = Annotated[EffectiveContext, Depends(require_super_admin)]


# =============================================================================
# APPLICATION STATE
# =============================================================================


def get_upstream_clients(request: Request) -> UpstreamClients:
    return request.app.state.upstream


def get_sync_queue(request: Request) -> SyncTaskQueue:
    return request.app.state.sync_queue


UpstreamDep = Annotated[UpstreamClients, Depends(get_upstream_clients)]
SyncQueueDep = Annotated[SyncTaskQueue, Depends(get_sync_queue)]
