"""
Sync API: trigger a background HaloPSA sync and inspect its progress.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select

from ..core.dependencies import SessionDep, SuperAdminDep, SyncQueueDep, TenantContextDep
from ..integrations.base import UpstreamError
from ..models import SyncMetadata
from ..schemas.reporting import (
    SyncAcceptedResponse,
    SyncMetadataResponse,
    SyncRequest,
    SyncTaskResponse,
)

router = APIRouter(prefix="/sync", tags=["sync"])

SYNC_HISTORY_LIMIT = 10


@router.post(
    "",
    response_model=SyncAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_sync(
    ctx: SuperAdminDep,
    queue: SyncQueueDep,
    request: SyncRequest | None = None,
):
    """Queue a full sync. Poll ``/sync/tasks/{taskId}`` for the outcome."""
    months_back = request.months_back if request else SyncRequest().months_back
    try:
        task_id = await queue.submit(months_back, requested_by=ctx.user_id)
    except UpstreamError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{e.provider} integration is not configured",
        )
    return SyncAcceptedResponse(months_back=months_back, task_id=task_id)


@router.get("/status", response_model=list[SyncMetadataResponse])
async def get_sync_status(ctx: TenantContextDep, session: SessionDep):
    """The most recent sync steps, newest first."""
    result = await session.execute(
        select(SyncMetadata)
        .order_by(SyncMetadata.last_sync.desc(), SyncMetadata.id.desc())
        .limit(SYNC_HISTORY_LIMIT)
    )
    return [SyncMetadataResponse.model_validate(row) for row in result.scalars().all()]


@router.get("/tasks/{task_id}", response_model=SyncTaskResponse)
async def get_sync_task(task_id: UUID, ctx: TenantContextDep, queue: SyncQueueDep):
    task = await queue.get(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sync task not found",
        )
    return SyncTaskResponse.model_validate(task)
