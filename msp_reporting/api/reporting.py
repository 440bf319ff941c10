"""
Reporting API: client lists, ticket statistics and the dashboard aggregate.

Every endpoint is restricted to the HaloPSA clients mapped to the caller's
active company; super admins see everything.
"""

from dataclasses import asdict
from datetime import date
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from ..core.dependencies import SessionDep, TenantContextDep
from ..schemas.reporting import (
    ClientResponse,
    DashboardStatsResponse,
    MonthlyStatResponse,
    MonthlyStatsRequest,
    TicketStatsResponse,
)
from ..services.reporting import MonthWindow, ReportingService
from ..services.tenant_context import AccessDeniedError

router = APIRouter(tags=["reporting"])


@router.get("/clients", response_model=list[ClientResponse])
async def list_clients(ctx: TenantContextDep, session: SessionDep):
    """Clients with ticket activity in the last 12 months."""
    service = ReportingService(session, ctx)
    return [ClientResponse.model_validate(c) for c in await service.list_clients()]


@router.get("/tickets/stats", response_model=TicketStatsResponse)
async def get_ticket_stats(
    ctx: TenantContextDep,
    session: SessionDep,
    client_id: Annotated[int, Query(alias="clientId")],
    start_date: Annotated[date, Query(alias="startDate")],
    end_date: Annotated[date, Query(alias="endDate")],
):
    """Open/closed counts and the ticket list for one client and date range."""
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="endDate must not be before startDate",
        )

    service = ReportingService(session, ctx)
    try:
        stats = await service.ticket_stats(client_id, start_date, end_date)
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return TicketStatsResponse.model_validate(asdict(stats))


@router.post("/tickets/monthly-stats", response_model=list[MonthlyStatResponse])
async def get_monthly_stats(
    request: MonthlyStatsRequest,
    ctx: TenantContextDep,
    session: SessionDep,
):
    """Per-window counts, in the order the windows were given."""
    windows = [
        MonthWindow(label=m.label, start_date=m.start_date, end_date=m.end_date)
        for m in request.months
    ]
    service = ReportingService(session, ctx)
    try:
        stats = await service.monthly_stats(request.client_id, windows)
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return [MonthlyStatResponse.model_validate(s) for s in stats]


@router.get("/dashboard/stats", response_model=DashboardStatsResponse)
async def get_dashboard_stats(ctx: TenantContextDep, session: SessionDep):
    service = ReportingService(session, ctx)
    stats = await service.dashboard_stats()
    return DashboardStatsResponse.model_validate(asdict(stats))
