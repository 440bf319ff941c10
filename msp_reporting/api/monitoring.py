"""
Monitoring API: live NinjaOne devices and 20i domains.

Results come from the upstream APIs (through a short-lived cache) and are
filtered to the organizations and domains mapped to the caller's company.
"""

from fastapi import APIRouter

from ..core.dependencies import SessionDep, TenantContextDep, UpstreamDep
from ..schemas.inventory import (
    DeviceResponse,
    DomainResponse,
    DomainsResponse,
    DomainSummaryResponse,
    ServerSummaryResponse,
    ServersResponse,
    WorkstationSummaryResponse,
    WorkstationsResponse,
)
from ..services.inventory import InventoryService

router = APIRouter(tags=["monitoring"])


def _service(session, ctx, upstream) -> InventoryService:
    return InventoryService(session, ctx, upstream.ninjaone, upstream.twentyi)


@router.get("/servers", response_model=ServersResponse)
async def list_servers(ctx: TenantContextDep, session: SessionDep, upstream: UpstreamDep):
    inventory = await _service(session, ctx, upstream).servers()
    return ServersResponse(
        summary=ServerSummaryResponse.from_summary(inventory.summary),
        servers=[DeviceResponse.from_record(d) for d in inventory.devices],
        last_updated=inventory.last_updated,
    )


@router.get("/workstations", response_model=WorkstationsResponse)
async def list_workstations(
    ctx: TenantContextDep, session: SessionDep, upstream: UpstreamDep
):
    inventory = await _service(session, ctx, upstream).workstations()
    return WorkstationsResponse(
        summary=WorkstationSummaryResponse.from_summary(inventory.summary),
        workstations=[DeviceResponse.from_record(d) for d in inventory.devices],
        last_updated=inventory.last_updated,
    )


@router.get("/domains", response_model=DomainsResponse)
async def list_domains(ctx: TenantContextDep, session: SessionDep, upstream: UpstreamDep):
    """Domains with expiry status and hosting linkage."""
    inventory = await _service(session, ctx, upstream).domains()
    return DomainsResponse(
        summary=DomainSummaryResponse.model_validate(inventory.summary),
        domains=[DomainResponse.model_validate(d) for d in inventory.domains],
        last_updated=inventory.last_updated,
    )
