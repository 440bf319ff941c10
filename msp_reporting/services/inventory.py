"""Inventory Service: live NinjaOne devices and 20i domains, tenant-filtered."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.base import UpstreamError
from ..integrations.ninjaone import KIND_SERVER, KIND_WORKSTATION, DeviceRecord, NinjaOneClient
from ..integrations.twentyi import DomainRecord, TwentyIClient
from .tenant_context import EffectiveContext, domain_scope, org_scope

logger = logging.getLogger(__name__)


@dataclass
class DeviceSummary:
    total: int = 0
    online: int = 0
    offline: int = 0
    needing_patches: int = 0


@dataclass
class DeviceInventory:
    summary: DeviceSummary
    devices: list[DeviceRecord]
    last_updated: datetime


@dataclass
class DomainSummary:
    total_domains: int = 0
    domains_with_hosting: int = 0
    domains_expiring_soon: int = 0


@dataclass
class DomainInventory:
    summary: DomainSummary
    domains: list[DomainRecord] = field(default_factory=list)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def summarize_devices(devices: list[DeviceRecord]) -> DeviceSummary:
    online = sum(1 for d in devices if d.online)
    return DeviceSummary(
        total=len(devices),
        online=online,
        offline=len(devices) - online,
        needing_patches=sum(1 for d in devices if d.needs_patches),
    )


def summarize_domains(domains: list[DomainRecord]) -> DomainSummary:
    return DomainSummary(
        total_domains=len(domains),
        domains_with_hosting=sum(1 for d in domains if d.has_hosting),
        domains_expiring_soon=sum(1 for d in domains if d.is_expiring_soon),
    )


class InventoryService:
    """Filters upstream inventory by the caller's organization and domain scopes."""

    def __init__(
        self,
        session: AsyncSession,
        ctx: EffectiveContext,
        ninjaone: NinjaOneClient | None,
        twentyi: TwentyIClient | None,
    ):
        self._session = session
        self._ctx = ctx
        self._ninjaone = ninjaone
        self._twentyi = twentyi

    async def _devices(self, kind: str) -> DeviceInventory:
        scope = await org_scope(self._session, self._ctx)
        now = datetime.now(timezone.utc)
        if scope.is_empty:
            return DeviceInventory(summary=DeviceSummary(), devices=[], last_updated=now)
        if self._ninjaone is None:
            raise UpstreamError("ninjaone", "Integration is not configured")

        devices = [d for d in await self._ninjaone.get_devices() if d.kind == kind]
        devices = scope.filter(devices, key=lambda d: d.organization_id)
        return DeviceInventory(
            summary=summarize_devices(devices),
            devices=devices,
            last_updated=now,
        )

    async def servers(self) -> DeviceInventory:
        return await self._devices(KIND_SERVER)

    async def workstations(self) -> DeviceInventory:
        return await self._devices(KIND_WORKSTATION)

    async def domains(self) -> DomainInventory:
        scope = await domain_scope(self._session, self._ctx)
        if scope.is_empty:
            return DomainInventory(summary=DomainSummary())
        if self._twentyi is None:
            raise UpstreamError("twentyi", "Integration is not configured")

        domains = scope.filter(
            await self._twentyi.get_domains(), key=lambda d: d.name.lower()
        )
        return DomainInventory(summary=summarize_domains(domains), domains=domains)
