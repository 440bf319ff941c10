"""Pydantic schemas for NinjaOne monitoring and 20i domain endpoints."""

from datetime import datetime

from ..integrations.ninjaone import DeviceRecord
from ..services.inventory import DeviceSummary
from .base import ReportingBaseModel


# =============================================================================
# DEVICES
# =============================================================================


class PatchCounts(ReportingBaseModel):
    os_pending: int = 0
    software_pending: int = 0


class DeviceResponse(ReportingBaseModel):
    id: int
    name: str
    organization_id: int | None = None
    client_name: str | None = None
    node_class: str | None = None
    status: str
    last_contact: datetime | None = None
    patches: PatchCounts

    @classmethod
    def from_record(cls, device: DeviceRecord) -> "DeviceResponse":
        return cls(
            id=device.id,
            name=device.name,
            organization_id=device.organization_id,
            client_name=device.organization_name,
            node_class=device.node_class,
            status="ONLINE" if device.online else "OFFLINE",
            last_contact=device.last_contact,
            patches=PatchCounts(
                os_pending=device.os_pending_patches,
                software_pending=device.software_pending_patches,
            ),
        )


class ServerSummaryResponse(ReportingBaseModel):
    total_servers: int
    online_servers: int
    offline_servers: int
    servers_needing_patches: int

    @classmethod
    def from_summary(cls, summary: DeviceSummary) -> "ServerSummaryResponse":
        return cls(
            total_servers=summary.total,
            online_servers=summary.online,
            offline_servers=summary.offline,
            servers_needing_patches=summary.needing_patches,
        )


class WorkstationSummaryResponse(ReportingBaseModel):
    total_workstations: int
    online_workstations: int
    offline_workstations: int
    workstations_needing_patches: int

    @classmethod
    def from_summary(cls, summary: DeviceSummary) -> "WorkstationSummaryResponse":
        return cls(
            total_workstations=summary.total,
            online_workstations=summary.online,
            offline_workstations=summary.offline,
            workstations_needing_patches=summary.needing_patches,
        )


class ServersResponse(ReportingBaseModel):
    summary: ServerSummaryResponse
    servers: list[DeviceResponse]
    last_updated: datetime


class WorkstationsResponse(ReportingBaseModel):
    summary: WorkstationSummaryResponse
    workstations: list[DeviceResponse]
    last_updated: datetime


class OrganizationResponse(ReportingBaseModel):
    id: int
    name: str | None = None


# =============================================================================
# DOMAINS
# =============================================================================


class DomainResponse(ReportingBaseModel):
    id: str
    name: str
    expiry_date: datetime | None = None
    days_until_expiry: int | None = None
    status: str
    has_hosting: bool
    hosting_package_id: str | None = None
    hosting_package_name: str | None = None


class DomainSummaryResponse(ReportingBaseModel):
    total_domains: int
    domains_with_hosting: int
    domains_expiring_soon: int


class DomainsResponse(ReportingBaseModel):
    summary: DomainSummaryResponse
    domains: list[DomainResponse]
    last_updated: datetime
