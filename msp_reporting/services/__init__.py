"""Business logic services for MSP Reporting."""

from .admin import AdminError, AdminService, InvalidOperationError, NotFoundError
from .inventory import InventoryService
from .reporting import ReportingService, satisfaction_summary
from .sync_engine import FullSyncResult, SyncEngine
from .tenant_context import (
    AccessDeniedError,
    AccessScope,
    EffectiveContext,
    NoActiveCompanyError,
    ProfileNotFoundError,
    TargetUserNotFoundError,
    TenantError,
    resolve_effective_context,
)

__all__ = [
    # Sync
    "SyncEngine",
    "FullSyncResult",
    # Tenant context
    "EffectiveContext",
    "AccessScope",
    "TenantError",
    "AccessDeniedError",
    "ProfileNotFoundError",
    "NoActiveCompanyError",
    "TargetUserNotFoundError",
    "resolve_effective_context",
    # Reporting
    "ReportingService",
    "satisfaction_summary",
    "InventoryService",
    # Admin
    "AdminService",
    "AdminError",
    "NotFoundError",
    "InvalidOperationError",
]
