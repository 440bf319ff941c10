"""SQLAlchemy ORM Models for MSP Reporting."""

from .base import Base, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    SyncStatus,
    SyncTaskStatus,
    SyncType,
    UserRole,
    # Cached PSA data
    Client,
    Feedback,
    Ticket,
    # Sync bookkeeping
    SyncMetadata,
    SyncTask,
    # Tenancy
    Company,
    CompanyDomainAssignment,
    CompanyExternalClient,
    CompanyExternalOrg,
    UserCompany,
    UserProfile,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    # Enums
    "UserRole",
    "SyncType",
    "SyncStatus",
    "SyncTaskStatus",
    # Cached PSA data
    "Client",
    "Ticket",
    "Feedback",
    # Sync bookkeeping
    "SyncMetadata",
    "SyncTask",
    # Tenancy
    "Company",
    "UserProfile",
    "UserCompany",
    "CompanyExternalClient",
    "CompanyExternalOrg",
    "CompanyDomainAssignment",
]
