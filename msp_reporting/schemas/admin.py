"""Pydantic schemas for company, user and domain-assignment administration."""

from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field, field_validator, model_validator

from ..models import UserRole
from .base import ReportingBaseModel


# =============================================================================
# COMPANIES
# =============================================================================


class CompanyCreate(ReportingBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    logo_url: str | None = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Company name is required")
        return v


class CompanyUpdate(ReportingBaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    logo_url: str | None = Field(default=None, max_length=500)


class MappedEntityResponse(ReportingBaseModel):
    id: int
    name: str | None = None


class CompanyResponse(ReportingBaseModel):
    id: UUID
    name: str
    logo_url: str | None = None
    halopsa_clients: list[MappedEntityResponse] = Field(
        default_factory=list, alias="haloPSAClients"
    )
    ninjaone_orgs: list[MappedEntityResponse] = Field(
        default_factory=list, alias="ninjaOneOrgs"
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ClientMappingRequest(ReportingBaseModel):
    client_ids: list[int]


class OrgMapping(ReportingBaseModel):
    id: int
    name: str | None = None


class OrgMappingRequest(ReportingBaseModel):
    organizations: list[OrgMapping]


class MappingUpdatedResponse(ReportingBaseModel):
    success: bool = True
    count: int


# =============================================================================
# USERS
# =============================================================================


class CompanyRefResponse(ReportingBaseModel):
    id: UUID
    name: str


class UserCreate(ReportingBaseModel):
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=255)
    role: UserRole = UserRole.CUSTOMER
    company_ids: list[UUID] = []
    password: str | None = Field(default=None, min_length=8, max_length=128)

    @model_validator(mode="after")
    def customer_needs_company(self):
        if self.role == UserRole.CUSTOMER and not self.company_ids:
            raise ValueError("Customer users must belong to at least one company")
        return self


class UserUpdate(ReportingBaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    role: UserRole | None = None
    company_ids: list[UUID] | None = None


class UserResponse(ReportingBaseModel):
    id: UUID
    email: str
    full_name: str | None = None
    role: UserRole
    active_company_id: UUID | None = None
    companies: list[CompanyRefResponse] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


# =============================================================================
# DOMAIN ASSIGNMENTS
# =============================================================================


class DomainAssignmentItem(ReportingBaseModel):
    domain_name: str = Field(..., min_length=1, max_length=255)
    company_id: UUID


class DomainAssignmentRequest(ReportingBaseModel):
    assignments: list[DomainAssignmentItem] = Field(..., min_length=1)


class DomainAssignmentResponse(ReportingBaseModel):
    id: UUID
    domain_name: str
    company_id: UUID


class AvailableDomainResponse(ReportingBaseModel):
    name: str
    has_hosting: bool
    status: str
    company_id: UUID | None = None
    company_name: str | None = None
