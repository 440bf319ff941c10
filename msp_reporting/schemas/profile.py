"""Pydantic schemas for the caller's profile, login and public config."""

from uuid import UUID

from pydantic import EmailStr, Field

from ..models import UserRole
from .base import ReportingBaseModel


class CompanySummary(ReportingBaseModel):
    id: UUID
    name: str
    logo_url: str | None = None


class ImpersonatedUser(ReportingBaseModel):
    id: UUID
    email: str
    full_name: str | None = None
    role: UserRole
    active_company_id: UUID | None = None


class ProfileResponse(ReportingBaseModel):
    id: UUID
    email: str
    full_name: str | None = None
    role: UserRole
    active_company_id: UUID | None = None
    companies: list[CompanySummary] = []
    is_super_admin: bool = False
    is_real_super_admin: bool = False
    is_impersonating: bool = False
    impersonating: ImpersonatedUser | None = None


class SwitchCompanyRequest(ReportingBaseModel):
    company_id: UUID


class LoginRequest(ReportingBaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(ReportingBaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class PublicConfigResponse(ReportingBaseModel):
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
