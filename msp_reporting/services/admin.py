"""
Admin Service: companies, users and the tenant mapping tables.

The mapping tables (HaloPSA clients, NinjaOne organizations, 20i domains)
are the only source of truth for tenant filtering and are written here and
nowhere else. Callers are expected to be super admins; the API layer
enforces that before constructing the service.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.security import hash_password
from ..integrations.twentyi import TwentyIClient
from ..models import (
    Client,
    Company,
    CompanyDomainAssignment,
    CompanyExternalClient,
    CompanyExternalOrg,
    UserCompany,
    UserProfile,
    UserRole,
    as_utc,
)

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class AdminError(Exception):
    """Base exception for admin operations."""

    pass


class NotFoundError(AdminError):
    """The company or user does not exist."""

    pass


class InvalidOperationError(AdminError):
    """The request conflicts with existing data or business rules."""

    pass


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class MappedEntity:
    id: int
    name: str | None


@dataclass
class CompanyRef:
    id: UUID
    name: str


@dataclass
class CompanyView:
    id: UUID
    name: str
    logo_url: str | None
    halopsa_clients: list[MappedEntity] = field(default_factory=list)
    ninjaone_orgs: list[MappedEntity] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class UserView:
    id: UUID
    email: str
    full_name: str | None
    role: UserRole
    active_company_id: UUID | None
    companies: list[CompanyRef] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class CreateUserInput:
    email: str
    full_name: str
    role: UserRole
    company_ids: list[UUID] = field(default_factory=list)
    password: str | None = None


@dataclass
class DomainAssignmentInput:
    domain_name: str
    company_id: UUID


@dataclass
class AvailableDomain:
    name: str
    has_hosting: bool
    status: str
    company_id: UUID | None
    company_name: str | None


def _unique(values: Sequence) -> list:
    return list(dict.fromkeys(values))


# =============================================================================
# SERVICE
# =============================================================================


class AdminService:
    """CRUD for companies, users and mapping tables."""

    def __init__(self, session: AsyncSession, twentyi: TwentyIClient | None = None):
        self._session = session
        self._twentyi = twentyi

    # =========================================================================
    # COMPANIES
    # =========================================================================

    async def _get_company(self, company_id: UUID) -> Company:
        company = await self._session.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company not found")
        return company

    async def _ensure_unique_name(self, name: str, exclude_id: UUID | None = None) -> None:
        stmt = select(Company.id).where(Company.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Company.id != exclude_id)
        if (await self._session.execute(stmt)).first() is not None:
            raise InvalidOperationError("Company name already exists")

    async def list_companies(self) -> list[CompanyView]:
        companies = (
            await self._session.execute(
                select(Company)
                .options(
                    selectinload(Company.client_mappings),
                    selectinload(Company.org_mappings),
                )
                .order_by(Company.name)
            )
        ).scalars().all()

        client_names = dict(
            (await self._session.execute(select(Client.id, Client.name))).all()
        )
        return [
            CompanyView(
                id=c.id,
                name=c.name,
                logo_url=c.logo_url,
                halopsa_clients=[
                    MappedEntity(
                        id=m.halopsa_client_id,
                        name=client_names.get(m.halopsa_client_id) or "Unknown",
                    )
                    for m in c.client_mappings
                ],
                ninjaone_orgs=[
                    MappedEntity(id=m.ninjaone_org_id, name=m.ninjaone_org_name)
                    for m in c.org_mappings
                ],
                created_at=as_utc(c.created_at),
                updated_at=as_utc(c.updated_at),
            )
            for c in companies
        ]

    async def create_company(self, name: str, logo_url: str | None = None) -> Company:
        await self._ensure_unique_name(name)
        company = Company(name=name, logo_url=logo_url or None)
        self._session.add(company)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise InvalidOperationError("Company name already exists") from e
        logger.info(f"Company created: {company.id} ({name})")
        return company

    async def update_company(
        self,
        company_id: UUID,
        name: str | None = None,
        logo_url: str | None = None,
    ) -> Company:
        company = await self._get_company(company_id)
        if name is not None and name != company.name:
            await self._ensure_unique_name(name, exclude_id=company_id)
            company.name = name
        if logo_url is not None:
            company.logo_url = logo_url or None
        await self._session.flush()
        return company

    async def delete_company(self, company_id: UUID) -> None:
        """Delete a company and its mappings. Refused while users are assigned."""
        company = await self._get_company(company_id)
        assigned = await self._session.execute(
            select(UserCompany.id).where(UserCompany.company_id == company_id).limit(1)
        )
        if assigned.first() is not None:
            raise InvalidOperationError(
                "Cannot delete company with assigned users. Remove user assignments first."
            )

        for model in (CompanyExternalClient, CompanyExternalOrg, CompanyDomainAssignment):
            await self._session.execute(delete(model).where(model.company_id == company_id))
        await self._session.execute(
            update(UserProfile)
            .where(UserProfile.active_company_id == company_id)
            .values(active_company_id=None)
        )
        await self._session.delete(company)
        await self._session.flush()
        logger.info(f"Company deleted: {company_id}")

    async def list_available_clients(self) -> list[MappedEntity]:
        result = await self._session.execute(
            select(Client.id, Client.name).order_by(Client.name)
        )
        return [MappedEntity(id=client_id, name=name) for client_id, name in result.all()]

    # =========================================================================
    # MAPPINGS
    # =========================================================================

    async def set_client_mappings(self, company_id: UUID, client_ids: Sequence[int]) -> int:
        """Replace the company's HaloPSA client mappings."""
        await self._get_company(company_id)
        await self._session.execute(
            delete(CompanyExternalClient).where(CompanyExternalClient.company_id == company_id)
        )
        ids = _unique(client_ids)
        self._session.add_all(
            CompanyExternalClient(company_id=company_id, halopsa_client_id=client_id)
            for client_id in ids
        )
        await self._session.flush()
        logger.info(f"Set {len(ids)} HaloPSA client mappings for company {company_id}")
        return len(ids)

    async def set_org_mappings(
        self, company_id: UUID, orgs: Sequence[MappedEntity]
    ) -> int:
        """Replace the company's NinjaOne organization mappings."""
        await self._get_company(company_id)
        await self._session.execute(
            delete(CompanyExternalOrg).where(CompanyExternalOrg.company_id == company_id)
        )
        by_id = {org.id: org for org in orgs}
        self._session.add_all(
            CompanyExternalOrg(
                company_id=company_id,
                ninjaone_org_id=org.id,
                ninjaone_org_name=org.name,
            )
            for org in by_id.values()
        )
        await self._session.flush()
        logger.info(f"Set {len(by_id)} NinjaOne org mappings for company {company_id}")
        return len(by_id)

    # =========================================================================
    # USERS
    # =========================================================================

    async def _get_user(self, user_id: UUID) -> UserProfile:
        result = await self._session.execute(
            select(UserProfile)
            .options(selectinload(UserProfile.memberships).selectinload(UserCompany.company))
            .where(UserProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError("User not found")
        return profile

    async def _ensure_companies_exist(self, company_ids: Sequence[UUID]) -> None:
        if not company_ids:
            return
        found = set(
            (
                await self._session.execute(
                    select(Company.id).where(Company.id.in_(list(company_ids)))
                )
            ).scalars().all()
        )
        missing = [str(c) for c in company_ids if c not in found]
        if missing:
            raise NotFoundError(f"Company not found: {', '.join(missing)}")

    @staticmethod
    def _to_view(profile: UserProfile) -> UserView:
        return UserView(
            id=profile.user_id,
            email=profile.email,
            full_name=profile.full_name,
            role=UserRole(profile.role),
            active_company_id=profile.active_company_id,
            companies=[
                CompanyRef(id=m.company.id, name=m.company.name)
                for m in profile.memberships
            ],
            created_at=as_utc(profile.created_at),
            updated_at=as_utc(profile.updated_at),
        )

    async def list_users(self) -> list[UserView]:
        result = await self._session.execute(
            select(UserProfile)
            .options(selectinload(UserProfile.memberships).selectinload(UserCompany.company))
            .order_by(UserProfile.created_at.desc())
        )
        return [self._to_view(p) for p in result.scalars().all()]

    async def get_user(self, user_id: UUID) -> UserView:
        return self._to_view(await self._get_user(user_id))

    async def create_user(self, input: CreateUserInput) -> UserView:
        email = input.email.strip().lower()
        role = UserRole(input.role)
        company_ids = _unique(input.company_ids)
        if role == UserRole.CUSTOMER and not company_ids:
            raise InvalidOperationError(
                "Customer users must be assigned to at least one company"
            )
        await self._ensure_companies_exist(company_ids)

        existing = await self._session.execute(
            select(UserProfile.user_id).where(UserProfile.email == email)
        )
        if existing.first() is not None:
            raise InvalidOperationError("A user with this email already exists")

        profile = UserProfile(
            email=email,
            full_name=input.full_name,
            role=role,
            active_company_id=company_ids[0] if company_ids else None,
            password_hash=hash_password(input.password) if input.password else None,
        )
        self._session.add(profile)
        await self._session.flush()

        self._session.add_all(
            UserCompany(user_id=profile.user_id, company_id=company_id)
            for company_id in company_ids
        )
        await self._session.flush()
        logger.info(f"User created: {profile.user_id} ({email}, {role.value})")

        return await self.get_user(profile.user_id)

    async def update_user(
        self,
        user_id: UUID,
        full_name: str | None = None,
        role: UserRole | None = None,
        company_ids: Sequence[UUID] | None = None,
    ) -> UserView:
        """Update a profile. ``company_ids`` (when given) replaces memberships."""
        profile = await self._get_user(user_id)
        new_role = UserRole(role) if role is not None else UserRole(profile.role)
        if company_ids is not None:
            ids = _unique(company_ids)
        else:
            ids = [m.company_id for m in profile.memberships]
        if new_role == UserRole.CUSTOMER and not ids:
            raise InvalidOperationError(
                "Customer users must be assigned to at least one company"
            )

        if full_name is not None:
            profile.full_name = full_name
        if role is not None:
            profile.role = new_role

        if company_ids is not None:
            await self._ensure_companies_exist(ids)
            current = {m.company_id: m for m in profile.memberships}
            for company_id, membership in current.items():
                if company_id not in ids:
                    profile.memberships.remove(membership)
            for company_id in ids:
                if company_id not in current:
                    profile.memberships.append(UserCompany(company_id=company_id))
            if profile.active_company_id not in ids:
                profile.active_company_id = ids[0] if ids else None

        await self._session.flush()
        logger.info(f"User updated: {user_id}")
        return await self.get_user(user_id)

    async def delete_user(self, user_id: UUID) -> None:
        profile = await self._get_user(user_id)
        await self._session.execute(
            update(UserProfile)
            .where(UserProfile.impersonating_user_id == user_id)
            .values(impersonating_user_id=None)
        )
        await self._session.delete(profile)
        await self._session.flush()
        logger.info(f"User deleted: {user_id}")

    # =========================================================================
    # DOMAIN ASSIGNMENTS
    # =========================================================================

    async def list_domain_assignments(self) -> list[CompanyDomainAssignment]:
        result = await self._session.execute(
            select(CompanyDomainAssignment).order_by(CompanyDomainAssignment.domain_name)
        )
        return list(result.scalars().all())

    async def assign_domains(self, assignments: Sequence[DomainAssignmentInput]) -> int:
        """Upsert by domain name; assigning an assigned domain moves it."""
        await self._ensure_companies_exist(_unique(a.company_id for a in assignments))

        wanted = {a.domain_name.strip().lower(): a.company_id for a in assignments}
        existing = {
            row.domain_name: row
            for row in (
                await self._session.execute(
                    select(CompanyDomainAssignment).where(
                        CompanyDomainAssignment.domain_name.in_(list(wanted))
                    )
                )
            ).scalars()
        }
        for domain_name, company_id in wanted.items():
            row = existing.get(domain_name)
            if row is None:
                self._session.add(
                    CompanyDomainAssignment(domain_name=domain_name, company_id=company_id)
                )
            else:
                row.company_id = company_id
        await self._session.flush()
        logger.info(f"Assigned {len(wanted)} domains")
        return len(wanted)

    async def remove_domain_assignment(self, domain_name: str) -> None:
        result = await self._session.execute(
            delete(CompanyDomainAssignment).where(
                CompanyDomainAssignment.domain_name == domain_name.strip().lower()
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Domain assignment not found")

    async def remove_company_domain_assignments(self, company_id: UUID) -> int:
        result = await self._session.execute(
            delete(CompanyDomainAssignment).where(
                CompanyDomainAssignment.company_id == company_id
            )
        )
        logger.info(f"Removed {result.rowcount} domain assignments for company {company_id}")
        return result.rowcount

    async def list_available_domains(self) -> list[AvailableDomain]:
        """All 20i domains with the company each is currently assigned to."""
        if self._twentyi is None:
            return []
        domains = await self._twentyi.get_domains()
        rows = (
            await self._session.execute(
                select(CompanyDomainAssignment.domain_name, Company.id, Company.name).join(
                    Company, Company.id == CompanyDomainAssignment.company_id
                )
            )
        ).all()
        assigned = {name: (company_id, company_name) for name, company_id, company_name in rows}
        available = []
        for d in sorted(domains, key=lambda d: d.name.lower()):
            company_id, company_name = assigned.get(d.name.lower(), (None, None))
            available.append(
                AvailableDomain(
                    name=d.name,
                    has_hosting=d.has_hosting,
                    status=d.status,
                    company_id=company_id,
                    company_name=company_name,
                )
            )
        return available
