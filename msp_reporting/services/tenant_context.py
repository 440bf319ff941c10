"""
Tenant Context: who is acting, and what they may see.

Every request resolves an EffectiveContext once. A super admin who is
impersonating a customer is treated as that customer for all reads, while
the real role is kept for the operations only a real admin may perform.

Restriction sets come from the company mapping tables:
- HaloPSA client ids (company_halopsa_clients)
- NinjaOne organization ids (company_ninjaone_orgs)
- 20i domain names, lower-cased (company_domain_assignments)

An empty set means "nothing", never "everything".
"""

import logging
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Company,
    CompanyDomainAssignment,
    CompanyExternalClient,
    CompanyExternalOrg,
    UserCompany,
    UserProfile,
    UserRole,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# EXCEPTIONS
# =============================================================================


class TenantError(Exception):
    """Base exception for tenant context operations."""

    pass


class AccessDeniedError(TenantError):
    """The caller may not see or do this."""

    pass


class ProfileNotFoundError(AccessDeniedError):
    """The caller (or the user being impersonated) has no profile."""

    pass


class NoActiveCompanyError(AccessDeniedError):
    """A customer without an active company cannot read anything."""

    pass


class TargetUserNotFoundError(TenantError):
    """The user to impersonate does not exist."""

    pass


# =============================================================================
# TYPES
# =============================================================================


@dataclass(frozen=True)
class ActingAsSelf:
    profile: UserProfile


@dataclass(frozen=True)
class Impersonating:
    admin: UserProfile
    target: UserProfile


ActingAs = ActingAsSelf | Impersonating


@dataclass(frozen=True)
class EffectiveContext:
    """Resolved once per request and passed to services explicitly."""

    user_id: UUID
    effective_user_id: UUID
    role: UserRole
    active_company_id: UUID | None
    is_super_admin: bool
    is_real_super_admin: bool
    is_impersonating: bool


@dataclass(frozen=True)
class AccessScope:
    """Allowed external ids; None means unrestricted."""

    allowed: frozenset | None

    @classmethod
    def unrestricted(cls) -> "AccessScope":
        return cls(allowed=None)

    @property
    def is_unrestricted(self) -> bool:
        return self.allowed is None

    @property
    def is_empty(self) -> bool:
        return self.allowed is not None and not self.allowed

    def permits(self, value: Hashable) -> bool:
        return self.allowed is None or value in self.allowed

    def filter(self, items: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
        if self.allowed is None:
            return list(items)
        return [item for item in items if key(item) in self.allowed]


# =============================================================================
# RESOLUTION
# =============================================================================


async def _get_profile(session: AsyncSession, user_id: UUID) -> UserProfile | None:
    result = await session.execute(
        select(UserProfile).where(UserProfile.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def resolve_acting_as(session: AsyncSession, user_id: UUID) -> ActingAs:
    profile = await _get_profile(session, user_id)
    if profile is None:
        raise ProfileNotFoundError("User profile not found. Contact administrator.")

    if profile.impersonating_user_id and profile.role == UserRole.SUPER_ADMIN:
        target = await _get_profile(session, profile.impersonating_user_id)
        if target is None:
            raise ProfileNotFoundError(
                "Impersonated user profile not found. Contact administrator."
            )
        return Impersonating(admin=profile, target=target)

    return ActingAsSelf(profile=profile)


def build_context(acting: ActingAs) -> EffectiveContext:
    """Flags for ``acting`` without requiring an active company."""
    if isinstance(acting, Impersonating):
        real, effective = acting.admin, acting.target
    else:
        real, effective = acting.profile, acting.profile

    role = UserRole(effective.role)
    return EffectiveContext(
        user_id=real.user_id,
        effective_user_id=effective.user_id,
        role=role,
        active_company_id=effective.active_company_id,
        is_super_admin=role == UserRole.SUPER_ADMIN,
        is_real_super_admin=UserRole(real.role) == UserRole.SUPER_ADMIN,
        is_impersonating=isinstance(acting, Impersonating),
    )


async def resolve_effective_context(
    session: AsyncSession, user_id: UUID
) -> EffectiveContext:
    """Resolve the effective role and company for a request."""
    ctx = build_context(await resolve_acting_as(session, user_id))
    if ctx.role == UserRole.CUSTOMER and ctx.active_company_id is None:
        raise NoActiveCompanyError("No active company. Contact administrator.")
    return ctx


# =============================================================================
# SCOPES
# =============================================================================


async def _company_scope(
    session: AsyncSession, ctx: EffectiveContext, column, owner
) -> AccessScope:
    if ctx.is_super_admin:
        return AccessScope.unrestricted()
    if ctx.active_company_id is None:
        return AccessScope(allowed=frozenset())
    result = await session.execute(
        select(column).where(owner == ctx.active_company_id)
    )
    return AccessScope(allowed=frozenset(result.scalars().all()))


async def client_scope(session: AsyncSession, ctx: EffectiveContext) -> AccessScope:
    return await _company_scope(
        session,
        ctx,
        CompanyExternalClient.halopsa_client_id,
        CompanyExternalClient.company_id,
    )


async def org_scope(session: AsyncSession, ctx: EffectiveContext) -> AccessScope:
    return await _company_scope(
        session,
        ctx,
        CompanyExternalOrg.ninjaone_org_id,
        CompanyExternalOrg.company_id,
    )


async def domain_scope(session: AsyncSession, ctx: EffectiveContext) -> AccessScope:
    scope = await _company_scope(
        session,
        ctx,
        CompanyDomainAssignment.domain_name,
        CompanyDomainAssignment.company_id,
    )
    if scope.allowed is None:
        return scope
    return AccessScope(allowed=frozenset(name.lower() for name in scope.allowed))


# =============================================================================
# PROFILE OPERATIONS
# =============================================================================


async def list_user_companies(session: AsyncSession, user_id: UUID) -> list[Company]:
    result = await session.execute(
        select(Company)
        .join(UserCompany, UserCompany.company_id == Company.id)
        .where(UserCompany.user_id == user_id)
        .order_by(Company.name)
    )
    return list(result.scalars().all())


async def switch_active_company(
    session: AsyncSession, user_id: UUID, company_id: UUID
) -> UserProfile:
    """Make ``company_id`` the caller's active company if they belong to it."""
    result = await session.execute(
        select(UserCompany).where(
            UserCompany.user_id == user_id,
            UserCompany.company_id == company_id,
        )
    )
    if result.scalar_one_or_none() is None:
        raise AccessDeniedError("Access denied to this company")

    profile = await _get_profile(session, user_id)
    if profile is None:
        raise ProfileNotFoundError("User profile not found")

    profile.active_company_id = company_id
    await session.flush()
    logger.info(f"User {user_id} switched active company to {company_id}")
    return profile


async def start_impersonation(
    session: AsyncSession, admin_user_id: UUID, target_user_id: UUID
) -> UserProfile:
    """Begin viewing the dashboard as a customer. Returns the target profile."""
    admin = await _get_profile(session, admin_user_id)
    if admin is None or admin.role != UserRole.SUPER_ADMIN:
        raise AccessDeniedError("Only super admins can impersonate users")

    target = await _get_profile(session, target_user_id)
    if target is None:
        raise TargetUserNotFoundError("Target user not found")
    if target.role != UserRole.CUSTOMER:
        raise AccessDeniedError("Cannot impersonate other admins")

    admin.impersonating_user_id = target.user_id
    await session.flush()
    logger.info(f"Admin {admin_user_id} started impersonating {target_user_id}")
    return target


async def stop_impersonation(session: AsyncSession, admin_user_id: UUID) -> None:
    profile = await _get_profile(session, admin_user_id)
    if profile is None:
        raise ProfileNotFoundError("User profile not found")
    profile.impersonating_user_id = None
    await session.flush()
    logger.info(f"User {admin_user_id} stopped impersonating")


async def load_profile_with_companies(
    session: AsyncSession, user_id: UUID
) -> tuple[UserProfile, list[Company], UserProfile | None]:
    """The caller's own profile, their companies, and who they impersonate."""
    profile = await _get_profile(session, user_id)
    if profile is None:
        raise ProfileNotFoundError("User profile not found")

    companies = await list_user_companies(session, user_id)
    impersonated = None
    if profile.impersonating_user_id and profile.role == UserRole.SUPER_ADMIN:
        impersonated = await _get_profile(session, profile.impersonating_user_id)
    return profile, companies, impersonated
