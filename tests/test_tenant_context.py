"""
Tests for tenant context resolution - Verifying Isolation Guarantees.

These tests verify:
1. IMPERSONATION: an admin impersonating a customer sees exactly what they see
2. SWITCHING: users can only activate companies they belong to
3. SCOPES: super admins are unrestricted, empty mappings stay empty
"""

from uuid import uuid4

import pytest

from msp_reporting.models import UserRole
from msp_reporting.services.tenant_context import (
    AccessDeniedError,
    AccessScope,
    ActingAsSelf,
    Impersonating,
    NoActiveCompanyError,
    ProfileNotFoundError,
    TargetUserNotFoundError,
    client_scope,
    domain_scope,
    load_profile_with_companies,
    org_scope,
    resolve_acting_as,
    resolve_effective_context,
    start_impersonation,
    stop_impersonation,
    switch_active_company,
)


# =============================================================================
# TEST: RESOLUTION
# =============================================================================


class TestResolveContext:
    async def test_customer_acts_as_self(self, session, factory):
        acme = await factory.company("Acme", client_ids=[5, 9])
        user = await factory.user("alice@acme.test", companies=[acme])

        acting = await resolve_acting_as(session, user.user_id)
        ctx = await resolve_effective_context(session, user.user_id)

        assert isinstance(acting, ActingAsSelf)
        assert ctx.role == UserRole.CUSTOMER
        assert ctx.active_company_id == acme.id
        assert ctx.is_super_admin is False
        assert ctx.is_impersonating is False

    async def test_impersonation_flips_role_and_company(self, session, factory):
        acme = await factory.company("Acme", client_ids=[5])
        customer = await factory.user("bob@acme.test", companies=[acme])
        admin = await factory.user("root@msp.test", role=UserRole.SUPER_ADMIN)

        await start_impersonation(session, admin.user_id, customer.user_id)
        await session.commit()

        acting = await resolve_acting_as(session, admin.user_id)
        ctx = await resolve_effective_context(session, admin.user_id)

        assert isinstance(acting, Impersonating)
        assert ctx.user_id == admin.user_id
        assert ctx.effective_user_id == customer.user_id
        assert ctx.role == UserRole.CUSTOMER
        assert ctx.is_super_admin is False
        assert ctx.is_real_super_admin is True
        assert ctx.is_impersonating is True
        assert ctx.active_company_id == acme.id

    async def test_impersonation_ignored_for_non_admins(self, session, factory):
        acme = await factory.company("Acme")
        other = await factory.user("carol@acme.test", companies=[acme])
        user = await factory.user("dave@acme.test", companies=[acme])
        user.impersonating_user_id = other.user_id
        await session.commit()

        ctx = await resolve_effective_context(session, user.user_id)

        assert ctx.effective_user_id == user.user_id
        assert ctx.is_impersonating is False

    async def test_unknown_profile_is_denied(self, session):
        with pytest.raises(ProfileNotFoundError):
            await resolve_effective_context(session, uuid4())

    async def test_customer_without_active_company_is_denied(self, session, factory):
        user = await factory.user("eve@nowhere.test")

        with pytest.raises(NoActiveCompanyError):
            await resolve_effective_context(session, user.user_id)

    async def test_stop_impersonation_restores_admin(self, session, factory):
        acme = await factory.company("Acme")
        customer = await factory.user("bob@acme.test", companies=[acme])
        admin = await factory.user("root@msp.test", role=UserRole.SUPER_ADMIN)
        await start_impersonation(session, admin.user_id, customer.user_id)
        await session.commit()

        await stop_impersonation(session, admin.user_id)
        await session.commit()

        ctx = await resolve_effective_context(session, admin.user_id)
        assert ctx.is_super_admin is True
        assert ctx.is_impersonating is False


# =============================================================================
# TEST: IMPERSONATION RULES
# =============================================================================


class TestStartImpersonation:
    async def test_customer_cannot_impersonate(self, session, factory):
        acme = await factory.company("Acme")
        a = await factory.user("a@acme.test", companies=[acme])
        b = await factory.user("b@acme.test", companies=[acme])

        with pytest.raises(AccessDeniedError):
            await start_impersonation(session, a.user_id, b.user_id)

    async def test_admin_cannot_impersonate_admin(self, session, factory):
        root = await factory.user("root@msp.test", role=UserRole.SUPER_ADMIN)
        other = await factory.user("ops@msp.test", role=UserRole.SUPER_ADMIN)

        with pytest.raises(AccessDeniedError):
            await start_impersonation(session, root.user_id, other.user_id)

    async def test_missing_target(self, session, factory):
        root = await factory.user("root@msp.test", role=UserRole.SUPER_ADMIN)

        with pytest.raises(TargetUserNotFoundError):
            await start_impersonation(session, root.user_id, uuid4())


# =============================================================================
# TEST: COMPANY SWITCHING
# =============================================================================


class TestSwitchCompany:
    async def test_switch_to_member_company(self, session, factory):
        acme = await factory.company("Acme")
        globex = await factory.company("Globex")
        user = await factory.user("frank@acme.test", companies=[acme, globex])

        profile = await switch_active_company(session, user.user_id, globex.id)

        assert profile.active_company_id == globex.id

    async def test_switch_to_foreign_company_is_rejected(self, session, factory):
        acme = await factory.company("Acme")
        initech = await factory.company("Initech")
        user = await factory.user("grace@acme.test", companies=[acme])

        with pytest.raises(AccessDeniedError):
            await switch_active_company(session, user.user_id, initech.id)

        ctx = await resolve_effective_context(session, user.user_id)
        assert ctx.active_company_id == acme.id

    async def test_profile_lists_companies_and_impersonation(self, session, factory):
        acme = await factory.company("Acme")
        globex = await factory.company("Globex")
        customer = await factory.user("heidi@acme.test", companies=[globex, acme])
        admin = await factory.user("root@msp.test", role=UserRole.SUPER_ADMIN)
        await start_impersonation(session, admin.user_id, customer.user_id)
        await session.commit()

        profile, companies, impersonated = await load_profile_with_companies(
            session, admin.user_id
        )

        assert profile.user_id == admin.user_id
        assert companies == []
        assert impersonated.user_id == customer.user_id

        _, companies, impersonated = await load_profile_with_companies(
            session, customer.user_id
        )
        assert [c.name for c in companies] == ["Acme", "Globex"]
        assert impersonated is None


# =============================================================================
# TEST: SCOPES
# =============================================================================


class TestScopes:
    async def test_super_admin_is_unrestricted(self, session, factory):
        admin = await factory.user("root@msp.test", role=UserRole.SUPER_ADMIN)
        ctx = await resolve_effective_context(session, admin.user_id)

        scope = await client_scope(session, ctx)

        assert scope.is_unrestricted
        assert scope.permits(12345)

    async def test_customer_scope_is_company_mappings(self, session, factory):
        acme = await factory.company(
            "Acme", client_ids=[5, 9], org_ids=[10], domains=["Acme.com"]
        )
        await factory.company("Globex", client_ids=[7], org_ids=[20], domains=["globex.io"])
        user = await factory.user("ivan@acme.test", companies=[acme])
        ctx = await resolve_effective_context(session, user.user_id)

        assert (await client_scope(session, ctx)).allowed == frozenset({5, 9})
        assert (await org_scope(session, ctx)).allowed == frozenset({10})
        assert (await domain_scope(session, ctx)).allowed == frozenset({"acme.com"})

    async def test_empty_mapping_is_empty_not_unrestricted(self, session, factory):
        acme = await factory.company("Acme")
        user = await factory.user("judy@acme.test", companies=[acme])
        ctx = await resolve_effective_context(session, user.user_id)

        scope = await client_scope(session, ctx)

        assert scope.is_empty
        assert not scope.is_unrestricted
        assert scope.filter([1, 2, 3], key=lambda x: x) == []

    def test_filter_keeps_allowed_items(self):
        scope = AccessScope(allowed=frozenset({1, 3}))
        assert scope.filter([{"id": 1}, {"id": 2}, {"id": 3}], key=lambda d: d["id"]) == [
            {"id": 1},
            {"id": 3},
        ]
        assert AccessScope.unrestricted().filter([1, 2], key=lambda x: x) == [1, 2]
