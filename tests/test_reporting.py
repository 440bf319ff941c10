"""
Tests for the Reporting Service.

These tests verify:
1. ISOLATION: customers only ever see tickets for their mapped clients
2. STATS: open/closed counts, monthly windows and inclusive end dates
3. DASHBOARD: period counts, top clients, 365-day trend, satisfaction
4. DEGRADATION: a broken feedback query leaves the ticket figures intact
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from msp_reporting.models import UserRole
from msp_reporting.services.reporting import (
    MonthWindow,
    ReportingService,
    SatisfactionStats,
    daily_trend,
    satisfaction_summary,
)
from msp_reporting.services.tenant_context import AccessDeniedError, resolve_effective_context


# =============================================================================
# FIXTURES
# =============================================================================


def at(day: date, hour: int = 10) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


@pytest.fixture
async def tenants(session, factory):
    """Acme maps clients 5 and 9; client 7 belongs to nobody."""
    for client_id in (5, 7, 9):
        await factory.client(client_id, name=f"Client {client_id}")
    acme = await factory.company("Acme", client_ids=[5, 9])
    customer = await factory.user("alice@acme.test", companies=[acme])
    admin = await factory.user("root@msp.test", role=UserRole.SUPER_ADMIN)
    return {
        "acme": acme,
        "customer": await resolve_effective_context(session, customer.user_id),
        "admin": await resolve_effective_context(session, admin.user_id),
    }


# =============================================================================
# TEST: PURE AGGREGATION
# =============================================================================


class TestSatisfactionSummary:
    def test_rate_ignores_null_scores(self):
        stats = satisfaction_summary([1, 1, 2, 1, None])
        assert stats.satisfied == 3
        assert stats.dissatisfied == 1
        assert stats.total == 4
        assert stats.satisfaction_rate == 75.0

    def test_no_feedback_is_zero(self):
        stats = satisfaction_summary([])
        assert stats.total == 0
        assert stats.satisfaction_rate == 0


class TestDailyTrend:
    def test_has_one_point_per_day_ending_today(self):
        today = date(2024, 6, 15)
        points = daily_trend(today, [], [])

        assert len(points) == 365
        assert points[-1].date == "2024-06-15"
        assert points[0].date == (today - timedelta(days=364)).isoformat()
        assert all(p.count == 0 for p in points)

    def test_buckets_opened_and_closed(self):
        today = date(2024, 6, 15)
        points = daily_trend(
            today,
            opened=[at(today), at(today, 23), at(date(2024, 6, 14))],
            closed=[at(today), None],
            days=3,
        )

        assert [(p.date, p.opened, p.closed) for p in points] == [
            ("2024-06-13", 0, 0),
            ("2024-06-14", 1, 0),
            ("2024-06-15", 2, 1),
        ]
        assert points[-1].count == points[-1].opened


# =============================================================================
# TEST: TICKET STATS
# =============================================================================


class TestTicketStats:
    async def test_unmapped_client_is_denied(self, session, factory, tenants):
        await factory.ticket(1, 7, at(date(2024, 5, 2)))
        service = ReportingService(session, tenants["customer"])

        with pytest.raises(AccessDeniedError):
            await service.ticket_stats(7, date(2024, 5, 1), date(2024, 5, 31))

    async def test_mapped_client_returns_only_its_tickets(self, session, factory, tenants):
        await factory.ticket(1, 5, at(date(2024, 5, 2)), is_closed=True)
        await factory.ticket(2, 5, at(date(2024, 5, 20)))
        await factory.ticket(3, 9, at(date(2024, 5, 3)))
        await factory.ticket(4, 7, at(date(2024, 5, 4)))
        service = ReportingService(session, tenants["customer"])

        stats = await service.ticket_stats(5, date(2024, 5, 1), date(2024, 5, 31))

        assert stats.total_tickets == 2
        assert stats.closed_tickets == 1
        assert stats.open_tickets == 1
        assert [t.id for t in stats.tickets] == [1, 2]

    async def test_end_date_includes_whole_day(self, session, factory, tenants):
        await factory.ticket(1, 5, datetime(2024, 5, 31, 23, 59, tzinfo=timezone.utc))
        await factory.ticket(2, 5, datetime(2024, 6, 1, 0, 0, tzinfo=timezone.utc))
        service = ReportingService(session, tenants["customer"])

        stats = await service.ticket_stats(5, date(2024, 5, 1), date(2024, 5, 31))

        assert [t.id for t in stats.tickets] == [1]

    async def test_super_admin_sees_unmapped_client(self, session, factory, tenants):
        await factory.ticket(1, 7, at(date(2024, 5, 2)))
        service = ReportingService(session, tenants["admin"])

        stats = await service.ticket_stats(7, date(2024, 5, 1), date(2024, 5, 31))

        assert stats.total_tickets == 1


class TestMonthlyStats:
    async def test_windows_keep_input_order(self, session, factory, tenants):
        await factory.ticket(1, 5, at(date(2024, 3, 5)), is_closed=True)
        await factory.ticket(2, 5, at(date(2024, 3, 6)))
        await factory.ticket(3, 5, at(date(2024, 1, 10)))
        service = ReportingService(session, tenants["customer"])

        windows = [
            MonthWindow("March 2024", date(2024, 3, 1), date(2024, 3, 31)),
            MonthWindow("January 2024", date(2024, 1, 1), date(2024, 1, 31)),
            MonthWindow("February 2024", date(2024, 2, 1), date(2024, 2, 29)),
        ]
        stats = await service.monthly_stats(5, windows)

        assert [(s.month, s.total_tickets, s.closed_tickets, s.open_tickets) for s in stats] == [
            ("March 2024", 2, 1, 1),
            ("January 2024", 1, 0, 1),
            ("February 2024", 0, 0, 0),
        ]

    async def test_unmapped_client_is_denied(self, session, tenants):
        service = ReportingService(session, tenants["customer"])

        with pytest.raises(AccessDeniedError):
            await service.monthly_stats(
                7, [MonthWindow("May", date(2024, 5, 1), date(2024, 5, 31))]
            )


# =============================================================================
# TEST: CLIENTS
# =============================================================================


class TestListClients:
    async def test_clients_scoped_and_counted(self, session, factory, tenants, now):
        await factory.ticket(1, 5, now - timedelta(days=10))
        await factory.ticket(2, 5, now - timedelta(days=20))
        await factory.ticket(3, 9, now - timedelta(days=400))
        await factory.ticket(4, 7, now - timedelta(days=5))
        service = ReportingService(session, tenants["customer"])

        clients = await service.list_clients(now=now)

        assert [(c.id, c.ticket_count) for c in clients] == [(5, 2)]

    async def test_empty_mapping_returns_nothing(self, session, factory, now):
        await factory.client(5)
        await factory.ticket(1, 5, now - timedelta(days=1))
        lonely = await factory.company("Lonely Ltd")
        user = await factory.user("nobody@lonely.test", companies=[lonely])
        ctx = await resolve_effective_context(session, user.user_id)

        assert await ReportingService(session, ctx).list_clients(now=now) == []


# =============================================================================
# TEST: DASHBOARD
# =============================================================================


class TestDashboardStats:
    async def test_aggregates_within_scope(self, session, factory, tenants, now):
        await factory.ticket(1, 5, now - timedelta(days=2), is_closed=True)
        await factory.ticket(2, 5, now - timedelta(days=10))
        await factory.ticket(3, 9, now - timedelta(days=40))
        await factory.ticket(4, 7, now - timedelta(days=1))
        for feedback_id, (ticket_id, score) in enumerate(
            [(1, 1), (2, 1), (3, 2), (1, 1), (4, 2)], start=1
        ):
            await factory.feedback(feedback_id, ticket_id, score)
        service = ReportingService(session, tenants["customer"])

        stats = await service.dashboard_stats(now=now)

        assert stats.total_tickets == 3
        assert stats.closed_tickets == 1
        assert stats.open_tickets == 2
        assert (stats.recent_stats.total, stats.recent_stats.open, stats.recent_stats.closed) == (2, 1, 1)
        assert stats.recent_stats.period == "30 days"
        assert stats.week_stats.total == 1
        assert [(c.id, c.total_tickets) for c in stats.top_clients] == [(5, 2), (9, 1)]
        assert len(stats.daily_trend) == 365
        assert sum(p.opened for p in stats.daily_trend) == 3
        # Feedback on ticket 4 (client 7) is out of scope
        assert stats.satisfaction.total == 4
        assert stats.satisfaction.satisfaction_rate == 75.0

    async def test_feedback_failure_zeroes_satisfaction(self, session, factory, tenants, now):
        await factory.ticket(1, 5, now - timedelta(days=2), is_closed=True)
        await factory.ticket(2, 9, now - timedelta(days=3))
        await factory.feedback(1, 1, 1)
        await session.execute(text("DROP TABLE feedback"))
        await session.commit()
        service = ReportingService(session, tenants["customer"])

        stats = await service.dashboard_stats(now=now)

        assert (stats.total_tickets, stats.open_tickets, stats.closed_tickets) == (2, 1, 1)
        assert stats.recent_stats.total == 2
        assert stats.satisfaction == SatisfactionStats()

    async def test_top_clients_capped_at_ten(self, session, factory, now):
        for client_id in range(1, 13):
            await factory.client(client_id)
            for n in range(client_id):
                await factory.ticket(client_id * 100 + n, client_id, now - timedelta(days=1))
        admin = await factory.user("root@msp.test", role=UserRole.SUPER_ADMIN)
        ctx = await resolve_effective_context(session, admin.user_id)

        stats = await ReportingService(session, ctx).dashboard_stats(now=now)

        assert len(stats.top_clients) == 10
        assert stats.top_clients[0].id == 12
        assert stats.top_clients[0].total_tickets == 12

    async def test_empty_scope_is_zeroed(self, session, factory, now):
        await factory.client(5)
        await factory.ticket(1, 5, now - timedelta(days=1))
        lonely = await factory.company("Lonely Ltd")
        user = await factory.user("nobody@lonely.test", companies=[lonely])
        ctx = await resolve_effective_context(session, user.user_id)

        stats = await ReportingService(session, ctx).dashboard_stats(now=now)

        assert stats.total_tickets == 0
        assert stats.top_clients == []
        assert len(stats.daily_trend) == 365
        assert all(p.count == 0 for p in stats.daily_trend)
        assert stats.satisfaction.total == 0
