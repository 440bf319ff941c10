"""
Reporting Service: ticket statistics over the synced HaloPSA data.

All reads go through the caller's client scope. A restricted caller with no
mapped clients gets zeroed results without touching the ticket tables.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Client, Feedback, Ticket, as_utc
from .sync_engine import months_ago
from .tenant_context import AccessDeniedError, AccessScope, EffectiveContext, client_scope

logger = logging.getLogger(__name__)

SCORE_SATISFIED = 1
SCORE_DISSATISFIED = 2
TOP_CLIENTS_LIMIT = 10
TREND_DAYS = 365


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ClientSummary:
    id: int
    name: str | None
    toplevel_id: int | None
    toplevel_name: str | None
    inactive: bool
    colour: str | None
    last_ticket_date: datetime | None
    ticket_count: int


@dataclass
class TicketSummary:
    id: int
    summary: str | None
    status: str | None
    date_occurred: datetime | None
    date_closed: datetime | None


@dataclass
class TicketStats:
    total_tickets: int = 0
    closed_tickets: int = 0
    open_tickets: int = 0
    tickets: list[TicketSummary] = field(default_factory=list)


@dataclass
class MonthWindow:
    label: str
    start_date: date
    end_date: date


@dataclass
class MonthlyStat:
    month: str
    start_date: date
    end_date: date
    total_tickets: int
    closed_tickets: int
    open_tickets: int


@dataclass
class PeriodStats:
    total: int = 0
    open: int = 0
    closed: int = 0
    period: str = "30 days"


@dataclass
class WeekStats:
    total: int = 0
    period: str = "7 days"


@dataclass
class TopClient:
    id: int
    name: str
    total_tickets: int
    open_tickets: int
    closed_tickets: int


@dataclass
class DailyTrendPoint:
    date: str
    count: int
    opened: int
    closed: int


@dataclass
class SatisfactionStats:
    satisfied: int = 0
    dissatisfied: int = 0
    total: int = 0
    satisfaction_rate: float = 0


@dataclass
class DashboardStats:
    total_tickets: int
    open_tickets: int
    closed_tickets: int
    recent_stats: PeriodStats
    week_stats: WeekStats
    top_clients: list[TopClient]
    daily_trend: list[DailyTrendPoint]
    satisfaction: SatisfactionStats


# =============================================================================
# PURE AGGREGATION
# =============================================================================


def satisfaction_summary(scores: Iterable[int | None]) -> SatisfactionStats:
    """Score 1 is satisfied, 2 dissatisfied; total counts every non-null score."""
    scored = [s for s in scores if s is not None]
    satisfied = sum(1 for s in scored if s == SCORE_SATISFIED)
    dissatisfied = sum(1 for s in scored if s == SCORE_DISSATISFIED)
    total = len(scored)
    rate = round(satisfied / total * 100, 1) if total else 0
    return SatisfactionStats(
        satisfied=satisfied,
        dissatisfied=dissatisfied,
        total=total,
        satisfaction_rate=rate,
    )


def daily_trend(
    today: date,
    opened: Iterable[datetime | None],
    closed: Iterable[datetime | None],
    days: int = TREND_DAYS,
) -> list[DailyTrendPoint]:
    """One point per calendar day, oldest first, ending on ``today``."""
    opened_by_day = Counter(as_utc(d).date().isoformat() for d in opened if d)
    closed_by_day = Counter(as_utc(d).date().isoformat() for d in closed if d)
    points = []
    for offset in range(days - 1, -1, -1):
        day = (today - timedelta(days=offset)).isoformat()
        points.append(
            DailyTrendPoint(
                date=day,
                count=opened_by_day[day],
                opened=opened_by_day[day],
                closed=closed_by_day[day],
            )
        )
    return points


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _day_end_exclusive(value: date) -> datetime:
    return _day_start(value + timedelta(days=1))


# =============================================================================
# SERVICE
# =============================================================================


class ReportingService:
    """Scoped ticket and satisfaction statistics."""

    def __init__(self, session: AsyncSession, ctx: EffectiveContext):
        self._session = session
        self._ctx = ctx

    async def _scope(self) -> AccessScope:
        return await client_scope(self._session, self._ctx)

    def _restrict(self, stmt, scope: AccessScope):
        if scope.allowed is None:
            return stmt
        return stmt.where(Ticket.client_id.in_(sorted(scope.allowed)))

    async def _require_client(self, client_id: int) -> None:
        scope = await self._scope()
        if not scope.permits(client_id):
            logger.warning(
                f"User {self._ctx.effective_user_id} denied access to client {client_id}"
            )
            raise AccessDeniedError("Access denied to this client")

    # =========================================================================
    # CLIENTS
    # =========================================================================

    async def list_clients(self, now: datetime | None = None) -> list[ClientSummary]:
        """Clients with at least one ticket in the last 12 months."""
        scope = await self._scope()
        if scope.is_empty:
            return []

        since = months_ago(now or datetime.now(timezone.utc), 12)
        ticket_count = func.count(Ticket.id).label("ticket_count")
        stmt = (
            select(Client, ticket_count)
            .join(Ticket, Ticket.client_id == Client.id)
            .where(Ticket.date_occurred >= since)
            .group_by(Client.id)
            .order_by(Client.name)
        )
        stmt = self._restrict(stmt, scope)

        result = await self._session.execute(stmt)
        return [
            ClientSummary(
                id=client.id,
                name=client.name,
                toplevel_id=client.toplevel_id,
                toplevel_name=client.toplevel_name,
                inactive=client.inactive,
                colour=client.colour,
                last_ticket_date=as_utc(client.last_ticket_date),
                ticket_count=count,
            )
            for client, count in result.all()
        ]

    # =========================================================================
    # TICKET STATS
    # =========================================================================

    async def _client_tickets(
        self, client_id: int, start_date: date, end_date: date
    ) -> Sequence[Ticket]:
        result = await self._session.execute(
            select(Ticket)
            .where(
                Ticket.client_id == client_id,
                Ticket.date_occurred >= _day_start(start_date),
                Ticket.date_occurred < _day_end_exclusive(end_date),
            )
            .order_by(Ticket.date_occurred)
        )
        return result.scalars().all()

    async def ticket_stats(
        self, client_id: int, start_date: date, end_date: date
    ) -> TicketStats:
        await self._require_client(client_id)
        tickets = await self._client_tickets(client_id, start_date, end_date)
        closed = sum(1 for t in tickets if t.is_closed)
        return TicketStats(
            total_tickets=len(tickets),
            closed_tickets=closed,
            open_tickets=len(tickets) - closed,
            tickets=[
                TicketSummary(
                    id=t.id,
                    summary=t.summary,
                    status=t.status_name,
                    date_occurred=as_utc(t.date_occurred),
                    date_closed=as_utc(t.date_closed),
                )
                for t in tickets
            ],
        )

    async def monthly_stats(
        self, client_id: int, months: Sequence[MonthWindow]
    ) -> list[MonthlyStat]:
        """One result per window, in the order given."""
        await self._require_client(client_id)
        results = []
        for window in months:
            tickets = await self._client_tickets(
                client_id, window.start_date, window.end_date
            )
            closed = sum(1 for t in tickets if t.is_closed)
            results.append(
                MonthlyStat(
                    month=window.label,
                    start_date=window.start_date,
                    end_date=window.end_date,
                    total_tickets=len(tickets),
                    closed_tickets=closed,
                    open_tickets=len(tickets) - closed,
                )
            )
        return results

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    async def dashboard_stats(self, now: datetime | None = None) -> DashboardStats:
        now = now or datetime.now(timezone.utc)
        today = now.date()
        scope = await self._scope()

        if scope.is_empty:
            return DashboardStats(
                total_tickets=0,
                open_tickets=0,
                closed_tickets=0,
                recent_stats=PeriodStats(),
                week_stats=WeekStats(),
                top_clients=[],
                daily_trend=daily_trend(today, [], []),
                satisfaction=SatisfactionStats(),
            )

        stmt = select(
            Ticket.client_id,
            Ticket.is_closed,
            Ticket.date_occurred,
            Ticket.date_closed,
        )
        rows = (await self._session.execute(self._restrict(stmt, scope))).all()

        thirty_days_ago = now - timedelta(days=30)
        seven_days_ago = now - timedelta(days=7)
        trend_start = _day_start(today - timedelta(days=TREND_DAYS - 1))

        closed_total = sum(1 for r in rows if r.is_closed)
        recent = [r for r in rows if as_utc(r.date_occurred) >= thirty_days_ago]
        recent_closed = sum(1 for r in recent if r.is_closed)
        week_total = sum(1 for r in rows if as_utc(r.date_occurred) >= seven_days_ago)
        trend_rows = [r for r in rows if as_utc(r.date_occurred) >= trend_start]

        return DashboardStats(
            total_tickets=len(rows),
            open_tickets=len(rows) - closed_total,
            closed_tickets=closed_total,
            recent_stats=PeriodStats(
                total=len(recent),
                open=len(recent) - recent_closed,
                closed=recent_closed,
            ),
            week_stats=WeekStats(total=week_total),
            top_clients=await self._top_clients(rows),
            daily_trend=daily_trend(
                today,
                [r.date_occurred for r in trend_rows],
                [r.date_closed for r in trend_rows],
            ),
            satisfaction=await self._satisfaction(scope),
        )

    async def _top_clients(self, rows) -> list[TopClient]:
        totals: Counter = Counter()
        closed: Counter = Counter()
        for r in rows:
            totals[r.client_id] += 1
            if r.is_closed:
                closed[r.client_id] += 1

        top_ids = [client_id for client_id, _ in totals.most_common(TOP_CLIENTS_LIMIT)]
        if not top_ids:
            return []
        result = await self._session.execute(
            select(Client.id, Client.name).where(Client.id.in_(top_ids))
        )
        names = {client_id: name for client_id, name in result.all()}

        return [
            TopClient(
                id=client_id,
                name=names.get(client_id) or f"Client {client_id}",
                total_tickets=totals[client_id],
                open_tickets=totals[client_id] - closed[client_id],
                closed_tickets=closed[client_id],
            )
            for client_id in top_ids
        ]

    async def _satisfaction(self, scope: AccessScope) -> SatisfactionStats:
        """Feedback is scoped through its ticket's client. Not critical."""
        stmt = select(Feedback.score).join(Ticket, Ticket.id == Feedback.ticket_id)
        try:
            result = await self._session.execute(self._restrict(stmt, scope))
        except SQLAlchemyError as e:
            logger.warning(f"Could not load feedback for satisfaction stats: {e}")
            return SatisfactionStats()
        return satisfaction_summary(result.scalars().all())
