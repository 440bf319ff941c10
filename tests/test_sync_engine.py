"""
Tests for the Sync Engine - Verifying Upsert and Bookkeeping Guarantees.

These tests verify:
1. IDEMPOTENCE: re-running a sync leaves the same rows
2. REFERENTIAL FILTERING: orphan tickets and feedback are dropped
3. BOOKKEEPING: every step appends one SyncMetadata row, even on failure
4. ISOLATION: a failing step does not stop the steps after it
5. BACKGROUND TASKS: a task whose bookkeeping write fails still ends up failed
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from msp_reporting.integrations import UpstreamError
from msp_reporting.integrations.halopsa import (
    HaloClientRecord,
    HaloFeedbackRecord,
    HaloTicketRecord,
)
from msp_reporting.jobs import SyncTaskQueue
from msp_reporting.models import (
    Client,
    Feedback,
    SyncMetadata,
    SyncStatus,
    SyncTaskStatus,
    Ticket,
    as_utc,
)
from msp_reporting.services.sync_engine import SyncEngine, months_ago


# =============================================================================
# FIXTURES
# =============================================================================


def client_record(client_id: int, name: str | None = None) -> HaloClientRecord:
    return HaloClientRecord(
        id=client_id,
        name=name or f"Client {client_id}",
        toplevel_id=None,
        toplevel_name=None,
        inactive=False,
        colour=None,
    )


def ticket_record(
    ticket_id: int,
    client_id: int,
    occurred: datetime,
    status_id: int = 1,
    status_name: str = "New",
) -> HaloTicketRecord:
    return HaloTicketRecord(
        id=ticket_id,
        client_id=client_id,
        client_name=None,
        site_id=None,
        site_name=None,
        user_name=None,
        summary=f"Ticket {ticket_id}",
        details=None,
        status_id=status_id,
        status_name=status_name,
        priority_id=None,
        ticket_type_id=None,
        team=None,
        agent_id=None,
        date_occurred=occurred,
        date_closed=None,
        response_date=None,
        last_action_date=None,
    )


def feedback_record(feedback_id: int, ticket_id: int | None, score: int = 1) -> HaloFeedbackRecord:
    return HaloFeedbackRecord(
        id=feedback_id,
        ticket_id=ticket_id,
        score=score,
        score_band=None,
        date=None,
        comment=None,
    )


class FakeHalo:
    """Stands in for HaloPSAClient; any attribute set to an exception is raised."""

    def __init__(self, clients=(), tickets=(), feedback=()):
        self.clients = clients if isinstance(clients, Exception) else list(clients)
        self.tickets = tickets if isinstance(tickets, Exception) else list(tickets)
        self.feedback = feedback if isinstance(feedback, Exception) else list(feedback)
        self.ticket_ranges = []

    async def fetch_clients(self):
        if isinstance(self.clients, Exception):
            raise self.clients
        return self.clients

    async def fetch_tickets(self, start_date, end_date, client_id=None):
        self.ticket_ranges.append((start_date, end_date))
        if isinstance(self.tickets, Exception):
            raise self.tickets
        return self.tickets

    async def fetch_feedback(self):
        if isinstance(self.feedback, Exception):
            raise self.feedback
        return self.feedback


@pytest.fixture
def recent() -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=3)


async def count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def snapshot(session, model) -> list[tuple]:
    """Every row of ``model`` minus the bookkeeping timestamps, ordered by id."""
    columns = [
        c for c in model.__table__.columns if c.name not in ("created_at", "updated_at")
    ]
    rows = (await session.execute(select(*columns).order_by(model.id))).all()
    return [tuple(row) for row in rows]


# =============================================================================
# TEST: HELPERS
# =============================================================================


class TestMonthsAgo:
    def test_clamps_to_end_of_shorter_month(self):
        assert months_ago(datetime(2024, 3, 31), 1) == datetime(2024, 2, 29)

    def test_crosses_year_boundary(self):
        assert months_ago(datetime(2024, 1, 15), 12) == datetime(2023, 1, 15)
        assert months_ago(datetime(2024, 2, 10), 3) == datetime(2023, 11, 10)


# =============================================================================
# TEST: CLIENTS
# =============================================================================


class TestSyncClients:
    async def test_sync_is_idempotent(self, session):
        halo = FakeHalo(clients=[client_record(1), client_record(2)])
        engine = SyncEngine(session, halo)

        assert await engine.sync_clients() == 2
        assert await engine.sync_clients() == 2

        assert await count(session, Client) == 2

    async def test_changed_fields_overwrite(self, session):
        engine = SyncEngine(session, FakeHalo(clients=[client_record(1, "Old Name")]))
        await engine.sync_clients()

        engine = SyncEngine(session, FakeHalo(clients=[client_record(1, "New Name")]))
        await engine.sync_clients()

        result = await session.execute(
            select(Client.name).where(Client.id == 1)
        )
        assert result.scalar_one() == "New Name"

    async def test_records_success_metadata(self, session):
        engine = SyncEngine(session, FakeHalo(clients=[client_record(1)]))
        await engine.sync_clients()

        rows = (await session.execute(select(SyncMetadata))).scalars().all()
        assert len(rows) == 1
        assert rows[0].sync_type == "clients"
        assert rows[0].status == SyncStatus.SUCCESS.value
        assert rows[0].records_synced == 1


# =============================================================================
# TEST: TICKETS
# =============================================================================


class TestSyncTickets:
    async def test_tickets_for_unknown_clients_are_dropped(self, session, recent):
        halo = FakeHalo(
            clients=[client_record(5)],
            tickets=[ticket_record(1, 5, recent), ticket_record(2, 99, recent)],
        )
        engine = SyncEngine(session, halo)
        await engine.sync_clients()

        assert await engine.sync_tickets() == 1

        ids = (await session.execute(select(Ticket.id))).scalars().all()
        assert ids == [1]

    async def test_closed_flag_derived_from_status(self, session, recent):
        halo = FakeHalo(
            clients=[client_record(5)],
            tickets=[
                ticket_record(1, 5, recent, status_id=9, status_name="Resolved"),
                ticket_record(2, 5, recent, status_id=4, status_name="Closed - No Response"),
                ticket_record(3, 5, recent, status_id=2, status_name="In Progress"),
            ],
        )
        engine = SyncEngine(session, halo)
        await engine.sync_clients()
        await engine.sync_tickets()

        rows = (await session.execute(select(Ticket.id, Ticket.is_closed).order_by(Ticket.id))).all()
        assert [tuple(r) for r in rows] == [(1, True), (2, True), (3, False)]

    async def test_batches_cover_every_ticket(self, session, recent):
        halo = FakeHalo(
            clients=[client_record(5)],
            tickets=[ticket_record(i, 5, recent) for i in range(1, 8)],
        )
        engine = SyncEngine(session, halo, batch_size=3)
        await engine.sync_clients()

        assert await engine.sync_tickets() == 7
        assert await count(session, Ticket) == 7

    async def test_window_starts_months_back(self, session):
        halo = FakeHalo(clients=[client_record(5)])
        engine = SyncEngine(session, halo)

        await engine.sync_tickets(months_back=6)

        start, end = halo.ticket_ranges[0]
        assert months_ago(datetime.now(timezone.utc), 6).date() == start
        assert end == datetime.now(timezone.utc).date()

    async def test_last_ticket_date_refreshed(self, session, recent):
        halo = FakeHalo(
            clients=[client_record(5)],
            tickets=[
                ticket_record(1, 5, recent - timedelta(days=10)),
                ticket_record(2, 5, recent),
            ],
        )
        engine = SyncEngine(session, halo)
        await engine.sync_clients()
        await engine.sync_tickets()

        result = await session.execute(select(Client.last_ticket_date).where(Client.id == 5))
        assert as_utc(result.scalar_one()) == recent


# =============================================================================
# TEST: FEEDBACK
# =============================================================================


class TestSyncFeedback:
    async def test_only_feedback_for_known_tickets_is_stored(self, session, recent):
        """10 feedback rows, 3 of them pointing at tickets we never stored."""
        tickets = [ticket_record(i, 5, recent) for i in range(1, 8)]
        feedback = [feedback_record(100 + i, i) for i in range(1, 8)]
        feedback += [feedback_record(200, 999), feedback_record(201, 1000), feedback_record(202, None)]
        halo = FakeHalo(clients=[client_record(5)], tickets=tickets, feedback=feedback)
        engine = SyncEngine(session, halo)
        await engine.sync_clients()
        await engine.sync_tickets()

        assert await engine.sync_feedback() == 7
        assert await count(session, Feedback) == 7

        rows = (
            await session.execute(
                select(SyncMetadata).where(SyncMetadata.sync_type == "feedback")
            )
        ).scalars().all()
        assert rows[0].records_synced == 7


# =============================================================================
# TEST: FAILURES
# =============================================================================


class TestSyncFailures:
    async def test_failed_step_records_metadata_and_raises(self, session):
        halo = FakeHalo(clients=UpstreamError("halopsa", "Request to /Client returned 500"))
        engine = SyncEngine(session, halo)

        with pytest.raises(UpstreamError):
            await engine.sync_clients()

        rows = (await session.execute(select(SyncMetadata))).scalars().all()
        assert len(rows) == 1
        assert rows[0].status == SyncStatus.FAILED.value
        assert rows[0].records_synced == 0
        assert "500" in rows[0].error_message

    async def test_full_sync_continues_after_failure(self, session, recent):
        halo = FakeHalo(
            clients=[client_record(5)],
            tickets=UpstreamError("halopsa", "Request to /Tickets failed"),
            feedback=[],
        )
        engine = SyncEngine(session, halo)

        result = await engine.perform_full_sync(months_back=12)

        assert result.clients == 1
        assert result.tickets == 0
        assert result.feedback == 0
        assert set(result.errors) == {"tickets"}
        assert result.succeeded is False

        statuses = (
            await session.execute(
                select(SyncMetadata.sync_type, SyncMetadata.status).order_by(SyncMetadata.id)
            )
        ).all()
        assert [tuple(s) for s in statuses] == [
            ("clients", "success"),
            ("tickets", "failed"),
            ("feedback", "success"),
        ]

    async def test_full_sync_result_serializes(self, session):
        engine = SyncEngine(session, FakeHalo())
        result = await engine.perform_full_sync()
        assert result.to_dict() == {"clients": 0, "tickets": 0, "feedback": 0, "errors": {}}
        assert result.succeeded is True


# =============================================================================
# TEST: FULL SYNC
# =============================================================================


class TestFullSync:
    async def test_full_sync_twice_leaves_identical_tables(self, session, recent):
        tickets = [
            ticket_record(1, 5, recent - timedelta(days=2)),
            ticket_record(2, 5, recent, status_id=9, status_name="Resolved"),
            ticket_record(3, 6, recent),
            ticket_record(4, 99, recent),
        ]
        feedback = [feedback_record(10, 1, score=1), feedback_record(11, 3, score=4)]
        feedback.append(feedback_record(12, 4))
        halo = FakeHalo(
            clients=[client_record(5), client_record(6, "Globex")],
            tickets=tickets,
            feedback=feedback,
        )
        engine = SyncEngine(session, halo)

        first = await engine.perform_full_sync(months_back=12)
        before = {model: await snapshot(session, model) for model in (Client, Ticket, Feedback)}
        second = await engine.perform_full_sync(months_back=12)
        after = {model: await snapshot(session, model) for model in (Client, Ticket, Feedback)}

        assert first.to_dict() == second.to_dict()
        assert first.to_dict() == {"clients": 2, "tickets": 3, "feedback": 2, "errors": {}}
        assert before == after
        assert [len(before[m]) for m in (Client, Ticket, Feedback)] == [2, 3, 2]


# =============================================================================
# TEST: BACKGROUND TASKS
# =============================================================================


class FlakyQueue(SyncTaskQueue):
    """Fails the first ``failures`` state writes that carry ``fail_on``."""

    def __init__(self, *args, fail_on: SyncTaskStatus, failures: int = 1, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on = fail_on
        self.failures = failures

    async def _set_state(self, task_id, **values):
        if values.get("status") == self.fail_on and self.failures:
            self.failures -= 1
            raise RuntimeError("database is locked")
        await super()._set_state(task_id, **values)


class TestSyncTaskQueue:
    async def test_successful_task_stores_result(self, session_factory):
        queue = SyncTaskQueue(session_factory, FakeHalo(clients=[client_record(5)]))

        task_id = await queue.submit(months_back=3)
        await queue.join()

        task = await queue.get(task_id)
        assert task.status == SyncTaskStatus.SUCCEEDED
        assert task.result == {"clients": 1, "tickets": 0, "feedback": 0, "errors": {}}
        assert task.started_at is not None
        assert task.finished_at is not None

    async def test_failed_running_write_marks_task_failed(self, session_factory):
        queue = FlakyQueue(
            session_factory, FakeHalo(), fail_on=SyncTaskStatus.RUNNING
        )

        task_id = await queue.submit(months_back=3)
        await queue.join()

        task = await queue.get(task_id)
        assert task.status == SyncTaskStatus.FAILED
        assert task.error_message == "database is locked"
        assert task.finished_at is not None

    async def test_failed_result_write_marks_task_failed(self, session_factory):
        queue = FlakyQueue(
            session_factory, FakeHalo(), fail_on=SyncTaskStatus.SUCCEEDED
        )

        task_id = await queue.submit(months_back=3)
        await queue.join()

        task = await queue.get(task_id)
        assert task.status == SyncTaskStatus.FAILED
        assert task.error_message == "database is locked"

    async def test_unrecordable_failure_is_logged(self, session_factory, caplog):
        class StuckQueue(SyncTaskQueue):
            async def _set_state(self, task_id, **values):
                raise RuntimeError("database is locked")

        queue = StuckQueue(session_factory, FakeHalo())

        task_id = await queue.submit(months_back=3)
        await queue.join()

        task = await queue.get(task_id)
        assert task.status == SyncTaskStatus.QUEUED
        assert f"Could not record failure of sync task {task_id}" in caplog.text
