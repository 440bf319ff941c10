"""
Sync Engine: pulls HaloPSA data into the local store.

Three steps run in dependency order: clients, then tickets (which reference
clients), then feedback (which references tickets). Each step upserts by the
provider's id and appends a SyncMetadata row whether it succeeds or fails.
Upstream deletions are never reconciled; the store only grows or updates.
"""

import logging
from calendar import monthrange
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.halopsa import DEFAULT_CLOSED_STATUS_ID, HaloPSAClient, is_ticket_closed
from ..models import Client, Feedback, SyncMetadata, SyncStatus, SyncType, Ticket

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================


def months_ago(now: datetime, months: int) -> datetime:
    """Same day-of-month ``months`` earlier, clamped to the month's last day."""
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(now.day, monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class FullSyncResult:
    """Per-step outcome of a full sync."""

    clients: int = 0
    tickets: int = 0
    feedback: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# SYNC ENGINE
# =============================================================================


class SyncEngine:
    """
    Synchronizes clients, tickets and feedback from HaloPSA.

    Guarantees:
    1. Upserts are keyed by provider id (re-running is a no-op on content)
    2. Rows referencing unknown parents are dropped, never inserted
    3. Every step leaves exactly one SyncMetadata row
    4. No transaction spans more than one step
    """

    def __init__(
        self,
        session: AsyncSession,
        psa_client: HaloPSAClient,
        batch_size: int = 1000,
        closed_status_id: int = DEFAULT_CLOSED_STATUS_ID,
        task_id: UUID | None = None,
    ):
        self._session = session
        self._psa = psa_client
        self._batch_size = batch_size
        self._closed_status_id = closed_status_id
        self._task_id = task_id

    # =========================================================================
    # STEPS
    # =========================================================================

    async def sync_clients(self) -> int:
        async def step() -> int:
            records = await self._psa.fetch_clients()
            rows = [
                {
                    "id": r.id,
                    "name": r.name,
                    "toplevel_id": r.toplevel_id,
                    "toplevel_name": r.toplevel_name,
                    "inactive": r.inactive,
                    "colour": r.colour,
                }
                for r in records
            ]
            await self._upsert(Client, rows)
            await self._session.commit()
            logger.info(f"Synced {len(rows)} clients")
            return len(rows)

        return await self._run_step(SyncType.CLIENTS, step)

    async def sync_tickets(self, months_back: int = 12) -> int:
        async def step() -> int:
            now = datetime.now(timezone.utc)
            start = months_ago(now, months_back)
            logger.info(f"Fetching tickets from {start.date()} to {now.date()}")
            records = await self._psa.fetch_tickets(start.date(), now.date())

            known_clients = set(
                (await self._session.execute(select(Client.id))).scalars().all()
            )
            rows = []
            dropped = 0
            for r in records:
                if r.client_id not in known_clients:
                    dropped += 1
                    continue
                rows.append(
                    {
                        "id": r.id,
                        "client_id": r.client_id,
                        "client_name": r.client_name,
                        "site_id": r.site_id,
                        "site_name": r.site_name,
                        "user_name": r.user_name,
                        "summary": r.summary,
                        "details": r.details,
                        "status_id": r.status_id,
                        "status_name": r.status_name,
                        "priority_id": r.priority_id,
                        "ticket_type_id": r.ticket_type_id,
                        "team": r.team,
                        "agent_id": r.agent_id,
                        "date_occurred": r.date_occurred,
                        "date_closed": r.date_closed,
                        "response_date": r.response_date,
                        "last_action_date": r.last_action_date,
                        "is_closed": is_ticket_closed(
                            r.status_id, r.status_name, self._closed_status_id
                        ),
                    }
                )
            if dropped:
                logger.warning(f"Dropped {dropped} tickets for clients not stored locally")

            total_batches = (len(rows) + self._batch_size - 1) // self._batch_size
            for batch_no, offset in enumerate(range(0, len(rows), self._batch_size), 1):
                logger.info(f"Upserting ticket batch {batch_no}/{total_batches}")
                await self._upsert(Ticket, rows[offset:offset + self._batch_size])
            await self._session.commit()

            await self._refresh_last_ticket_dates()
            logger.info(f"Synced {len(rows)} tickets")
            return len(rows)

        return await self._run_step(SyncType.TICKETS, step)

    async def sync_feedback(self) -> int:
        async def step() -> int:
            records = await self._psa.fetch_feedback()
            known_tickets = set(
                (await self._session.execute(select(Ticket.id))).scalars().all()
            )
            rows = [
                {
                    "id": r.id,
                    "ticket_id": r.ticket_id,
                    "score": r.score,
                    "score_band": r.score_band,
                    "date": r.date,
                    "comment": r.comment,
                }
                for r in records
                if r.ticket_id is not None and r.ticket_id in known_tickets
            ]
            logger.info(
                f"Filtered to {len(rows)} of {len(records)} feedback entries "
                f"with matching tickets"
            )
            await self._upsert(Feedback, rows)
            await self._session.commit()
            return len(rows)

        return await self._run_step(SyncType.FEEDBACK, step)

    async def perform_full_sync(self, months_back: int = 12) -> FullSyncResult:
        """Run all steps; a failing step does not stop the ones after it."""
        result = FullSyncResult()
        logger.info(f"Starting full sync (last {months_back} months)")

        try:
            result.clients = await self.sync_clients()
        except Exception as e:
            result.errors[SyncType.CLIENTS.value] = str(e)

        try:
            result.tickets = await self.sync_tickets(months_back)
        except Exception as e:
            result.errors[SyncType.TICKETS.value] = str(e)

        try:
            result.feedback = await self.sync_feedback()
        except Exception as e:
            result.errors[SyncType.FEEDBACK.value] = str(e)

        logger.info(
            f"Full sync finished: clients={result.clients} tickets={result.tickets} "
            f"feedback={result.feedback} errors={list(result.errors)}"
        )
        return result

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _run_step(self, sync_type: SyncType, step) -> int:
        try:
            count = await step()
        except Exception as e:
            await self._session.rollback()
            logger.error(f"Sync step {sync_type.value} failed: {e}")
            await self._record(sync_type, 0, SyncStatus.FAILED, str(e))
            raise
        await self._record(sync_type, count, SyncStatus.SUCCESS)
        return count

    async def _record(
        self,
        sync_type: SyncType,
        records_synced: int,
        status: SyncStatus,
        error_message: str | None = None,
    ) -> None:
        self._session.add(
            SyncMetadata(
                sync_type=sync_type.value,
                last_sync=datetime.now(timezone.utc),
                records_synced=records_synced,
                status=status.value,
                error_message=error_message,
                task_id=self._task_id,
            )
        )
        await self._session.commit()

    async def _upsert(self, model, rows: Sequence[dict[str, Any]]) -> None:
        """INSERT .. ON CONFLICT (id) DO UPDATE for the session's dialect."""
        if not rows:
            return
        dialect = self._session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(model)
        set_ = {key: stmt.excluded[key] for key in rows[0] if key != "id"}
        set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=set_)
        await self._session.execute(stmt, list(rows))

    async def _refresh_last_ticket_dates(self) -> None:
        """Recompute each client's latest ticket date. Failure is logged only."""
        latest = (
            select(func.max(Ticket.date_occurred))
            .where(Ticket.client_id == Client.id)
            .scalar_subquery()
        )
        try:
            await self._session.execute(
                update(Client)
                .values(last_ticket_date=latest)
                .execution_options(synchronize_session=False)
            )
            await self._session.commit()
        except Exception as e:
            await self._session.rollback()
            logger.warning(f"Could not refresh client last_ticket_date: {e}")
