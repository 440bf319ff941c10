"""Pydantic schemas for ticket reporting and sync endpoints."""

from datetime import date, datetime
from uuid import UUID

from pydantic import Field, model_validator

from ..models import SyncStatus, SyncTaskStatus, SyncType
from .base import ReportingBaseModel


# =============================================================================
# CLIENTS & TICKETS
# =============================================================================


class ClientResponse(ReportingBaseModel):
    id: int
    name: str | None = None
    toplevel_id: int | None = None
    toplevel_name: str | None = None
    inactive: bool = False
    colour: str | None = None
    last_ticket_date: datetime | None = None
    ticket_count: int


class TicketSummaryResponse(ReportingBaseModel):
    id: int
    summary: str | None = None
    status: str | None = None
    date_occurred: datetime | None = None
    date_closed: datetime | None = None


class TicketStatsResponse(ReportingBaseModel):
    total_tickets: int
    closed_tickets: int
    open_tickets: int
    tickets: list[TicketSummaryResponse]


class MonthWindowRequest(ReportingBaseModel):
    """One reporting window; ``label`` is echoed back as ``month``."""

    label: str = Field(..., min_length=1, validation_alias="month")
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class MonthlyStatsRequest(ReportingBaseModel):
    client_id: int
    months: list[MonthWindowRequest] = Field(..., min_length=1)


class MonthlyStatResponse(ReportingBaseModel):
    month: str
    start_date: date
    end_date: date
    total_tickets: int
    closed_tickets: int
    open_tickets: int


# =============================================================================
# DASHBOARD
# =============================================================================


class PeriodStatsResponse(ReportingBaseModel):
    total: int
    open: int
    closed: int
    period: str


class WeekStatsResponse(ReportingBaseModel):
    total: int
    period: str


class TopClientResponse(ReportingBaseModel):
    id: int
    name: str
    total_tickets: int
    open_tickets: int
    closed_tickets: int


class DailyTrendResponse(ReportingBaseModel):
    date: str
    count: int
    opened: int
    closed: int


class SatisfactionResponse(ReportingBaseModel):
    satisfied: int
    dissatisfied: int
    total: int
    satisfaction_rate: float


class DashboardStatsResponse(ReportingBaseModel):
    total_tickets: int
    open_tickets: int
    closed_tickets: int
    recent_stats: PeriodStatsResponse
    week_stats: WeekStatsResponse
    top_clients: list[TopClientResponse]
    daily_trend: list[DailyTrendResponse]
    satisfaction: SatisfactionResponse


# =============================================================================
# SYNC
# =============================================================================


class SyncRequest(ReportingBaseModel):
    months_back: int = Field(default=12, ge=1, le=120)


class SyncAcceptedResponse(ReportingBaseModel):
    message: str = "Sync started in background"
    months_back: int
    task_id: UUID


class SyncMetadataResponse(ReportingBaseModel):
    id: int
    sync_type: SyncType
    last_sync: datetime
    records_synced: int
    status: SyncStatus
    error_message: str | None = None
    task_id: UUID | None = None


class SyncTaskResponse(ReportingBaseModel):
    id: UUID
    status: SyncTaskStatus
    months_back: int
    requested_by: UUID | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: dict | None = None
    error_message: str | None = None
    created_at: datetime | None = None
