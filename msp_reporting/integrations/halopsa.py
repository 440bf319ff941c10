"""HaloPSA API client.

Fetches clients, tickets and feedback for the sync engine. Clients and
tickets use Halo's paginated list envelope (``record_count`` plus a list
under the lower-cased resource name); feedback comes back as a bare array.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import httpx

from .base import (
    NormalizationError,
    UpstreamClient,
    optional_int,
    optional_str,
    require_field,
)
from .cache import TokenStore

logger = logging.getLogger(__name__)

PROVIDER = "halopsa"
DEFAULT_CLOSED_STATUS_ID = 9


# =============================================================================
# RECORDS
# =============================================================================


@dataclass
class HaloPage:
    records: list[dict[str, Any]]
    record_count: int | None


@dataclass
class HaloClientRecord:
    id: int
    name: str | None
    toplevel_id: int | None
    toplevel_name: str | None
    inactive: bool
    colour: str | None


@dataclass
class HaloTicketRecord:
    id: int
    client_id: int
    client_name: str | None
    site_id: int | None
    site_name: str | None
    user_name: str | None
    summary: str | None
    details: str | None
    status_id: int | None
    status_name: str | None
    priority_id: int | None
    ticket_type_id: int | None
    team: str | None
    agent_id: int | None
    date_occurred: datetime
    date_closed: datetime | None
    response_date: datetime | None
    last_action_date: datetime | None


@dataclass
class HaloFeedbackRecord:
    id: int
    ticket_id: int | None
    score: int | None
    score_band: str | None
    date: datetime | None
    comment: str | None


# =============================================================================
# NORMALIZATION
# =============================================================================


def parse_halo_datetime(value: Any) -> datetime | None:
    """Parse a Halo timestamp to an aware UTC datetime.

    Halo reports unset dates as ``1900-01-01``; those become None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.year <= 1900:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_ticket_closed(
    status_id: int | None,
    status_name: str | None,
    closed_status_id: int = DEFAULT_CLOSED_STATUS_ID,
) -> bool:
    """A ticket is closed by status code or by a status name mentioning 'closed'."""
    if status_id is not None and status_id == closed_status_id:
        return True
    return bool(status_name and "closed" in status_name.lower())


def normalize_client(raw: dict[str, Any]) -> HaloClientRecord:
    return HaloClientRecord(
        id=int(require_field(PROVIDER, raw, "id")),
        name=optional_str(raw.get("name")),
        toplevel_id=optional_int(raw.get("toplevel_id")),
        toplevel_name=optional_str(raw.get("toplevel_name")),
        inactive=bool(raw.get("inactive") or False),
        colour=optional_str(raw.get("colour")),
    )


def normalize_ticket(raw: dict[str, Any]) -> HaloTicketRecord:
    date_occurred = parse_halo_datetime(require_field(PROVIDER, raw, "dateoccurred"))
    if date_occurred is None:
        raise NormalizationError(
            PROVIDER, f"Ticket {raw.get('id')} has an unusable dateoccurred"
        )
    return HaloTicketRecord(
        id=int(require_field(PROVIDER, raw, "id")),
        client_id=int(require_field(PROVIDER, raw, "client_id")),
        client_name=optional_str(raw.get("client_name")),
        site_id=optional_int(raw.get("site_id")),
        site_name=optional_str(raw.get("site_name")),
        user_name=optional_str(raw.get("user_name")),
        summary=optional_str(raw.get("summary")),
        details=optional_str(raw.get("details")),
        status_id=optional_int(raw.get("status_id")),
        # Halo names the status "statusname" on list endpoints, "status" elsewhere
        status_name=optional_str(raw.get("statusname") or raw.get("status")),
        priority_id=optional_int(raw.get("priority_id")),
        ticket_type_id=optional_int(raw.get("tickettype_id")),
        team=optional_str(raw.get("team")),
        agent_id=optional_int(raw.get("agent_id")),
        date_occurred=date_occurred,
        date_closed=parse_halo_datetime(raw.get("dateclosed")),
        response_date=parse_halo_datetime(raw.get("responsedate")),
        last_action_date=parse_halo_datetime(raw.get("lastactiondate")),
    )


def normalize_feedback(raw: dict[str, Any]) -> HaloFeedbackRecord:
    return HaloFeedbackRecord(
        id=int(require_field(PROVIDER, raw, "id")),
        ticket_id=optional_int(raw.get("ticket_id")),
        score=optional_int(raw.get("score")),
        score_band=optional_str(raw.get("score_band")),
        date=parse_halo_datetime(raw.get("date")),
        comment=optional_str(raw.get("comment")),
    )


# =============================================================================
# CLIENT
# =============================================================================


class HaloPSAClient(UpstreamClient):
    """Client-credentials HaloPSA client with paginated list fetching."""

    provider = PROVIDER

    def __init__(
        self,
        api_url: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str = "all",
        page_size: int = 100,
        token_store: TokenStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        super().__init__(api_url, token_store, http_client, timeout)
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.page_size = page_size

    async def get_token(self) -> str:
        token = self.token_store.get()
        if token:
            return token

        logger.info("Requesting new HaloPSA access token")
        payload = await self._request_token(
            self.token_url,
            {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": self.scope,
            },
        )
        token = payload["access_token"]
        self.token_store.set(token, float(payload.get("expires_in", 3600)))
        return token

    async def fetch_page(
        self,
        resource: str,
        key: str,
        page_no: int,
        params: dict[str, Any] | None = None,
    ) -> HaloPage:
        """One page of ``resource``; its records sit under ``key`` in the envelope."""
        query = {
            **(params or {}),
            "pageinate": "true",
            "page_size": self.page_size,
            "page_no": page_no,
        }
        data = await self._get_json(f"/{resource}", query)
        if not isinstance(data, dict):
            raise NormalizationError(PROVIDER, f"{resource} page is not an object")

        records = data.get(key)
        if not isinstance(records, list):
            raise NormalizationError(PROVIDER, f"{resource} page has no '{key}' list")
        return HaloPage(records=records, record_count=optional_int(data.get("record_count")))

    async def fetch_all(
        self,
        resource: str,
        key: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch every page of a paginated resource.

        Stops once the reported record_count is reached or a page comes back
        empty, so a wrong total cannot loop forever.
        """
        collected: list[dict[str, Any]] = []
        page_no = 1
        while True:
            page = await self.fetch_page(resource, key, page_no, params)
            if not page.records:
                break
            collected.extend(page.records)

            total = page.record_count
            logger.debug(
                f"{resource} page {page_no}: {len(page.records)} records, "
                f"{len(collected)}/{total}"
            )
            if total is not None and len(collected) >= total:
                break
            if total is None and len(page.records) < self.page_size:
                break
            page_no += 1

        logger.info(f"Fetched {len(collected)} {resource} records from HaloPSA")
        return collected

    async def fetch_clients(self) -> list[HaloClientRecord]:
        return [normalize_client(raw) for raw in await self.fetch_all("Client", "clients")]

    async def fetch_tickets(
        self,
        start_date: date,
        end_date: date,
        client_id: int | None = None,
    ) -> list[HaloTicketRecord]:
        params: dict[str, Any] = {
            "startdate": start_date.isoformat(),
            "enddate": end_date.isoformat(),
        }
        if client_id is not None:
            params["client_id"] = client_id
        return [normalize_ticket(raw) for raw in await self.fetch_all("Tickets", "tickets", params)]

    async def fetch_feedback(self) -> list[HaloFeedbackRecord]:
        """Fetch all feedback; the endpoint returns a bare array per page."""
        collected: list[dict[str, Any]] = []
        page_no = 1
        while True:
            data = await self._get_json(
                "/Feedback",
                {"pageinate": "true", "page_size": self.page_size, "page_no": page_no},
            )
            if not isinstance(data, list):
                raise NormalizationError(PROVIDER, "Feedback page is not an array")
            collected.extend(data)
            if len(data) < self.page_size:
                break
            page_no += 1

        logger.info(f"Fetched {len(collected)} feedback records from HaloPSA")
        return [normalize_feedback(raw) for raw in collected]
