"""NinjaOne RMM API client.

Devices are read live and served from a short-lived cache. Patch queries are
best effort: when they fail, devices are reported with zero pending patches.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from .base import (
    NormalizationError,
    UpstreamClient,
    UpstreamError,
    optional_int,
    optional_str,
    require_field,
)
from .cache import TokenStore, TTLCache

logger = logging.getLogger(__name__)

PROVIDER = "ninjaone"
DEVICES_CACHE_KEY = "ninjaone:devices"

KIND_SERVER = "server"
KIND_WORKSTATION = "workstation"


@dataclass
class DeviceRecord:
    id: int
    name: str
    organization_id: int | None
    organization_name: str | None
    node_class: str | None
    kind: str
    online: bool
    last_contact: datetime | None
    os_pending_patches: int = 0
    software_pending_patches: int = 0

    @property
    def needs_patches(self) -> bool:
        return self.os_pending_patches > 0 or self.software_pending_patches > 0


def classify_device(node_class: str | None, role_name: str | None) -> str:
    """Servers are identified by 'server' in the node class or role policy."""
    for value in (node_class, role_name):
        if value and "server" in value.lower():
            return KIND_SERVER
    return KIND_WORKSTATION


def _epoch_to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def normalize_device(
    raw: dict[str, Any],
    org_names: dict[int, str],
    os_pending: Counter,
    software_pending: Counter,
) -> DeviceRecord:
    device_id = int(require_field(PROVIDER, raw, "id"))
    org_id = optional_int(raw.get("organizationId"))
    node_class = optional_str(raw.get("nodeClass"))
    role_name = optional_str(raw.get("nodeRolePolicyName") or raw.get("roleName"))
    return DeviceRecord(
        id=device_id,
        name=raw.get("systemName") or raw.get("dnsName") or "Unknown",
        organization_id=org_id,
        organization_name=org_names.get(org_id) if org_id is not None else None,
        node_class=node_class,
        kind=classify_device(node_class, role_name),
        # NinjaOne reports offline=false for reachable devices
        online=raw.get("offline") is False,
        last_contact=_epoch_to_datetime(raw.get("lastContact")),
        os_pending_patches=os_pending.get(device_id, 0),
        software_pending_patches=software_pending.get(device_id, 0),
    )


def count_pending_patches(results: list[dict[str, Any]]) -> Counter:
    """Count patches per device whose status is not INSTALLED."""
    pending: Counter = Counter()
    for patch in results:
        device_id = optional_int(patch.get("deviceId"))
        if device_id is not None and patch.get("status") != "INSTALLED":
            pending[device_id] += 1
    return pending


class NinjaOneClient(UpstreamClient):
    """Client-credentials NinjaOne client with a cached device inventory."""

    provider = PROVIDER

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        scope: str = "monitoring management control",
        token_store: TokenStore | None = None,
        cache: TTLCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        super().__init__(base_url, token_store, http_client, timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.cache = cache or TTLCache()

    async def get_token(self) -> str:
        token = self.token_store.get()
        if token:
            return token

        logger.info("Requesting new NinjaOne OAuth token")
        payload = await self._request_token(
            f"{self.base_url}/ws/oauth/token",
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

    async def _get_list(self, path: str) -> list[dict[str, Any]]:
        data = await self._get_json(path)
        if not isinstance(data, list):
            raise NormalizationError(PROVIDER, f"{path} did not return an array")
        return data

    async def fetch_devices(self) -> list[dict[str, Any]]:
        return await self._get_list("/v2/devices")

    async def fetch_organizations(self) -> list[dict[str, Any]]:
        return await self._get_list("/v2/organizations")

    async def _fetch_query_results(self, path: str) -> list[dict[str, Any]]:
        data = await self._get_json(path)
        if isinstance(data, dict) and isinstance(data.get("results"), list):
            return data["results"]
        raise NormalizationError(PROVIDER, f"{path} did not return a results list")

    async def fetch_pending_patches(self) -> tuple[Counter, Counter]:
        """Pending OS and software patch counts per device id."""
        counts = []
        for path in ("/v2/queries/os-patches", "/v2/queries/software-patches"):
            try:
                counts.append(count_pending_patches(await self._fetch_query_results(path)))
            except UpstreamError as e:
                logger.warning(f"Patch query {path} failed, reporting zero: {e}")
                counts.append(Counter())
        return counts[0], counts[1]

    async def get_devices(self) -> list[DeviceRecord]:
        """Normalized device inventory, cached for the TTL."""
        cached = self.cache.get(DEVICES_CACHE_KEY)
        if cached is not None:
            logger.debug("Returning cached NinjaOne devices")
            return cached

        devices, organizations = await asyncio.gather(
            self.fetch_devices(),
            self.fetch_organizations(),
        )
        org_names = {
            int(org["id"]): org.get("name")
            for org in organizations
            if org.get("id") is not None
        }
        os_pending, software_pending = await self.fetch_pending_patches()

        records = [
            normalize_device(raw, org_names, os_pending, software_pending)
            for raw in devices
        ]
        logger.info(f"Fetched {len(records)} devices from NinjaOne")
        self.cache.set(DEVICES_CACHE_KEY, records)
        return records

    async def get_organizations(self) -> list[dict[str, Any]]:
        """Organizations as ``{id, name}`` for the admin mapping screens."""
        return [
            {"id": int(org["id"]), "name": org.get("name")}
            for org in await self.fetch_organizations()
            if org.get("id") is not None
        ]
