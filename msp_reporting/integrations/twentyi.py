"""20i reseller API client.

Authentication is a bearer credential derived from the static API key.
Domains are joined with hosting packages by name to work out hosting and
stack-user ownership.
"""

import asyncio
import base64
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from .base import NormalizationError, UpstreamClient, optional_str, require_field
from .cache import TokenStore, TTLCache

logger = logging.getLogger(__name__)

PROVIDER = "twentyi"
DOMAINS_CACHE_KEY = "twentyi:domains"
TOKEN_LIFETIME_SECONDS = 24 * 60 * 60
EXPIRING_SOON_DAYS = 30
STACK_USER_PREFIX = "stack-user:"

STATUS_ACTIVE = "active"
STATUS_EXPIRING_SOON = "expiring-soon"
STATUS_EXPIRED = "expired"


@dataclass
class PackageRecord:
    id: str
    name: str | None
    names: list[str] = field(default_factory=list)
    stack_user_ids: list[str] = field(default_factory=list)


@dataclass
class DomainRecord:
    id: str
    name: str
    expiry_date: datetime | None
    days_until_expiry: int | None
    status: str
    has_hosting: bool = False
    hosting_package_id: str | None = None
    hosting_package_name: str | None = None
    stack_user_ids: list[str] = field(default_factory=list)

    @property
    def is_expiring_soon(self) -> bool:
        return self.status in (STATUS_EXPIRING_SOON, STATUS_EXPIRED)


def _parse_expiry(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def expiry_status(days_until_expiry: int | None) -> str:
    if days_until_expiry is None:
        return STATUS_ACTIVE
    if days_until_expiry < 0:
        return STATUS_EXPIRED
    if days_until_expiry <= EXPIRING_SOON_DAYS:
        return STATUS_EXPIRING_SOON
    return STATUS_ACTIVE


def parse_stack_user_ref(ref: Any) -> str | None:
    """``stack-user:1234`` -> ``1234``; anything else is ignored."""
    if isinstance(ref, str) and ref.startswith(STACK_USER_PREFIX):
        return ref[len(STACK_USER_PREFIX):] or None
    return None


def normalize_package(raw: dict[str, Any]) -> PackageRecord:
    names = raw.get("names") or []
    if not isinstance(names, list):
        raise NormalizationError(PROVIDER, "Package 'names' is not a list")
    stack_users = raw.get("stackUsers") or []
    return PackageRecord(
        id=str(require_field(PROVIDER, raw, "id")),
        name=optional_str(raw.get("name")),
        names=[str(n).lower() for n in names],
        stack_user_ids=[
            user_id
            for user_id in (parse_stack_user_ref(ref) for ref in stack_users)
            if user_id
        ],
    )


def normalize_domain(
    raw: dict[str, Any],
    packages_by_name: dict[str, PackageRecord],
    now: datetime | None = None,
) -> DomainRecord:
    now = now or datetime.now(timezone.utc)
    name = str(require_field(PROVIDER, raw, "name"))
    expiry = _parse_expiry(raw.get("expiryDate"))
    days = math.ceil((expiry - now).total_seconds() / 86400) if expiry else None
    package = packages_by_name.get(name.lower())
    return DomainRecord(
        id=str(require_field(PROVIDER, raw, "id")),
        name=name,
        expiry_date=expiry,
        days_until_expiry=days,
        status=expiry_status(days),
        has_hosting=package is not None,
        hosting_package_id=package.id if package else None,
        hosting_package_name=package.name if package else None,
        stack_user_ids=list(package.stack_user_ids) if package else [],
    )


class TwentyIClient(UpstreamClient):
    """20i reseller client with a cached domain listing."""

    provider = PROVIDER

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.20i.com",
        token_store: TokenStore | None = None,
        cache: TTLCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        super().__init__(base_url, token_store, http_client, timeout)
        self.api_key = api_key
        self.cache = cache or TTLCache()

    async def get_token(self) -> str:
        token = self.token_store.get()
        if token:
            return token
        token = base64.b64encode(self.api_key.encode()).decode()
        self.token_store.set(token, TOKEN_LIFETIME_SECONDS)
        return token

    async def _get_list(self, path: str) -> list[dict[str, Any]]:
        data = await self._get_json(path)
        if not isinstance(data, list):
            raise NormalizationError(PROVIDER, f"{path} did not return an array")
        return data

    async def fetch_domains(self) -> list[dict[str, Any]]:
        return await self._get_list("/domain")

    async def fetch_packages(self) -> list[dict[str, Any]]:
        return await self._get_list("/package")

    async def get_domains(self) -> list[DomainRecord]:
        """Normalized domains with hosting info, cached for the TTL."""
        cached = self.cache.get(DOMAINS_CACHE_KEY)
        if cached is not None:
            logger.debug("Returning cached 20i domains")
            return cached

        raw_domains, raw_packages = await asyncio.gather(
            self.fetch_domains(),
            self.fetch_packages(),
        )
        packages_by_name: dict[str, PackageRecord] = {}
        for package in (normalize_package(raw) for raw in raw_packages):
            for name in package.names:
                packages_by_name.setdefault(name, package)

        now = datetime.now(timezone.utc)
        domains = [normalize_domain(raw, packages_by_name, now) for raw in raw_domains]
        logger.info(
            f"Fetched {len(domains)} domains and {len(raw_packages)} packages from 20i"
        )
        self.cache.set(DOMAINS_CACHE_KEY, domains)
        return domains
