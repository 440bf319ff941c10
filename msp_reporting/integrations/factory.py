"""Builds the upstream clients from settings."""

import logging
from dataclasses import dataclass

import httpx

from ..core.config import Settings
from .cache import TokenStore, TTLCache
from .halopsa import HaloPSAClient
from .ninjaone import NinjaOneClient
from .twentyi import TwentyIClient

logger = logging.getLogger(__name__)


@dataclass
class UpstreamClients:
    """Clients for every configured provider. Unconfigured ones are None."""

    http: httpx.AsyncClient
    cache: TTLCache
    halopsa: HaloPSAClient | None = None
    ninjaone: NinjaOneClient | None = None
    twentyi: TwentyIClient | None = None

    async def aclose(self) -> None:
        await self.http.aclose()


def build_upstream_clients(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> UpstreamClients:
    """One shared HTTP client and payload cache; one token store per provider."""
    http = http_client or httpx.AsyncClient(timeout=settings.upstream_timeout_seconds)
    cache = TTLCache(ttl_seconds=settings.upstream_cache_ttl_seconds)
    margin = settings.token_refresh_margin_seconds
    clients = UpstreamClients(http=http, cache=cache)

    if settings.halo_enabled:
        clients.halopsa = HaloPSAClient(
            api_url=settings.halo_api_url,
            token_url=settings.halo_token_url,
            client_id=settings.halo_client_id,
            client_secret=settings.halo_client_secret,
            scope=settings.halo_scope,
            page_size=settings.halo_page_size,
            token_store=TokenStore(refresh_margin_seconds=margin),
            http_client=http,
        )
    else:
        logger.warning("HaloPSA credentials not configured; sync is disabled")

    if settings.ninja_enabled:
        clients.ninjaone = NinjaOneClient(
            base_url=settings.ninja_base_url,
            client_id=settings.ninja_client_id,
            client_secret=settings.ninja_client_secret,
            scope=settings.ninja_scope,
            token_store=TokenStore(refresh_margin_seconds=margin),
            cache=cache,
            http_client=http,
        )
    else:
        logger.warning("NinjaOne credentials not configured; device endpoints are disabled")

    if settings.twentyi_enabled:
        clients.twentyi = TwentyIClient(
            api_key=settings.twentyi_api_key,
            base_url=settings.twentyi_base_url,
            token_store=TokenStore(refresh_margin_seconds=margin),
            cache=cache,
            http_client=http,
        )
    else:
        logger.warning("20i API key not configured; domain endpoints are disabled")

    return clients
