"""Upstream provider clients (HaloPSA, NinjaOne, 20i)."""

from .base import NormalizationError, UpstreamAuthError, UpstreamClient, UpstreamError
from .cache import TokenStore, TTLCache
from .halopsa import HaloPSAClient, is_ticket_closed
from .ninjaone import DeviceRecord, NinjaOneClient
from .twentyi import DomainRecord, TwentyIClient

__all__ = [
    "UpstreamError",
    "UpstreamAuthError",
    "NormalizationError",
    "UpstreamClient",
    "TokenStore",
    "TTLCache",
    "HaloPSAClient",
    "is_ticket_closed",
    "NinjaOneClient",
    "DeviceRecord",
    "TwentyIClient",
    "DomainRecord",
]
