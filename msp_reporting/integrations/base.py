"""Shared plumbing for upstream provider clients."""

import logging
from typing import Any

import httpx

from .cache import TokenStore

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class UpstreamError(Exception):
    """An upstream provider call failed."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class UpstreamAuthError(UpstreamError):
    """Credential acquisition failed. Not retried."""

    pass


class NormalizationError(UpstreamError):
    """An upstream response did not have the expected shape."""

    pass


# =============================================================================
# CLIENT BASE
# =============================================================================


class UpstreamClient:
    """Base for provider clients: bearer auth, JSON GETs, error mapping."""

    provider = "upstream"

    def __init__(
        self,
        base_url: str,
        token_store: TokenStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_store = token_store or TokenStore()
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def get_token(self) -> str:
        raise NotImplementedError

    async def _request_token(self, url: str, data: dict[str, str]) -> dict[str, Any]:
        """POST a client-credentials form and return the token response."""
        try:
            response = await self.http.post(
                url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"{self.provider} token request failed: {e}")
            raise UpstreamAuthError(self.provider, "Token request failed") from e

        if response.status_code != 200:
            logger.error(
                f"{self.provider} token request rejected: status={response.status_code}"
            )
            raise UpstreamAuthError(
                self.provider,
                "Failed to authenticate",
                status_code=response.status_code,
            )

        payload = response.json()
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise UpstreamAuthError(self.provider, "Token response missing access_token")
        return payload

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``{base_url}{path}`` with the bearer token attached."""
        token = await self.get_token()
        url = f"{self.base_url}{path}"
        try:
            response = await self.http.get(
                url,
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"{self.provider} request failed: endpoint={path} error={e}")
            raise UpstreamError(self.provider, f"Request to {path} failed") from e

        if response.is_error:
            logger.error(
                f"{self.provider} request failed: endpoint={path} "
                f"status={response.status_code}"
            )
            if response.status_code == 401:
                # Force a fresh token on the next call
                self.token_store.clear()
            raise UpstreamError(
                self.provider,
                f"Request to {path} returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise NormalizationError(self.provider, f"Invalid JSON from {path}") from e


# =============================================================================
# FIELD HELPERS
# =============================================================================


def require_field(provider: str, record: dict[str, Any], key: str) -> Any:
    """Return a required field or raise NormalizationError."""
    value = record.get(key)
    if value is None:
        raise NormalizationError(provider, f"Record missing required field '{key}'")
    return value


def optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None
