"""
NetworkClient for the asset ingestion engine.

The direct network collaborator: the ONLY place plain HTTP calls are made.

- Non-2xx responses are returned, never raised. Error payloads drive the
  fatal/retryable classification upstream, so callers must be able to read them.
- Transport failures (timeouts, resets) propagate as httpx.RequestError.
- The credential is attached only when a call asks for it and is never logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from asset_ingest.core.config import IngestSettings, TimeoutSettings

logger = logging.getLogger("asset_ingest.network")

MB = 1024 * 1024


def upload_timeout(timeouts: TimeoutSettings, size_bytes: int) -> float:
    """Timeout scaled to payload size, bounded by the configured ceiling."""
    scaled = (size_bytes / MB) * timeouts.upload_seconds_per_mb
    return min(max(timeouts.upload_min_seconds, scaled), timeouts.upload_max_seconds)


@dataclass(frozen=True, slots=True)
class CredentialCheck:
    valid: bool
    user_id: Optional[str] = None
    username: Optional[str] = None
    error: Optional[str] = None


class NetworkClient:
    """
    Thin async HTTP gateway.

    Args:
        settings: endpoint and timeout settings.
        credential: opaque bearer token supplied by the caller.
        transport: optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        settings: IngestSettings,
        *,
        credential: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._credential = (credential or "").strip() or None
        self._client = httpx.AsyncClient(
            timeout=settings.timeouts.probe_seconds,
            follow_redirects=True,
            transport=transport,
        )

    @property
    def settings(self) -> IngestSettings:
        return self._settings

    @property
    def has_credential(self) -> bool:
        return self._credential is not None

    def base_headers(self) -> dict[str, str]:
        return {"User-Agent": self._settings.endpoints.user_agent}

    def credential_headers(self) -> dict[str, str]:
        if not self._credential:
            return {}
        cookie_name = self._settings.endpoints.credential_cookie
        return {"Cookie": f"{cookie_name}={self._credential}"}

    def upload_timeout(self, size_bytes: int) -> float:
        return upload_timeout(self._settings.timeouts, size_bytes)

    async def request(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = False,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        merged = self.base_headers()
        if authenticated:
            merged.update(self.credential_headers())
        if headers:
            merged.update(headers)

        response = await self._client.request(
            method,
            url,
            headers=merged,
            timeout=timeout if timeout is not None else self._settings.timeouts.probe_seconds,
            **kwargs,
        )
        logger.debug("%s %s -> %s", method, url, response.status_code)
        return response

    async def fetch_csrf_token(self) -> Optional[str]:
        """Best-effort anti-forgery token. Absence never blocks the caller."""
        if not self._credential:
            return None
        try:
            response = await self.request(
                "POST",
                self._settings.endpoints.csrf_url,
                authenticated=True,
                timeout=self._settings.timeouts.secondary_probe_seconds,
            )
        except httpx.RequestError as e:
            logger.warning("CSRF token fetch failed (%s); continuing without it.", type(e).__name__)
            return None
        token = response.headers.get("x-csrf-token")
        if not token:
            logger.info("CSRF token not issued (status %s); continuing without it.", response.status_code)
        return token or None

    async def verify_credential(self) -> CredentialCheck:
        """Check the credential against the authenticated-user endpoint."""
        if not self._credential:
            return CredentialCheck(valid=False, error="Credential not configured")
        try:
            response = await self.request(
                "GET", self._settings.endpoints.authenticated_user_url, authenticated=True
            )
        except httpx.TimeoutException:
            return CredentialCheck(valid=False, error="Request timed out. Check your internet connection.")
        except httpx.RequestError as e:
            return CredentialCheck(valid=False, error=f"Network error ({type(e).__name__}).")

        if response.status_code in (401, 403):
            return CredentialCheck(valid=False, error="Credential is invalid or expired")
        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                return CredentialCheck(
                    valid=True,
                    user_id=str(data.get("id") or "") or None,
                    username=data.get("name") or None,
                )
        return CredentialCheck(valid=False, error=f"Unexpected response: {response.status_code}")

    async def close(self) -> None:
        """Cleanup resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "NetworkClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
