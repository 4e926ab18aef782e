"""
Strava API client.

Provides methods for the endpoints the migration queue consumes.
Every API response (success or not) is counted and handed to the
response hooks before status handling, so the shared rate-limit
estimate always sees the provider's latest `X-RateLimit-*` headers.

Strava API Limits (default application tier):
- 100 requests per 15 minutes
- 1,000 requests per day
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

ResponseHook = Callable[[httpx.Response], Awaitable[None]]

STREAM_KEYS = (
    "latlng",
    "altitude",
    "heartrate",
    "watts",
    "cadence",
    "velocity_smooth",
    "time",
    "distance",
)


# =============================================================================
# Exceptions
# =============================================================================

class StravaError(Exception):
    """Base Strava error."""
    pass


class StravaAPIError(StravaError):
    """Strava API error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StravaAuthError(StravaAPIError):
    """Authentication/authorization error."""
    pass


class StravaRateLimitError(StravaError):
    """Rate limit exceeded (HTTP 429)."""
    pass


# =============================================================================
# Strava Client
# =============================================================================

class StravaClient:
    """
    Async client for Strava API.

    Usage:
        async with StravaClient(response_hooks=[tracker.record_response]) as client:
            activities = await client.list_activities(token, page=1)
            print(client.calls_made)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        response_hooks: Sequence[ResponseHook] = (),
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.api_url = (api_url or settings.strava_api_url).rstrip("/")
        self.calls_made = 0
        timeout = timeout or settings.strava_request_timeout

        self._http = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout,
            transport=transport,
            event_hooks={"response": [self._count_call, *response_hooks]},
        )
        # Photo CDN downloads are not API calls and are never counted
        self._cdn = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def __aenter__(self) -> "StravaClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()
        await self._cdn.aclose()

    async def _count_call(self, response: httpx.Response) -> None:
        self.calls_made += 1

    # -------------------------------------------------------------------------
    # API Calls
    # -------------------------------------------------------------------------

    async def _api_request(
        self,
        method: str,
        endpoint: str,
        access_token: str,
        params: Optional[dict] = None
    ) -> Any:
        """
        Make an authenticated API request.

        Raises:
            StravaRateLimitError: If Strava answered 429
            StravaAuthError: If authentication fails
            StravaAPIError: If API returns any other error
        """
        try:
            response = await self._http.request(
                method=method,
                url=endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
                params=params
            )
        except httpx.HTTPError as e:
            raise StravaAPIError(f"Request to {endpoint} failed: {e}") from e

        if response.status_code == 429:
            raise StravaRateLimitError(f"Strava rate limit exceeded on {endpoint}")
        elif response.status_code == 401:
            raise StravaAuthError("Invalid or expired token", status_code=401)
        elif not response.is_success:
            raise StravaAPIError(
                f"API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        return response.json()

    async def list_activities(
        self,
        access_token: str,
        page: int = 1,
        per_page: int = 30,
        after: Optional[int] = None,
    ) -> list[dict]:
        """
        Get one page of the athlete's activities (newest first).

        Args:
            access_token: Valid access token
            page: Page number (1-based)
            per_page: Results per page (max 200)
            after: Only activities started after this epoch second

        Note: Does NOT include GPS data in list response.
        """
        params = {"page": page, "per_page": min(per_page, 200)}
        if after is not None:
            params["after"] = after

        return await self._api_request(
            "GET",
            "/athlete/activities",
            access_token,
            params
        )

    async def get_streams(self, access_token: str, activity_id: int) -> dict[str, Any]:
        """
        Get GPS/sensor streams for an activity, keyed by stream type.

        Returns:
            {"latlng": [...], "altitude": [...], ...}
        """
        raw = await self._api_request(
            "GET",
            f"/activities/{activity_id}/streams",
            access_token,
            params={"keys": ",".join(STREAM_KEYS), "key_by_type": "true"}
        )

        # key_by_type=true gives a dict, older clients got a list
        if isinstance(raw, list):
            return {s["type"]: s.get("data") for s in raw}
        return {key: value.get("data") for key, value in raw.items()}

    async def get_activity(
        self,
        access_token: str,
        activity_id: int,
        include_all_efforts: bool = True
    ) -> dict:
        """Get detailed activity info including segment efforts."""
        params = {"include_all_efforts": str(include_all_efforts).lower()}
        return await self._api_request(
            "GET",
            f"/activities/{activity_id}",
            access_token,
            params
        )

    async def get_photos(self, access_token: str, activity_id: int) -> list[dict]:
        """Get photo metadata for an activity (largest size)."""
        return await self._api_request(
            "GET",
            f"/activities/{activity_id}/photos",
            access_token,
            params={"size": 2048, "photo_sources": "true"}
        )

    async def download(self, url: str) -> tuple[bytes, str]:
        """
        Download a photo from the CDN.

        Returns:
            (content, content_type)
        """
        try:
            response = await self._cdn.get(url)
        except httpx.HTTPError as e:
            raise StravaAPIError(f"Download failed: {e}") from e

        if not response.is_success:
            raise StravaAPIError(
                f"Download failed: {response.status_code}",
                status_code=response.status_code,
            )
        return response.content, response.headers.get("content-type", "image/jpeg")
