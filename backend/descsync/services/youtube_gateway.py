"""Quota-aware gateway to the YouTube Data and Analytics APIs

Every outbound call goes through ``YouTubeGateway.call``, which:
- obtains a valid token from the credential vault,
- charges the endpoint's declared quota cost for the attempt (success or not),
- maps remote failures onto the local error taxonomy.

The gateway never retries. Quota is billed per attempt, so retry policy
belongs to the caller.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from descsync.core.config import settings
from descsync.core.errors import (
    DescSyncError, RemoteError, RemoteNotFound, RemoteTransient, ScopeInsufficient
)
from descsync.core.metrics import remote_calls_counter
from descsync.models.channel import Channel
from descsync.services.credential_vault import CredentialVault
from descsync.services.usage_service import record_usage

youtube_logger = logging.getLogger("youtube")

SCOPE_READONLY = "https://www.googleapis.com/auth/youtube.readonly"
SCOPE_FORCE_SSL = "https://www.googleapis.com/auth/youtube.force-ssl"
SCOPE_ANALYTICS = "https://www.googleapis.com/auth/yt-analytics.readonly"

READ_SCOPES = (SCOPE_READONLY, SCOPE_FORCE_SSL)
WRITE_SCOPES = (SCOPE_FORCE_SSL,)

# Page size accepted by list endpoints and id batch size for videos.list
MAX_RESULTS = 50


@dataclass(frozen=True)
class Endpoint:
    name: str
    method: str
    path: str
    cost: int
    pool: str = "data"
    scopes: Tuple[str, ...] = READ_SCOPES


ENDPOINTS: Dict[str, Endpoint] = {
    endpoint.name: endpoint for endpoint in (
        Endpoint("channels.list", "GET", "/channels", 1),
        Endpoint("playlistItems.list", "GET", "/playlistItems", 1),
        Endpoint("videos.list", "GET", "/videos", 1),
        Endpoint("search.list", "GET", "/search", 100),
        Endpoint("videos.update", "PUT", "/videos", 50, scopes=WRITE_SCOPES),
        Endpoint("videos.delete", "DELETE", "/videos", 50, scopes=WRITE_SCOPES),
        # Analytics quota is a separate pool, reported alongside the data pool
        Endpoint("reports.query", "GET", "/reports", 1, pool="analytics", scopes=(SCOPE_ANALYTICS,)),
    )
}

QUOTA_COSTS = {name: endpoint.cost for name, endpoint in ENDPOINTS.items()}

_SCOPE_REASONS = {"insufficientPermissions", "ACCESS_TOKEN_SCOPE_INSUFFICIENT", "insufficient_scope"}
_RATE_LIMIT_REASONS = {"quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded", "dailyLimitExceeded"}


def _error_details(response: httpx.Response) -> Tuple[str, set]:
    """Remote message and the set of reason codes from a Google error envelope"""
    reasons = set()
    try:
        data = response.json()
    except ValueError:
        return (response.text or f"HTTP {response.status_code}")[:500], reasons

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, str):
        # OAuth style: {"error": "insufficient_scope", "error_description": "..."}
        reasons.add(error)
        return data.get("error_description") or error, reasons
    if not isinstance(error, dict):
        return (response.text or f"HTTP {response.status_code}")[:500], reasons

    for item in error.get("errors") or []:
        if item.get("reason"):
            reasons.add(item["reason"])
    for item in error.get("details") or []:
        if isinstance(item, dict) and item.get("reason"):
            reasons.add(item["reason"])
    if error.get("status"):
        reasons.add(error["status"])
    return error.get("message") or f"HTTP {response.status_code}", reasons


def map_remote_error(response: httpx.Response, endpoint: str) -> DescSyncError:
    """Translate a non-2xx response into the local taxonomy"""
    status = response.status_code
    message, reasons = _error_details(response)
    details = {"endpoint": endpoint, "status_code": status, "reasons": sorted(reasons)}

    www_authenticate = response.headers.get("www-authenticate", "")
    if status in (401, 403) and (reasons & _SCOPE_REASONS or "insufficient_scope" in www_authenticate):
        return ScopeInsufficient(f"Missing permission for {endpoint}. Please reconnect the channel.", details)
    if status == 404:
        return RemoteNotFound(message, details)
    if status == 429 or status >= 500 or (status == 403 and reasons & _RATE_LIMIT_REASONS):
        return RemoteTransient(message, details)
    return RemoteError(message, status_code=status, details=details)


class YouTubeGateway:
    """One instance per process, sharing the process-wide httpx client"""

    def __init__(
        self,
        http: httpx.AsyncClient,
        vault: CredentialVault,
        api_base: Optional[str] = None,
        analytics_base: Optional[str] = None,
    ):
        self.http = http
        self.vault = vault
        self.api_base = (api_base or settings.YOUTUBE_API_BASE).rstrip("/")
        self.analytics_base = (analytics_base or settings.YOUTUBE_ANALYTICS_BASE).rstrip("/")

    async def call(
        self,
        db: Session,
        channel: Channel,
        endpoint_name: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Call an endpoint on behalf of a stored channel"""
        endpoint = ENDPOINTS[endpoint_name]
        token = await self.vault.get_valid_token(db, channel, endpoint.scopes)
        return await self.request(
            db, endpoint, token,
            user_id=channel.user_id, channel_id=channel.id,
            params=params, json=json,
        )

    async def request(
        self,
        db: Session,
        endpoint: Endpoint,
        access_token: str,
        user_id: int,
        channel_id: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Perform one charged attempt with an explicit bearer token"""
        base = self.analytics_base if endpoint.pool == "analytics" else self.api_base
        try:
            response = await self.http.request(
                endpoint.method,
                f"{base}{endpoint.path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            record_usage(db, user_id, endpoint.name, endpoint.method, endpoint.cost, "network_error",
                         pool=endpoint.pool, channel_id=channel_id)
            remote_calls_counter.labels(endpoint=endpoint.name, outcome="network_error").inc()
            youtube_logger.warning(f"{endpoint.name} failed to reach YouTube: {e}")
            raise RemoteTransient(f"Network error calling {endpoint.name}: {e}", {"endpoint": endpoint.name})

        ok = response.is_success
        record_usage(db, user_id, endpoint.name, endpoint.method, endpoint.cost,
                     "success" if ok else "error",
                     pool=endpoint.pool, channel_id=channel_id, status_code=response.status_code)

        if ok:
            remote_calls_counter.labels(endpoint=endpoint.name, outcome="success").inc()
            if not response.content:
                return {}
            return response.json()

        error = map_remote_error(response, endpoint.name)
        remote_calls_counter.labels(endpoint=endpoint.name, outcome=error.code).inc()
        youtube_logger.warning(
            f"{endpoint.name} returned {response.status_code} ({error.code}): {error.message}"
        )
        raise error

    # ------------------------------------------------------------------
    # Typed operations
    # ------------------------------------------------------------------

    async def fetch_own_channel(self, db: Session, access_token: str, user_id: int) -> Dict[str, Any]:
        """channels.list mine=true, used while connecting a channel"""
        data = await self.request(
            db, ENDPOINTS["channels.list"], access_token, user_id=user_id,
            params={"part": "snippet,statistics,contentDetails", "mine": "true"},
        )
        items = data.get("items") or []
        if not items:
            raise RemoteNotFound("No YouTube channel found for this Google account", {"endpoint": "channels.list"})
        return items[0]

    async def get_channel(self, db: Session, channel: Channel) -> Dict[str, Any]:
        data = await self.call(
            db, channel, "channels.list",
            params={"part": "snippet,statistics,contentDetails", "id": channel.youtube_channel_id},
        )
        items = data.get("items") or []
        if not items:
            raise RemoteNotFound(f"Channel {channel.youtube_channel_id} not found", {"endpoint": "channels.list"})
        return items[0]

    async def list_upload_video_ids(self, db: Session, channel: Channel, playlist_id: str) -> List[str]:
        """All video ids in the uploads playlist, following pagination"""
        video_ids: List[str] = []
        page_token = None
        while True:
            params = {"part": "contentDetails", "playlistId": playlist_id, "maxResults": MAX_RESULTS}
            if page_token:
                params["pageToken"] = page_token
            data = await self.call(db, channel, "playlistItems.list", params=params)
            for item in data.get("items") or []:
                video_id = (item.get("contentDetails") or {}).get("videoId")
                if video_id:
                    video_ids.append(video_id)
            page_token = data.get("nextPageToken")
            if not page_token:
                return video_ids

    async def get_videos(self, db: Session, channel: Channel, video_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(video_ids)
        videos: List[Dict[str, Any]] = []
        for start in range(0, len(ids), MAX_RESULTS):
            batch = ids[start:start + MAX_RESULTS]
            data = await self.call(
                db, channel, "videos.list",
                params={"part": "snippet", "id": ",".join(batch), "maxResults": MAX_RESULTS},
            )
            videos.extend(data.get("items") or [])
        return videos

    async def update_description(self, db: Session, channel: Channel, youtube_video_id: str, description: str) -> Dict[str, Any]:
        """Replace a video's description, keeping the rest of its snippet

        videos.update overwrites the whole snippet, so the current snippet is
        read first (videos.list) and sent back with the new description.
        """
        data = await self.call(db, channel, "videos.list", params={"part": "snippet", "id": youtube_video_id})
        items = data.get("items") or []
        if not items:
            raise RemoteNotFound(f"Video {youtube_video_id} not found", {"endpoint": "videos.list"})

        current = items[0].get("snippet") or {}
        snippet = {
            "title": current.get("title", ""),
            "description": description,
            "categoryId": current.get("categoryId", "22"),
        }
        for key in ("tags", "defaultLanguage", "defaultAudioLanguage"):
            if key in current:
                snippet[key] = current[key]

        return await self.call(
            db, channel, "videos.update",
            params={"part": "snippet"},
            json={"id": youtube_video_id, "snippet": snippet},
        )

    async def delete_video(self, db: Session, channel: Channel, youtube_video_id: str) -> None:
        await self.call(db, channel, "videos.delete", params={"id": youtube_video_id})

    async def search_channel(self, db: Session, channel: Channel, query: str, max_results: int = 25) -> List[Dict[str, Any]]:
        data = await self.call(
            db, channel, "search.list",
            params={
                "part": "snippet",
                "channelId": channel.youtube_channel_id,
                "q": query,
                "type": "video",
                "maxResults": min(max_results, MAX_RESULTS),
            },
        )
        return data.get("items") or []

    async def video_analytics(
        self,
        db: Session,
        channel: Channel,
        youtube_video_id: str,
        start_date: str,
        end_date: str,
        metrics: str = "views,estimatedMinutesWatched,averageViewDuration,likes,comments",
    ) -> Dict[str, Any]:
        return await self.call(
            db, channel, "reports.query",
            params={
                "ids": f"channel=={channel.youtube_channel_id}",
                "startDate": start_date,
                "endDate": end_date,
                "metrics": metrics,
                "filters": f"video=={youtube_video_id}",
            },
        )
