"""Credential vault: encrypted per-channel OAuth tokens and their refresh

Refresh is single-flighted twice over:
- inside one process, concurrent callers for a channel share one refresh task;
- across processes, a Redis lock lets one worker refresh while others wait and
  re-read the stored token.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import httpx
from sqlalchemy.orm import Session

from descsync.core.config import settings
from descsync.core.errors import (
    NotConnected, RemoteTransient, RevokedOrExpiredRefresh, ScopeInsufficient, TokenRefreshFailed
)
from descsync.core.metrics import token_refresh_counter
from descsync.db.redis import distributed_lock, is_locked
from descsync.models.channel import Channel
from descsync.services.usage_service import record_usage
from descsync.utils.encryption import decrypt, encrypt

vault_logger = logging.getLogger("vault")

PEER_REFRESH_POLL_INTERVAL = 0.25


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def needs_refresh(channel: Channel, margin_seconds: Optional[int] = None) -> bool:
    """True when the access token is missing or expires within the margin"""
    if not channel.access_token:
        return True
    expires_at = _as_utc(channel.token_expires_at)
    if expires_at is None:
        return True
    margin = timedelta(seconds=settings.TOKEN_EXPIRY_MARGIN_SECONDS if margin_seconds is None else margin_seconds)
    return datetime.now(timezone.utc) + margin >= expires_at


class CredentialVault:
    """Hands out valid access tokens for connected channels"""

    def __init__(self, http: httpx.AsyncClient, token_url: Optional[str] = None, revoke_url: Optional[str] = None):
        self.http = http
        self.token_url = token_url or settings.GOOGLE_TOKEN_URL
        self.revoke_url = revoke_url or settings.GOOGLE_REVOKE_URL
        self._inflight: Dict[int, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def store_tokens(
        self,
        db: Session,
        channel: Channel,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: Optional[int],
        scopes: Optional[Iterable[str]] = None,
    ) -> None:
        """Encrypt and stage new tokens on the channel (caller commits)"""
        channel.access_token = encrypt(access_token)
        if refresh_token:
            channel.refresh_token = encrypt(refresh_token)
        channel.token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in or 3600))
        if scopes is not None:
            channel.granted_scopes = sorted(set(scopes))
        channel.token_status = "valid"
        db.add(channel)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def get_valid_token(
        self,
        db: Session,
        channel: Channel,
        required_scopes: Optional[Iterable[str]] = None,
    ) -> str:
        """Return a usable access token, refreshing it first when needed

        ``required_scopes`` are alternatives: any one granted scope suffices.

        Raises:
            NotConnected: No credentials stored
            ScopeInsufficient: Granted scopes cover none of ``required_scopes``
            RevokedOrExpiredRefresh: Channel must be reconnected
            TokenRefreshFailed: Refresh exchange rejected
            RemoteTransient: Token endpoint unavailable
        """
        if channel.token_status in ("invalid", "revoked"):
            raise RevokedOrExpiredRefresh(
                f"Channel {channel.id} credentials are {channel.token_status}. Please reconnect the channel.",
                {"channel_id": channel.id},
            )
        if not channel.access_token and not channel.refresh_token:
            raise NotConnected(f"Channel {channel.id} is not connected", {"channel_id": channel.id})

        self._check_scopes(channel, required_scopes)

        if not needs_refresh(channel):
            return decrypt(channel.access_token)

        if not channel.refresh_token:
            raise RevokedOrExpiredRefresh(
                f"Access token for channel {channel.id} expired and no refresh token is stored. Please reconnect the channel.",
                {"channel_id": channel.id},
            )

        channel_id = channel.id
        task = self._inflight.get(channel_id)
        if task is None:
            task = asyncio.create_task(self._refresh(db, channel))
            self._inflight[channel_id] = task
            task.add_done_callback(lambda _t: self._inflight.pop(channel_id, None))
        else:
            vault_logger.debug(f"Joining in-flight token refresh for channel {channel_id}")

        token = await asyncio.shield(task)
        # The refresh may have run on another session
        db.expire(channel)
        return token

    def _check_scopes(self, channel: Channel, required_scopes: Optional[Iterable[str]]) -> None:
        if not required_scopes or channel.granted_scopes is None:
            return
        required: List[str] = list(required_scopes)
        if not set(required) & set(channel.granted_scopes):
            raise ScopeInsufficient(
                f"Channel {channel.id} was connected without the required permission. Please reconnect the channel.",
                {"channel_id": channel.id, "required_scopes": required},
            )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _refresh(self, db: Session, channel: Channel) -> str:
        lock_key = f"channel_token_refresh:{channel.id}"

        with distributed_lock(lock_key, timeout=settings.TOKEN_REFRESH_LOCK_TIMEOUT) as acquired:
            if not acquired:
                return await self._await_peer_refresh(db, channel, lock_key)

            # Double-check: another worker may have refreshed before we got the lock
            db.refresh(channel)
            if channel.token_status in ("invalid", "revoked"):
                raise RevokedOrExpiredRefresh(
                    f"Channel {channel.id} credentials are {channel.token_status}. Please reconnect the channel.",
                    {"channel_id": channel.id},
                )
            if not needs_refresh(channel):
                vault_logger.info(f"Token already refreshed by another worker (channel {channel.id})")
                return decrypt(channel.access_token)

            return await self._exchange_refresh_token(db, channel)

    async def _await_peer_refresh(self, db: Session, channel: Channel, lock_key: str) -> str:
        vault_logger.info(f"Waiting for concurrent token refresh (channel {channel.id})")
        waited = 0.0
        while is_locked(lock_key) and waited < settings.TOKEN_REFRESH_LOCK_TIMEOUT:
            await asyncio.sleep(PEER_REFRESH_POLL_INTERVAL)
            waited += PEER_REFRESH_POLL_INTERVAL

        db.refresh(channel)
        if channel.token_status in ("invalid", "revoked"):
            raise RevokedOrExpiredRefresh(
                f"Concurrent refresh for channel {channel.id} failed. Please reconnect the channel.",
                {"channel_id": channel.id},
            )
        if not needs_refresh(channel):
            vault_logger.info(f"Using token refreshed by concurrent worker (channel {channel.id})")
            return decrypt(channel.access_token)

        raise RemoteTransient(
            f"Token refresh for channel {channel.id} is still in progress elsewhere",
            {"channel_id": channel.id},
        )

    async def _exchange_refresh_token(self, db: Session, channel: Channel) -> str:
        refresh_token = decrypt(channel.refresh_token)
        vault_logger.info(f"Refreshing access token (channel {channel.id})")

        try:
            response = await self.http.post(
                self.token_url,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            record_usage(db, channel.user_id, "oauth.token", "POST", 0, "network_error",
                         pool="oauth", channel_id=channel.id)
            token_refresh_counter.labels(status="network_error").inc()
            vault_logger.warning(f"Token endpoint unreachable (channel {channel.id}): {e}")
            raise RemoteTransient(f"Token endpoint unreachable: {e}", {"channel_id": channel.id})

        ok = response.status_code == 200
        record_usage(db, channel.user_id, "oauth.token", "POST", 0, "success" if ok else "error",
                     pool="oauth", channel_id=channel.id, status_code=response.status_code)

        if ok:
            data = response.json()
            scope = data.get("scope")
            self.store_tokens(
                db, channel,
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                expires_in=data.get("expires_in"),
                scopes=scope.split() if scope else None,
            )
            db.commit()
            token_refresh_counter.labels(status="success").inc()
            vault_logger.info(f"Access token refreshed (channel {channel.id})")
            return data["access_token"]

        if response.status_code == 429 or response.status_code >= 500:
            token_refresh_counter.labels(status="transient").inc()
            raise RemoteTransient(
                f"Token endpoint returned {response.status_code}",
                {"channel_id": channel.id},
            )

        error_code, description = _parse_oauth_error(response)
        channel.token_status = "invalid"
        db.commit()
        token_refresh_counter.labels(status="failed").inc()
        vault_logger.warning(
            f"Token refresh rejected (channel {channel.id}): {error_code} {description}"
        )

        message = f"Token refresh failed: {description or error_code}. Please reconnect the channel."
        if error_code == "invalid_grant":
            raise RevokedOrExpiredRefresh(message, {"channel_id": channel.id, "error": error_code})
        raise TokenRefreshFailed(message, {"channel_id": channel.id, "error": error_code})

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    async def revoke(self, db: Session, channel: Channel) -> bool:
        """Revoke remotely, clear stored tokens and mark the channel revoked

        Returns:
            Whether the remote revocation succeeded. Local credentials are
            cleared either way.
        """
        revoked_remote = False
        stored = channel.refresh_token or channel.access_token
        if stored:
            token = decrypt(stored)
            try:
                response = await self.http.post(
                    self.revoke_url,
                    data={"token": token},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
                revoked_remote = response.status_code == 200
                record_usage(db, channel.user_id, "oauth.revoke", "POST", 0,
                             "success" if revoked_remote else "error",
                             pool="oauth", channel_id=channel.id, status_code=response.status_code)
                if not revoked_remote:
                    vault_logger.warning(
                        f"Remote token revocation returned {response.status_code} (channel {channel.id})"
                    )
            except httpx.HTTPError as e:
                record_usage(db, channel.user_id, "oauth.revoke", "POST", 0, "network_error",
                             pool="oauth", channel_id=channel.id)
                vault_logger.warning(f"Remote token revocation failed (channel {channel.id}): {e}")

        channel.access_token = None
        channel.refresh_token = None
        channel.token_expires_at = None
        channel.token_status = "revoked"
        db.commit()
        return revoked_remote


def _parse_oauth_error(response: httpx.Response):
    try:
        data = response.json()
    except ValueError:
        return "unknown", response.text[:200]
    if isinstance(data, dict):
        return data.get("error", "unknown"), data.get("error_description", "")
    return "unknown", str(data)[:200]
