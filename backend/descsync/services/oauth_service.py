"""YouTube channel connection over Google OAuth"""
import logging
import secrets
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from descsync.core.config import settings, YOUTUBE_SCOPES
from descsync.core.errors import RemoteError, RemoteTransient, ValidationError
from descsync.db.redis import get_redis_client
from descsync.models.channel import Channel
from descsync.schemas.events import ChannelSync
from descsync.services.credential_vault import CredentialVault
from descsync.services.plan_limits import enforce_channel_limit
from descsync.services.sync_service import apply_channel_info
from descsync.services.usage_service import record_usage
from descsync.services.youtube_gateway import YouTubeGateway

youtube_logger = logging.getLogger("youtube")
security_logger = logging.getLogger("security")

OAUTH_STATE_TTL = 10 * 60  # 10 minutes


def _state_key(state: str) -> str:
    return f"{settings.ENVIRONMENT}:youtube_oauth_state:{state}"


def build_authorization_url(user_id: int) -> str:
    """Consent URL for connecting a channel; state is bound to the user in Redis"""
    state = secrets.token_urlsafe(32)
    get_redis_client().setex(_state_key(state), OAUTH_STATE_TTL, str(user_id))

    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": settings.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(YOUTUBE_SCOPES),
        "access_type": "offline",
        "include_granted_scopes": "true",
        # Forces a refresh token on every consent
        "prompt": "consent",
        "state": state,
    }
    return f"{settings.GOOGLE_AUTH_URL}?{urlencode(params)}"


def consume_oauth_state(state: str) -> Optional[int]:
    """User id bound to ``state``; single use"""
    client = get_redis_client()
    key = _state_key(state)
    value = client.get(key)
    if not value:
        security_logger.warning("OAuth callback with unknown or expired state")
        return None
    client.delete(key)
    return int(value)


async def exchange_code(db: Session, http: httpx.AsyncClient, user_id: int, code: str) -> Dict[str, Any]:
    """Trade an authorization code for tokens"""
    try:
        response = await http.post(
            settings.GOOGLE_TOKEN_URL,
            data={
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": settings.GOOGLE_REDIRECT_URI,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.HTTPError as e:
        record_usage(db, user_id, "oauth.token", "POST", 0, "network_error", pool="oauth")
        raise RemoteTransient(f"Token endpoint unreachable: {e}")

    record_usage(db, user_id, "oauth.token", "POST", 0,
                 "success" if response.status_code == 200 else "error",
                 pool="oauth", status_code=response.status_code)
    if response.status_code != 200:
        try:
            payload = response.json()
            message = payload.get("error_description") or payload.get("error") or response.text[:200]
        except ValueError:
            message = response.text[:200]
        raise RemoteError(f"Authorization code exchange failed: {message}", status_code=response.status_code)

    tokens = response.json()
    if not tokens.get("access_token"):
        raise RemoteError("Authorization code exchange returned no access token")
    return tokens


async def connect_channel(
    db: Session,
    http: httpx.AsyncClient,
    gateway: YouTubeGateway,
    vault: CredentialVault,
    user_id: int,
    code: str,
) -> Tuple[Channel, ChannelSync]:
    """Create or reconnect the channel behind an authorization code

    A brand-new or previously disconnected channel is checked against the
    plan's channel limit inside the same transaction that writes it.
    Reconnecting resets the token status to valid.
    """
    tokens = await exchange_code(db, http, user_id, code)
    info = await gateway.fetch_own_channel(db, tokens["access_token"], user_id)
    youtube_channel_id = info["id"]

    try:
        channel = db.query(Channel).filter(Channel.youtube_channel_id == youtube_channel_id).first()
        if channel is not None and channel.user_id != user_id:
            raise ValidationError("This YouTube channel is already connected to another account")

        if channel is None or channel.token_status == "revoked":
            enforce_channel_limit(user_id, db)
        if channel is None:
            channel = Channel(user_id=user_id, youtube_channel_id=youtube_channel_id)
            db.add(channel)

        apply_channel_info(channel, info)
        scope = tokens.get("scope")
        vault.store_tokens(
            db, channel,
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_in=tokens.get("expires_in"),
            scopes=scope.split() if scope else None,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(channel)
    youtube_logger.info(f"Connected channel {channel.id} ({youtube_channel_id}) for user {user_id}")
    return channel, ChannelSync(user_id=user_id, channel_id=channel.id)


async def disconnect_channel(db: Session, vault: CredentialVault, channel: Channel) -> Dict[str, Any]:
    revoked_remote = await vault.revoke(db, channel)
    youtube_logger.info(f"Disconnected channel {channel.id} (remote revoke ok={revoked_remote})")
    return {"channel_id": channel.id, "token_status": channel.token_status, "revoked_remote": revoked_remote}
