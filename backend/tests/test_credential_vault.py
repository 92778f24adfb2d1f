"""Credential vault tests: token access, refresh single-flight, revocation"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from descsync.core.errors import (
    NotConnected, RemoteTransient, RevokedOrExpiredRefresh, ScopeInsufficient, TokenRefreshFailed
)
from descsync.models.usage_log import UsageLog
from descsync.services.youtube_gateway import WRITE_SCOPES
from descsync.utils.encryption import decrypt, encrypt


@pytest.mark.critical
class TestGetValidToken:

    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_refresh(self, vault, test_channel, db_session, google):
        token = await vault.get_valid_token(db_session, test_channel)
        assert token == "stored-access-token"
        assert google.token_calls == 0

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_and_persisted(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, expires_in=-60)

        token = await vault.get_valid_token(db_session, channel)

        assert token == "refreshed-access-token"
        assert google.token_calls == 1
        db_session.refresh(channel)
        assert decrypt(channel.access_token) == "refreshed-access-token"
        assert channel.token_expires_at is not None
        # Refresh token was not rotated, the stored one stays
        assert decrypt(channel.refresh_token) == "stored-refresh-token"

    @pytest.mark.asyncio
    async def test_token_inside_safety_margin_is_refreshed(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, expires_in=60)
        await vault.get_valid_token(db_session, channel)
        assert google.token_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, expires_in=-60)

        tokens = await asyncio.gather(*[vault.get_valid_token(db_session, channel) for _ in range(8)])

        assert tokens == ["refreshed-access-token"] * 8
        assert google.token_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_refresh_failure(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, expires_in=-60)
        google.token_response = (400, {"error": "invalid_grant", "error_description": "Token has been expired or revoked."})

        results = await asyncio.gather(
            *[vault.get_valid_token(db_session, channel) for _ in range(4)],
            return_exceptions=True,
        )

        assert google.token_calls == 1
        assert all(isinstance(result, RevokedOrExpiredRefresh) for result in results)

    @pytest.mark.asyncio
    async def test_invalid_grant_marks_token_invalid(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, expires_in=-60)
        google.token_response = (400, {"error": "invalid_grant"})

        with pytest.raises(RevokedOrExpiredRefresh):
            await vault.get_valid_token(db_session, channel)

        db_session.refresh(channel)
        assert channel.token_status == "invalid"

        # Not retried silently afterwards
        with pytest.raises(RevokedOrExpiredRefresh):
            await vault.get_valid_token(db_session, channel)
        assert google.token_calls == 1

    @pytest.mark.asyncio
    async def test_other_client_error_raises_token_refresh_failed(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, expires_in=-60)
        google.token_response = (401, {"error": "invalid_client"})

        with pytest.raises(TokenRefreshFailed) as exc_info:
            await vault.get_valid_token(db_session, channel)

        assert not isinstance(exc_info.value, RevokedOrExpiredRefresh)
        db_session.refresh(channel)
        assert channel.token_status == "invalid"

    @pytest.mark.asyncio
    async def test_token_endpoint_outage_is_transient(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, expires_in=-60)
        google.token_response = (503, {"error": "backend_error"})

        with pytest.raises(RemoteTransient):
            await vault.get_valid_token(db_session, channel)

        db_session.refresh(channel)
        assert channel.token_status == "valid"

    @pytest.mark.asyncio
    async def test_refresh_attempts_are_logged_as_usage(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, expires_in=-60)
        await vault.get_valid_token(db_session, channel)

        entry = db_session.query(UsageLog).filter(UsageLog.endpoint == "oauth.token").one()
        assert entry.pool == "oauth"
        assert entry.quota_units == 0
        assert entry.status == "success"

    @pytest.mark.asyncio
    async def test_channel_without_tokens_is_not_connected(self, vault, make_channel, test_user, db_session):
        channel = make_channel(test_user, access_token=None, refresh_token=None)
        with pytest.raises(NotConnected):
            await vault.get_valid_token(db_session, channel)

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_requires_reconnect(self, vault, make_channel, test_user, db_session):
        channel = make_channel(test_user, expires_in=-60, refresh_token=None)
        with pytest.raises(RevokedOrExpiredRefresh):
            await vault.get_valid_token(db_session, channel)

    @pytest.mark.asyncio
    async def test_missing_write_scope_is_reported(self, vault, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, scopes=["https://www.googleapis.com/auth/youtube.readonly"])

        with pytest.raises(ScopeInsufficient):
            await vault.get_valid_token(db_session, channel, WRITE_SCOPES)
        assert google.token_calls == 0

    @pytest.mark.asyncio
    async def test_waits_for_refresh_held_by_another_worker(self, vault, make_channel, test_user, db_session, google, mock_redis):
        channel = make_channel(test_user, expires_in=-60)
        lock_key = f"channel_token_refresh:{channel.id}"
        mock_redis.set(lock_key, "1", ex=10)

        async def peer_refresh():
            await asyncio.sleep(0.3)
            channel.access_token = encrypt("peer-access-token")
            channel.token_expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
            db_session.commit()
            mock_redis.delete(lock_key)

        peer = asyncio.create_task(peer_refresh())
        token = await vault.get_valid_token(db_session, channel)
        await peer

        assert token == "peer-access-token"
        assert google.token_calls == 0


@pytest.mark.high
class TestRevoke:

    @pytest.mark.asyncio
    async def test_revoke_clears_credentials(self, vault, test_channel, db_session, google):
        revoked = await vault.revoke(db_session, test_channel)

        assert revoked is True
        assert google.revoke_calls == 1
        db_session.refresh(test_channel)
        assert test_channel.token_status == "revoked"
        assert test_channel.access_token is None
        assert test_channel.refresh_token is None

    @pytest.mark.asyncio
    async def test_revoke_failure_still_clears_local_credentials(self, vault, test_channel, db_session, google):
        google.fail("POST /revoke", 400, {"error": "invalid_token"})

        revoked = await vault.revoke(db_session, test_channel)

        assert revoked is False
        db_session.refresh(test_channel)
        assert test_channel.token_status == "revoked"

    @pytest.mark.asyncio
    async def test_revoked_channel_requires_reconnect(self, vault, test_channel, db_session):
        await vault.revoke(db_session, test_channel)
        with pytest.raises(RevokedOrExpiredRefresh):
            await vault.get_valid_token(db_session, test_channel)
