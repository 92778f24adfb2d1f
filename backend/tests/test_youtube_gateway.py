"""Quota-aware gateway tests: usage accounting and remote error mapping"""
import httpx
import pytest

from descsync.core.errors import (
    RemoteError, RemoteNotFound, RemoteTransient, ScopeInsufficient
)
from descsync.models.usage_log import UsageLog
from descsync.services.youtube_gateway import QUOTA_COSTS, map_remote_error


def _response(status, body=None, headers=None):
    return httpx.Response(status, json=body if body is not None else {}, headers=headers)


def _google_error(status, reason, message="Remote said no"):
    return {"error": {"code": status, "message": message, "errors": [{"reason": reason, "message": message}]}}


@pytest.mark.critical
class TestErrorMapping:

    def test_insufficient_scope_reason(self):
        error = map_remote_error(_response(403, _google_error(403, "insufficientPermissions")), "videos.update")
        assert isinstance(error, ScopeInsufficient)

    def test_insufficient_scope_in_www_authenticate(self):
        response = _response(401, {}, headers={"WWW-Authenticate": 'Bearer error="insufficient_scope"'})
        assert isinstance(map_remote_error(response, "videos.update"), ScopeInsufficient)

    def test_not_found(self):
        assert isinstance(map_remote_error(_response(404, _google_error(404, "videoNotFound")), "videos.list"), RemoteNotFound)

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_rate_limit_and_server_errors_are_transient(self, status):
        error = map_remote_error(_response(status, _google_error(status, "backendError")), "videos.list")
        assert isinstance(error, RemoteTransient)
        assert error.retryable is True

    def test_quota_exceeded_is_transient(self):
        error = map_remote_error(_response(403, _google_error(403, "quotaExceeded")), "search.list")
        assert isinstance(error, RemoteTransient)

    def test_other_errors_keep_remote_message(self):
        error = map_remote_error(
            _response(400, _google_error(400, "invalidDescription", "Description exceeds 5000 bytes")),
            "videos.update",
        )
        assert isinstance(error, RemoteError)
        assert error.message == "Description exceeds 5000 bytes"
        assert error.status_code == 400

    def test_non_json_body(self):
        error = map_remote_error(httpx.Response(400, text="Bad Request"), "videos.list")
        assert isinstance(error, RemoteError)
        assert error.message == "Bad Request"


@pytest.mark.critical
class TestUsageAccounting:

    @pytest.mark.asyncio
    async def test_success_charges_declared_cost(self, gateway, test_channel, db_session):
        await gateway.search_channel(db_session, test_channel, "tutorial")

        entry = db_session.query(UsageLog).one()
        assert entry.endpoint == "search.list"
        assert entry.quota_units == QUOTA_COSTS["search.list"] == 100
        assert entry.status == "success"
        assert entry.channel_id == test_channel.id

    @pytest.mark.asyncio
    async def test_failed_attempt_is_still_charged(self, gateway, test_channel, db_session, google):
        google.fail("GET /search", 500, _google_error(500, "backendError"))

        with pytest.raises(RemoteTransient):
            await gateway.search_channel(db_session, test_channel, "tutorial")

        entry = db_session.query(UsageLog).one()
        assert entry.quota_units == 100
        assert entry.status == "error"
        assert entry.status_code == 500

    @pytest.mark.asyncio
    async def test_network_error_is_transient_and_logged(self, gateway, test_channel, db_session, google):
        google.network_down.add("GET /videos")

        with pytest.raises(RemoteTransient):
            await gateway.get_videos(db_session, test_channel, ["abc"])

        entry = db_session.query(UsageLog).one()
        assert entry.status == "network_error"
        assert entry.quota_units == 1

    @pytest.mark.asyncio
    async def test_gateway_never_retries(self, gateway, test_channel, db_session, google):
        google.fail("GET /channels", 503, _google_error(503, "backendError"))

        with pytest.raises(RemoteTransient):
            await gateway.get_channel(db_session, test_channel)
        assert google.calls("GET /channels") == 1

    @pytest.mark.asyncio
    async def test_analytics_uses_separate_pool(self, gateway, test_channel, db_session):
        report = await gateway.video_analytics(db_session, test_channel, "abc", "2026-01-01", "2026-01-31")

        assert report["rows"] == [[42]]
        entry = db_session.query(UsageLog).one()
        assert entry.pool == "analytics"
        assert entry.endpoint == "reports.query"

    @pytest.mark.asyncio
    async def test_scope_failure_happens_before_any_call(self, gateway, make_channel, test_user, db_session, google):
        channel = make_channel(test_user, scopes=["https://www.googleapis.com/auth/youtube.readonly"])

        with pytest.raises(ScopeInsufficient):
            await gateway.delete_video(db_session, channel, "abc")
        assert google.requests == []
        assert db_session.query(UsageLog).count() == 0


@pytest.mark.high
class TestTypedOperations:

    @pytest.mark.asyncio
    async def test_update_description_keeps_rest_of_snippet(self, gateway, test_channel, db_session, google):
        google.add_video("abc", title="Original title", description="old", tags=["python"], defaultLanguage="en")

        await gateway.update_description(db_session, test_channel, "abc", "new description")

        snippet = google.videos["abc"]
        assert snippet["description"] == "new description"
        assert snippet["title"] == "Original title"
        assert snippet["categoryId"] == "27"
        assert snippet["tags"] == ["python"]
        assert snippet["defaultLanguage"] == "en"
        # One read plus one write
        assert db_session.query(UsageLog).count() == 2

    @pytest.mark.asyncio
    async def test_update_description_for_missing_video(self, gateway, test_channel, db_session):
        with pytest.raises(RemoteNotFound):
            await gateway.update_description(db_session, test_channel, "missing", "text")

    @pytest.mark.asyncio
    async def test_list_upload_video_ids_follows_pages(self, gateway, test_channel, db_session, google):
        google.page_size = 2
        for index in range(5):
            google.add_video(f"vid{index}")

        ids = await gateway.list_upload_video_ids(db_session, test_channel, "UUtestchannel0001")

        assert ids == [f"vid{index}" for index in range(5)]
        assert google.calls("GET /playlistItems") == 3

    @pytest.mark.asyncio
    async def test_get_videos_batches_ids(self, gateway, test_channel, db_session, google):
        ids = [f"vid{index}" for index in range(120)]
        for video_id in ids:
            google.add_video(video_id)

        items = await gateway.get_videos(db_session, test_channel, ids)

        assert len(items) == 120
        assert google.calls("GET /videos") == 3
