"""Sync orchestrator tests"""
from datetime import datetime, timedelta, timezone

import pytest

from descsync.core.errors import AlreadySyncing, RemoteTransient, ResourceNotFound
from descsync.models.description_history import DescriptionHistory
from descsync.models.video import Video
from descsync.services.sync_service import claim_sync, run_channel_sync, uploads_playlist_id


def _videos(db_session, channel):
    return {video.youtube_video_id: video for video in db_session.query(Video).filter(Video.channel_id == channel.id).all()}


@pytest.mark.critical
class TestSyncGuard:

    def test_claim_moves_channel_to_syncing(self, db_session, test_channel):
        claim_sync(db_session, test_channel.id)
        db_session.refresh(test_channel)
        assert test_channel.sync_status == "syncing"
        assert test_channel.sync_started_at is not None

    def test_second_claim_is_rejected(self, db_session, test_channel):
        claim_sync(db_session, test_channel.id)
        with pytest.raises(AlreadySyncing):
            claim_sync(db_session, test_channel.id)

    @pytest.mark.asyncio
    async def test_rejected_sync_keeps_last_synced_at(self, db_session, gateway, test_user, test_channel):
        last_synced = datetime(2026, 1, 1, tzinfo=timezone.utc)
        test_channel.last_synced_at = last_synced
        test_channel.sync_status = "syncing"
        test_channel.sync_started_at = datetime.now(timezone.utc)
        db_session.commit()

        with pytest.raises(AlreadySyncing):
            await run_channel_sync(db_session, gateway, test_channel.id, test_user.id)

        db_session.refresh(test_channel)
        assert test_channel.sync_status == "syncing"
        assert test_channel.last_synced_at.replace(tzinfo=timezone.utc) == last_synced

    def test_stale_claim_can_be_taken_over(self, db_session, test_channel):
        test_channel.sync_status = "syncing"
        test_channel.sync_started_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db_session.commit()

        claim_sync(db_session, test_channel.id)

    def test_channel_in_error_can_be_claimed(self, db_session, test_channel):
        test_channel.sync_status = "error"
        db_session.commit()

        claim_sync(db_session, test_channel.id)

    @pytest.mark.asyncio
    async def test_foreign_channel_is_not_found(self, db_session, gateway, make_user, test_channel):
        stranger = make_user("stranger@example.com")
        with pytest.raises(ResourceNotFound):
            await run_channel_sync(db_session, gateway, test_channel.id, stranger.id)


@pytest.mark.critical
class TestReconcile:

    @pytest.mark.asyncio
    async def test_discovers_new_videos_with_first_history_version(self, db_session, gateway, google, test_user, test_channel):
        google.add_video("new1", title="First", description="Remote description")
        google.add_video("new2", title="Second")

        result = await run_channel_sync(db_session, gateway, test_channel.id, test_user.id)

        assert result.discovered == 2
        videos = _videos(db_session, test_channel)
        assert videos["new1"].title == "First"
        assert videos["new1"].current_description == "Remote description"
        [history] = db_session.query(DescriptionHistory).filter(DescriptionHistory.video_id == videos["new1"].id).all()
        assert history.version_number == 1
        assert history.description == "Remote description"

    @pytest.mark.asyncio
    async def test_success_returns_to_idle_and_stamps_last_synced(self, db_session, gateway, test_user, test_channel):
        await run_channel_sync(db_session, gateway, test_channel.id, test_user.id)

        db_session.refresh(test_channel)
        assert test_channel.sync_status == "idle"
        assert test_channel.sync_started_at is None
        assert test_channel.last_synced_at is not None
        assert test_channel.subscriber_count == 1200

    @pytest.mark.asyncio
    async def test_missing_videos_are_marked_and_restored(self, db_session, gateway, google, test_user, test_channel, make_video):
        kept = make_video(test_channel, "kept")
        gone = make_video(test_channel, "gone")
        google.videos.pop("gone")

        result = await run_channel_sync(db_session, gateway, test_channel.id, test_user.id)

        assert result.removed == 1
        db_session.refresh(gone)
        db_session.refresh(kept)
        assert gone.removed_at is not None
        assert kept.removed_at is None

        google.add_video("gone")
        result = await run_channel_sync(db_session, gateway, test_channel.id, test_user.id)

        assert result.restored == 1
        db_session.refresh(gone)
        assert gone.removed_at is None

    @pytest.mark.asyncio
    async def test_restored_assigned_video_is_reported(
        self, db_session, gateway, google, test_user, test_channel, make_template, make_container, make_video
    ):
        container = make_container(test_user, [make_template(test_user, "Body")])
        video = make_video(test_channel, "back", container=container)
        video.removed_at = datetime.now(timezone.utc)
        db_session.commit()

        result = await run_channel_sync(db_session, gateway, test_channel.id, test_user.id)

        assert result.restored_assigned_ids == [video.id]

    @pytest.mark.asyncio
    async def test_channel_info_failure_is_reported_not_fatal(self, db_session, gateway, google, test_user, test_channel):
        google.fail("GET /channels", 500, {"error": {"code": 500, "message": "Backend Error"}})
        google.add_video("vid")

        result = await run_channel_sync(db_session, gateway, test_channel.id, test_user.id)

        assert result.channel_info_error.startswith("remote_transient")
        assert result.discovered == 1
        db_session.refresh(test_channel)
        assert test_channel.sync_status == "idle"

    @pytest.mark.asyncio
    async def test_failure_moves_channel_to_error(self, db_session, gateway, google, test_user, test_channel):
        last_synced = datetime(2026, 1, 1, tzinfo=timezone.utc)
        test_channel.last_synced_at = last_synced
        db_session.commit()
        google.fail("GET /playlistItems", 503, {"error": {"code": 503, "message": "Backend Error"}})

        with pytest.raises(RemoteTransient):
            await run_channel_sync(db_session, gateway, test_channel.id, test_user.id)

        db_session.refresh(test_channel)
        assert test_channel.sync_status == "error"
        assert "Backend Error" in test_channel.sync_error
        assert test_channel.last_synced_at.replace(tzinfo=timezone.utc) == last_synced


@pytest.mark.medium
def test_uploads_playlist_falls_back_to_derived_id(test_channel):
    assert uploads_playlist_id(test_channel, None) == "UUtestchannel0001"
    info = {"contentDetails": {"relatedPlaylists": {"uploads": "UUcustom"}}}
    assert uploads_playlist_id(test_channel, info) == "UUcustom"
