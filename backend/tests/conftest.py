"""Shared pytest fixtures for test suite"""
import json
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Generator
from unittest.mock import patch

# Settings are read at import time
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from descsync.api.deps import get_event_queue, get_gateway, get_http_client, get_vault
from descsync.core.config import YOUTUBE_SCOPES
from descsync.db import redis as redis_module
from descsync.db.session import get_db
from descsync.main import app
from descsync.models import Base
from descsync.models.channel import Channel
from descsync.models.container import Container
from descsync.models.subscription import Subscription
from descsync.models.template import Template
from descsync.models.user import User
from descsync.models.video import Video
from descsync.services.credential_vault import CredentialVault
from descsync.services.event_bus import InMemoryEventQueue
from descsync.services.youtube_gateway import YouTubeGateway
from descsync.utils.encryption import encrypt


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeGoogle:
    """In-memory stand-in for the Google OAuth and YouTube endpoints

    ``videos`` maps YouTube video id -> snippet. ``failures`` maps an endpoint
    key such as ``"GET /videos"`` to a list of (status, body) responses that
    are served before falling back to normal behavior.
    """

    def __init__(self, channel_id: str = "UCtestchannel0001"):
        self.channel_id = channel_id
        self.channel_title = "Test Channel"
        self.videos = {}
        self.failures = {}
        self.network_down = set()
        self.requests = []
        self.token_calls = 0
        self.revoke_calls = 0
        self.token_response = (200, {
            "access_token": "refreshed-access-token",
            "expires_in": 3600,
            "scope": " ".join(YOUTUBE_SCOPES),
        })
        self.page_size = 50

    def add_video(self, video_id: str, title: str = "A video", description: str = "", **extra):
        self.videos[video_id] = {"title": title, "description": description, "categoryId": "27", **extra}

    def fail(self, key: str, status: int, body=None):
        self.failures.setdefault(key, []).append((status, body if body is not None else {}))

    def calls(self, key: str) -> int:
        return sum(1 for request in self.requests if request == key)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        for prefix in ("/youtube/v3", "/v2"):
            if path.startswith(prefix):
                path = path[len(prefix):]
        key = f"{request.method} {path}"
        self.requests.append(key)

        if key in self.network_down:
            raise httpx.ConnectError("connection refused", request=request)
        if self.failures.get(key):
            status, body = self.failures[key].pop(0)
            return httpx.Response(status, json=body)

        if key == "POST /token":
            self.token_calls += 1
            status, body = self.token_response
            return httpx.Response(status, json=body)
        if key == "POST /revoke":
            self.revoke_calls += 1
            return httpx.Response(200, json={})
        if key == "GET /channels":
            return httpx.Response(200, json={"items": [self._channel_item()]})
        if key == "GET /playlistItems":
            return httpx.Response(200, json=self._playlist_page(request.url.params.get("pageToken")))
        if key == "GET /videos":
            ids = request.url.params.get("id", "").split(",")
            items = [{"id": vid, "snippet": dict(self.videos[vid])} for vid in ids if vid in self.videos]
            return httpx.Response(200, json={"items": items})
        if key == "PUT /videos":
            body = json.loads(request.content)
            self.videos[body["id"]] = dict(body["snippet"])
            return httpx.Response(200, json=body)
        if key == "DELETE /videos":
            self.videos.pop(request.url.params.get("id"), None)
            return httpx.Response(204)
        if key == "GET /search":
            return httpx.Response(200, json={"items": [{"id": {"videoId": vid}} for vid in self.videos]})
        if key == "GET /reports":
            return httpx.Response(200, json={"columnHeaders": [{"name": "views"}], "rows": [[42]]})
        return httpx.Response(404, json={"error": {"code": 404, "message": f"No route for {key}"}})

    def _channel_item(self):
        return {
            "id": self.channel_id,
            "snippet": {
                "title": self.channel_title,
                "thumbnails": {"default": {"url": "https://img.example/default.jpg"}},
            },
            "statistics": {"subscriberCount": "1200"},
            "contentDetails": {"relatedPlaylists": {"uploads": "UU" + self.channel_id[2:]}},
        }

    def _playlist_page(self, page_token):
        ids = list(self.videos)
        start = int(page_token or 0)
        page = ids[start:start + self.page_size]
        data = {"items": [{"contentDetails": {"videoId": vid}} for vid in page]}
        if start + self.page_size < len(ids):
            data["nextPageToken"] = str(start + self.page_size)
        return data


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture(scope="function")
def http_client(google: FakeGoogle) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(google.handler))


@pytest.fixture(scope="function")
def vault(http_client) -> CredentialVault:
    return CredentialVault(http_client)


@pytest.fixture(scope="function")
def gateway(http_client, vault) -> YouTubeGateway:
    return YouTubeGateway(http_client, vault)


@pytest.fixture(scope="function")
def event_queue() -> InMemoryEventQueue:
    return InMemoryEventQueue()


@pytest.fixture(scope="function")
def make_user(db_session: Session):
    def _make_user(email: str = "creator@example.com", plan_type: str = None, status: str = "active") -> User:
        user = User(email=email)
        db_session.add(user)
        db_session.flush()
        if plan_type:
            db_session.add(Subscription(user_id=user.id, plan_type=plan_type, status=status))
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make_user


@pytest.fixture(scope="function")
def test_user(make_user) -> User:
    return make_user()


@pytest.fixture(scope="function")
def make_channel(db_session: Session, google: FakeGoogle):
    def _make_channel(
        user: User,
        youtube_channel_id: str = None,
        expires_in: int = 3600,
        access_token: str = "stored-access-token",
        refresh_token: str = "stored-refresh-token",
        scopes=None,
    ) -> Channel:
        channel = Channel(
            user_id=user.id,
            youtube_channel_id=youtube_channel_id or google.channel_id,
            title="Test Channel",
            access_token=encrypt(access_token) if access_token else None,
            refresh_token=encrypt(refresh_token) if refresh_token else None,
            token_expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            granted_scopes=list(YOUTUBE_SCOPES) if scopes is None else scopes,
            token_status="valid",
            sync_status="idle",
        )
        db_session.add(channel)
        db_session.commit()
        db_session.refresh(channel)
        return channel
    return _make_channel


@pytest.fixture(scope="function")
def test_channel(make_channel, test_user) -> Channel:
    return make_channel(test_user)


@pytest.fixture(scope="function")
def make_video(db_session: Session, google: FakeGoogle):
    def _make_video(channel: Channel, youtube_video_id: str, description: str = "", container: Container = None) -> Video:
        google.add_video(youtube_video_id, title=f"Video {youtube_video_id}", description=description)
        video = Video(
            channel_id=channel.id,
            youtube_video_id=youtube_video_id,
            title=f"Video {youtube_video_id}",
            current_description=description,
            container_id=container.id if container else None,
        )
        db_session.add(video)
        db_session.commit()
        db_session.refresh(video)
        return video
    return _make_video


@pytest.fixture(scope="function")
def make_template(db_session: Session):
    def _make_template(user: User, content: str, name: str = "Template") -> Template:
        template = Template(user_id=user.id, name=name, content=content)
        db_session.add(template)
        db_session.commit()
        db_session.refresh(template)
        return template
    return _make_template


@pytest.fixture(scope="function")
def make_container(db_session: Session):
    def _make_container(user: User, templates, name: str = "Container", separator: str = "\n\n") -> Container:
        container = Container(
            user_id=user.id,
            name=name,
            template_order=[template.id for template in templates],
            separator=separator,
        )
        db_session.add(container)
        db_session.commit()
        db_session.refresh(container)
        return container
    return _make_container


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, http_client, vault, gateway, event_queue) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and fake Google"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_vault] = lambda: vault
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_event_queue] = lambda: event_queue

    try:
        # No context manager: the lifespan would start background workers
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: User, mock_redis) -> TestClient:
    """Client carrying a session cookie for test_user"""
    session_id = secrets.token_urlsafe(16)
    mock_redis.setex(f"session:{session_id}", 2592000, str(test_user.id))
    client.cookies.set("session_id", session_id)
    return client


@pytest.fixture(scope="function")
def session_factory(db_session: Session):
    """Session factory for workers; shares the in-memory database with db_session"""
    return TestSessionLocal
