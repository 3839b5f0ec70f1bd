# backend/tests/conftest.py
import os, random
from datetime import timedelta

os.environ.setdefault("SPOTIFY_CLIENT_ID", "test-client-id")
os.environ.setdefault("SPOTIFY_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CLIENT_URL", "http://localhost:3000")

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from auth import create_access_token
from database import get_session
from main import app, get_http_client, get_rng
from models import User, utcnow
from services.spotify_service import TIME_RANGES

def make_track(i, preview=True, artist=None, name=None):
    return {
        "id": f"track{i}",
        "name": name or f"Song {i}",
        "preview_url": f"https://p.scdn.co/mp3-preview/{i}" if preview else None,
        "artists": [{"id": f"artist{i}", "name": artist or f"Artist {i}"}],
        "album": {"id": f"album{i}", "name": f"Album {i}", "images": [{"url": f"https://i.scdn.co/image/{i}"}]},
        "popularity": 50,
        "explicit": False,
    }

def make_artist(i, genres=()):
    return {"id": f"artist{i}", "name": f"Artist {i}", "genres": list(genres), "images": [], "followers": {"total": 1}}

class FakeSpotify:
    """In-memory stand-in for the Spotify Web API, token endpoint and embed pages."""

    def __init__(self):
        self.top_tracks = {r: [] for r in TIME_RANGES}
        self.top_artists = {r: [] for r in TIME_RANGES}
        self.tracks = {}
        self.search_results = []
        self.embed_pages = {}
        self.token_response = {"access_token": "refreshed-token", "expires_in": 3600}
        self.token_status = 200
        self.fail_with = None
        self.calls = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"error": {"status": self.fail_with, "message": "boom"}})
        host, path = request.url.host, request.url.path
        if host == "accounts.spotify.com":
            return httpx.Response(self.token_status, json=self.token_response)
        if host == "open.spotify.com":
            html = self.embed_pages.get(path.rsplit("/", 1)[-1])
            return httpx.Response(200, text=html) if html else httpx.Response(404, text="not found")
        if path == "/v1/me/top/tracks":
            return httpx.Response(200, json={"items": self.top_tracks[request.url.params["time_range"]]})
        if path == "/v1/me/top/artists":
            return httpx.Response(200, json={"items": self.top_artists[request.url.params["time_range"]]})
        if path == "/v1/search":
            return httpx.Response(200, json={"tracks": {"items": self.search_results}})
        if path.startswith("/v1/tracks/"):
            track = self.tracks.get(path.rsplit("/", 1)[-1])
            if track:
                return httpx.Response(200, json=track)
            return httpx.Response(404, json={"error": {"status": 404, "message": "Non existing id"}})
        return httpx.Response(404, json={"error": {"status": 404, "message": "Service not found"}})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def api_calls(self):
        return [c for c in self.calls if c.url.host == "api.spotify.com"]

@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)

@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session

@pytest.fixture
async def user(session_maker):
    async with session_maker() as session:
        db_user = User(
            spotifyId="spotify-user-1", email="listener@example.com", displayName="Listener",
            oauth_access_token="access-token", oauth_refresh_token="refresh-token",
            oauth_token_expiry=utcnow() + timedelta(hours=1),
        )
        session.add(db_user)
        await session.commit()
        await session.refresh(db_user)
        return db_user

@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}

@pytest.fixture
def fake_spotify():
    return FakeSpotify()

@pytest.fixture
async def http_client(fake_spotify):
    async with httpx.AsyncClient(transport=fake_spotify.transport()) as client:
        yield client

@pytest.fixture
async def api(session_maker, fake_spotify):
    async def override_session():
        async with session_maker() as session:
            yield session

    async def override_http_client():
        async with httpx.AsyncClient(transport=fake_spotify.transport()) as client:
            yield client

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_http_client] = override_http_client
    app.dependency_overrides[get_rng] = lambda: random.Random(1234)
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
