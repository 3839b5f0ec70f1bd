# backend/services/spotify_service.py
import asyncio, os
from collections import Counter
from datetime import timedelta
from typing import List, Optional, Sequence
import httpx
from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from models import User, as_utc, utcnow

SPOTIFY_API_BASE = "https://api.spotify.com/v1"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_EMBED_URL = "https://open.spotify.com/embed/track/{track_id}"
TIME_RANGES = ("short_term", "medium_term", "long_term")
TOP_ITEMS_LIMIT = 50

class SpotifyAPIError(Exception):
    def __init__(self, upstream_status: int, message: str):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.message = message

# --- Catalog schemas (validated at the boundary, unknown fields dropped) ---
class SpotifyImage(BaseModel):
    model_config = ConfigDict(extra="ignore")
    url: str
    height: Optional[int] = None
    width: Optional[int] = None

class SpotifyArtist(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str
    genres: List[str] = []
    images: List[SpotifyImage] = []
    popularity: Optional[int] = None

class SpotifyAlbum(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: Optional[str] = None
    name: str
    images: List[SpotifyImage] = []

class SpotifyTrack(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str
    preview_url: Optional[str] = None
    artists: List[SpotifyArtist] = []
    album: Optional[SpotifyAlbum] = None
    popularity: Optional[int] = None

    @property
    def artist_names(self) -> str:
        return ", ".join(a.name for a in self.artists)

class SpotifyClient:
    """Thin async wrapper over the Spotify Web API for one user's access token."""

    def __init__(self, access_token: str, http_client: httpx.AsyncClient):
        self.access_token = access_token
        self.http = http_client

    async def _request(self, endpoint: str, params: Optional[dict] = None) -> dict:
        response = await self.http.get(
            f"{SPOTIFY_API_BASE}{endpoint}", params=params,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )
        if response.is_error:
            print(f"ERROR Spotify API {endpoint}: {response.status_code} {response.text}")
            raise SpotifyAPIError(response.status_code, f"Spotify API request failed: {response.reason_phrase}")
        return response.json()

    @staticmethod
    def _parse(model, items: list) -> list:
        try:
            return [model.model_validate(item) for item in items if item]
        except ValidationError as e:
            raise SpotifyAPIError(502, f"Unexpected response shape from Spotify: {e.error_count()} invalid field(s)")

    async def get_top_tracks(self, time_range: str = "medium_term", limit: int = TOP_ITEMS_LIMIT) -> List[SpotifyTrack]:
        data = await self._request("/me/top/tracks", {"time_range": time_range, "limit": limit})
        return self._parse(SpotifyTrack, data.get("items", []))

    async def get_top_artists(self, time_range: str = "medium_term", limit: int = TOP_ITEMS_LIMIT) -> List[SpotifyArtist]:
        data = await self._request("/me/top/artists", {"time_range": time_range, "limit": limit})
        return self._parse(SpotifyArtist, data.get("items", []))

    async def get_track(self, track_id: str) -> SpotifyTrack:
        data = await self._request(f"/tracks/{track_id}")
        return self._parse(SpotifyTrack, [data])[0]

    async def search_tracks(self, query: str, limit: int = 2) -> List[SpotifyTrack]:
        data = await self._request("/search", {"q": query, "type": "track", "limit": limit})
        return self._parse(SpotifyTrack, data.get("tracks", {}).get("items", []))

    async def get_embed_page(self, track_id: str) -> Optional[str]:
        """Public embed page HTML for a track; None when Spotify has no page for it."""
        response = await self.http.get(SPOTIFY_EMBED_URL.format(track_id=track_id))
        if response.is_error:
            return None
        return response.text

async def refresh_access_token_if_needed(session: AsyncSession, user: User, http_client: httpx.AsyncClient) -> User:
    """Exchanges the stored refresh token when the access token is missing or about to expire."""
    if user.oauth_access_token and user.oauth_token_expiry and as_utc(user.oauth_token_expiry) > utcnow() + timedelta(seconds=30):
        return user
    if not user.oauth_refresh_token:
        raise HTTPException(status_code=401, detail="Spotify session expired, please sign in again")
    response = await http_client.post(
        SPOTIFY_TOKEN_URL,
        data={"grant_type": "refresh_token", "refresh_token": user.oauth_refresh_token},
        auth=(os.getenv("SPOTIFY_CLIENT_ID") or "", os.getenv("SPOTIFY_CLIENT_SECRET") or ""),
    )
    if response.is_error:
        print(f"ERROR refreshing Spotify token for user {user.id}: {response.status_code}")
        if response.status_code in (400, 401):
            # revoked or invalid refresh token
            raise HTTPException(status_code=401, detail="Spotify session expired, please sign in again")
        raise SpotifyAPIError(response.status_code, "Failed to refresh Spotify access token")
    token = response.json()
    user.oauth_access_token = token["access_token"]
    if token.get("refresh_token"):
        user.oauth_refresh_token = token["refresh_token"]
    user.oauth_token_expiry = utcnow() + timedelta(seconds=token.get("expires_in", 3600))
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user

def count_genres(artists: Sequence[SpotifyArtist]) -> List[dict]:
    counts = Counter(genre for artist in artists for genre in artist.genres)
    # most_common keeps first-seen order among equal counts
    return [{"name": name, "count": count} for name, count in counts.most_common()]

async def fetch_top_items(client: SpotifyClient, time_range: str = "medium_term") -> dict:
    top_tracks, top_artists = await asyncio.gather(
        client.get_top_tracks(time_range), client.get_top_artists(time_range)
    )
    return {
        "tracks": [t.model_dump() for t in top_tracks],
        "artists": [a.model_dump() for a in top_artists],
        "genres": count_genres(top_artists),
    }

async def fetch_quiz_pool(client: SpotifyClient, time_ranges: Sequence[str] = TIME_RANGES) -> List[SpotifyTrack]:
    """Top tracks across the given ranges, de-duplicated by id (first occurrence wins)."""
    per_range = await asyncio.gather(*(client.get_top_tracks(r) for r in time_ranges))
    seen, pool = set(), []
    for tracks in per_range:
        for track in tracks:
            if track.id not in seen:
                seen.add(track.id)
                pool.append(track)
    return pool
