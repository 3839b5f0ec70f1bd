# backend/services/preview_service.py
import re
from typing import List, Optional
from bs4 import BeautifulSoup
from pydantic import BaseModel
from services.spotify_service import SpotifyClient, SpotifyTrack

AUDIO_PREVIEW_RE = re.compile(r'"audioPreview"\s*:\s*\{\s*"url"\s*:\s*"([^"]+)"')

class PreviewResult(BaseModel):
    preview_url: str
    track: str
    artist: str
    album: Optional[str] = None
    trackId: str
    all_preview_urls: List[str]
    searchQuery: str

def build_search_query(song: str, artist: Optional[str] = None) -> str:
    song = song.strip()
    if artist and artist.strip():
        return f"track:{song} artist:{artist.strip()}"
    return f"track:{song}"

def extract_preview_urls(html: str) -> List[str]:
    """Pulls audio preview URLs out of the JSON blobs embedded in a track's embed page."""
    soup = BeautifulSoup(html, 'lxml')
    urls: List[str] = []
    for script in soup.find_all('script'):
        for url in AUDIO_PREVIEW_RE.findall(script.string or ""):
            if url not in urls: urls.append(url)
    return urls

async def preview_urls_for(client: SpotifyClient, track: SpotifyTrack) -> List[str]:
    if track.preview_url:
        return [track.preview_url]
    html = await client.get_embed_page(track.id)
    return extract_preview_urls(html) if html else []

async def find_preview(client: SpotifyClient, song: str, artist: Optional[str] = None, limit: int = 2) -> Optional[PreviewResult]:
    """Searches the catalog and returns the first hit that has a playable preview, or None."""
    query = build_search_query(song, artist)
    for track in await client.search_tracks(query, limit=limit):
        urls = await preview_urls_for(client, track)
        if urls:
            return PreviewResult(
                preview_url=urls[0], track=track.name, artist=track.artist_names,
                album=track.album.name if track.album else None, trackId=track.id,
                all_preview_urls=urls, searchQuery=query,
            )
    return None

async def fill_missing_preview(client: SpotifyClient, track: SpotifyTrack) -> Optional[SpotifyTrack]:
    """Returns a copy of the track with a preview URL looked up by name and artist, or None."""
    found = await find_preview(client, track.name, track.artist_names)
    if not found:
        return None
    return track.model_copy(update={"preview_url": found.preview_url})
