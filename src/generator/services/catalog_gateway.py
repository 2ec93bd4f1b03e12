"""Spotify catalog access with uniform error translation."""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional

import requests
import spotipy
from django.conf import settings
from spotipy import SpotifyException

from ..errors import CatalogError
from .keyed_store import KeyedStore

logger = logging.getLogger(__name__)

MAX_SEED_TRACKS = 5
PLAYLIST_ADD_BATCH_SIZE = 100
AUDIO_FEATURE_KEYS = (
    "energy",
    "valence",
    "danceability",
    "acousticness",
    "instrumentalness",
    "liveness",
    "speechiness",
)
# Search response section -> item kind.
SEARCH_SECTIONS = {
    "tracks": "track",
    "artists": "artist",
    "albums": "album",
    "playlists": "playlist",
}

_TRACK_URI_RE = re.compile(r"^spotify:track:", re.IGNORECASE)
_TRACK_URL_RE = re.compile(r"^https?://open\.spotify\.com/track/([^?/#]+)", re.IGNORECASE)


def clean_track_id(raw_id: str) -> str:
    """Strip `spotify:track:` URIs and open.spotify.com URLs down to the bare id."""
    value = (raw_id or "").strip()
    url_match = _TRACK_URL_RE.match(value)
    if url_match:
        return url_match.group(1)
    return _TRACK_URI_RE.sub("", value)


def neutral_audio_features(track_id: str = "") -> Dict[str, object]:
    """Return the neutral record substituted when audio features are restricted."""
    features: Dict[str, object] = {key: 0.5 for key in AUDIO_FEATURE_KEYS}
    features["id"] = track_id
    return features


def _primary_image_url(images: Optional[List[Dict]]) -> str:
    """Return the first available URL from a list of Spotify image dictionaries."""
    if not images:
        return ""
    for image in images:
        url = (image or {}).get("url")
        if url:
            return url
    return ""


@dataclass
class CandidateTrack:
    """Catalog track normalized for deduplication and persistence."""

    id: str
    name: str
    primary_artist_name: str
    artist_id: Optional[str]
    album_name: str
    album_art_url: str
    duration_ms: int
    popularity: int
    preview_url: Optional[str] = None

    @classmethod
    def from_payload(cls, track: Dict) -> "CandidateTrack":
        album = track.get("album") or {}
        artists = track.get("artists") or []
        primary = artists[0] if artists else {}
        return cls(
            id=track.get("id") or "",
            name=track.get("name") or "Unknown",
            primary_artist_name=primary.get("name") or "Unknown Artist",
            artist_id=primary.get("id"),
            album_name=album.get("name") or "",
            album_art_url=_primary_image_url(album.get("images")),
            duration_ms=int(track.get("duration_ms") or 0),
            popularity=int(track.get("popularity") or 0),
            preview_url=track.get("preview_url"),
        )

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class CatalogItem:
    """A search hit tagged with the section it was returned under."""

    kind: str
    id: str
    name: str
    payload: Dict

    def as_dict(self) -> Dict[str, object]:
        return {"kind": self.kind, "id": self.id, "name": self.name, "item": self.payload}


def _tracks_from_payloads(items: Optional[List[Dict]]) -> List[CandidateTrack]:
    return [
        CandidateTrack.from_payload(item)
        for item in items or []
        if isinstance(item, dict) and item.get("id")
    ]


class CatalogGateway:
    """One method per Spotify capability; every failure surfaces as CatalogError."""

    def __init__(
        self,
        *,
        client_factory: Optional[Callable[[str], spotipy.Spotify]] = None,
        track_cache: Optional[KeyedStore] = None,
    ):
        self._client_factory = client_factory or self._build_client
        self._track_cache = track_cache

    @staticmethod
    def _build_client(token: str) -> spotipy.Spotify:
        # spotipy retries 429/5xx and connection errors with capped exponential backoff.
        return spotipy.Spotify(
            auth=token,
            requests_timeout=int(getattr(settings, "SPOTIFY_HTTP_TIMEOUT", 15)),
            retries=int(getattr(settings, "SPOTIFY_RETRIES", 3)),
            status_retries=int(getattr(settings, "SPOTIFY_STATUS_RETRIES", 3)),
            backoff_factor=float(getattr(settings, "SPOTIFY_BACKOFF_FACTOR", 0.3)),
        )

    def _call(self, label: str, func: Callable, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SpotifyException as exc:
            logger.warning("Spotify %s failed (%s): %s", label, exc.http_status, exc.msg)
            raise CatalogError(f"Spotify {label} failed: {exc.msg}", status=exc.http_status) from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("Network error during Spotify %s: %s", label, exc)
            raise CatalogError(f"Network error during Spotify {label}") from exc

    def search(
        self,
        token: str,
        query: str,
        search_type: str = "track",
        limit: int = 20,
        offset: int = 0,
    ) -> List[CatalogItem]:
        """Search the catalog and tag each hit with its kind."""
        sp = self._client_factory(token)
        response = (
            self._call("search", sp.search, q=query, type=search_type, limit=limit, offset=offset)
            or {}
        )

        items: List[CatalogItem] = []
        for section, kind in SEARCH_SECTIONS.items():
            block = response.get(section)
            if not isinstance(block, dict):
                continue
            for entry in block.get("items") or []:
                # Spotify returns null placeholders for unavailable playlists.
                if not isinstance(entry, dict) or not entry.get("id"):
                    continue
                items.append(
                    CatalogItem(kind=kind, id=entry["id"], name=entry.get("name", ""), payload=entry)
                )
        return items

    def search_tracks(
        self, token: str, query: str, limit: int, offset: int = 0
    ) -> List[CandidateTrack]:
        """Search for tracks only and normalize the hits."""
        if limit <= 0:
            return []
        hits = self.search(token, query, search_type="track", limit=min(limit, 50), offset=offset)
        return [CandidateTrack.from_payload(hit.payload) for hit in hits if hit.kind == "track"]

    def get_track(self, token: str, track_id: str) -> Dict:
        cleaned = clean_track_id(track_id)
        if self._track_cache is not None:
            cached = self._track_cache.get(cleaned)
            if isinstance(cached, dict):
                return cached

        sp = self._client_factory(token)
        track = self._call("track lookup", sp.track, cleaned)
        if not isinstance(track, dict) or not track.get("id"):
            raise CatalogError(f"Track {cleaned} not found", status=404)

        if self._track_cache is not None:
            self._track_cache.put(cleaned, track)
        return track

    def get_audio_features(self, token: str, track_id: str) -> Dict:
        """Return audio features, or the neutral record when Spotify restricts them."""
        cleaned = clean_track_id(track_id)
        sp = self._client_factory(token)
        try:
            response = self._call("audio features", sp.audio_features, [cleaned])
        except CatalogError as exc:
            if exc.is_not_found or exc.is_forbidden:
                logger.info("Audio features unavailable for %s (%s); using neutral defaults.", cleaned, exc.status)
                return neutral_audio_features(cleaned)
            raise

        features = response[0] if isinstance(response, list) and response else None
        if not isinstance(features, dict):
            return neutral_audio_features(cleaned)
        return features

    def get_recommendations(
        self,
        token: str,
        seed_ids: List[str],
        limit: int,
        target_energy: Optional[float] = None,
        target_valence: Optional[float] = None,
    ) -> List[CandidateTrack]:
        seeds = [clean_track_id(seed) for seed in seed_ids if seed][:MAX_SEED_TRACKS]
        if not seeds:
            raise CatalogError("At least one seed track is required", status=400)

        kwargs: Dict[str, object] = {"seed_tracks": seeds, "limit": limit}
        if target_energy is not None:
            kwargs["target_energy"] = target_energy
        if target_valence is not None:
            kwargs["target_valence"] = target_valence

        sp = self._client_factory(token)
        response = self._call("recommendations", sp.recommendations, **kwargs) or {}
        return _tracks_from_payloads(response.get("tracks"))

    def get_top_items(
        self, token: str, item_type: str, time_range: str = "medium_term", limit: int = 20
    ) -> Dict:
        sp = self._client_factory(token)
        if item_type == "artists":
            return self._call(
                "top artists", sp.current_user_top_artists, limit=limit, time_range=time_range
            )
        if item_type == "tracks":
            return self._call(
                "top tracks", sp.current_user_top_tracks, limit=limit, time_range=time_range
            )
        raise ValueError("item_type must be 'artists' or 'tracks'")

    def create_remote_playlist(
        self, token: str, name: str, description: str, track_ids: List[str]
    ) -> Dict:
        """Create a private Spotify playlist for the current user and fill it."""
        sp = self._client_factory(token)
        profile = self._call("profile lookup", sp.current_user) or {}
        spotify_user_id = profile.get("id")
        if not spotify_user_id:
            raise CatalogError("Spotify user id could not be resolved")

        created = self._call(
            "playlist creation",
            sp.user_playlist_create,
            spotify_user_id,
            name,
            public=False,
            description=description or "",
        ) or {}
        playlist_id = created.get("id")
        if not playlist_id:
            raise CatalogError("Spotify did not return a playlist id")

        uris = [f"spotify:track:{clean_track_id(track_id)}" for track_id in track_ids if track_id]
        for start in range(0, len(uris), PLAYLIST_ADD_BATCH_SIZE):
            batch = uris[start : start + PLAYLIST_ADD_BATCH_SIZE]
            self._call("playlist add items", sp.playlist_add_items, playlist_id, batch)

        return created
