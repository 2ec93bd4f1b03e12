"""Assemble, name and persist playlists from seeds or curated track lists."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from django.conf import settings

from ..errors import CatalogError, EmptyRecommendations, MetadataResolutionFailure
from ..models import Playlist
from . import llm_handler
from .catalog_gateway import CandidateTrack, CatalogGateway, clean_track_id
from .fallback_engine import RecommendationEngine, build_default_engine
from .keyed_store import KeyedStore
from .playlist_store import PlaylistStore
from .title_generator import TitleGenerator

logger = logging.getLogger(__name__)

DEFAULT_PLAYLIST_NAME = "SeedMix Generated Playlist"
DEFAULT_PLAYLIST_DESCRIPTION = "Created with SeedMix"
PLACEHOLDER_TRACK_NAME = "Unknown Track"
PLACEHOLDER_ARTIST_NAME = "Unknown Artist"


@dataclass
class PlaylistOptions:
    name: Optional[str] = None
    description: Optional[str] = None
    limit: Optional[int] = None
    target_energy: Optional[float] = None
    target_valence: Optional[float] = None
    generate_smart_title: bool = False
    genres: List[str] = field(default_factory=list)
    selected_tracks: List[str] = field(default_factory=list)

    def resolved_limit(self) -> int:
        return int(self.limit or getattr(settings, "SEEDMIX_DEFAULT_LIMIT", 20))

    def as_params(self, tier: Optional[str] = None) -> Dict[str, object]:
        params: Dict[str, object] = {
            "limit": self.resolved_limit(),
            "targetEnergy": 0.5 if self.target_energy is None else self.target_energy,
            "targetValence": 0.5 if self.target_valence is None else self.target_valence,
            "generateSmartTitle": self.generate_smart_title,
            "genres": list(self.genres),
        }
        if tier:
            params["tier"] = tier
        return params


def track_record(track: CandidateTrack) -> Dict[str, object]:
    """Convert a catalog candidate into the persisted track shape."""
    return {
        "spotifyId": track.id,
        "name": track.name,
        "artist": track.primary_artist_name,
        "album": track.album_name,
        "duration": track.duration_ms,
        "albumArt": track.album_art_url,
        "previewUrl": track.preview_url,
    }


def placeholder_record(track_id: str) -> Dict[str, object]:
    return {
        "spotifyId": track_id,
        "name": PLACEHOLDER_TRACK_NAME,
        "artist": PLACEHOLDER_ARTIST_NAME,
        "album": "",
        "duration": 0,
        "albumArt": "",
        "previewUrl": None,
    }


def _unique_ids(track_ids: List[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for raw in track_ids:
        track_id = clean_track_id(raw)
        if track_id and track_id not in seen:
            seen.add(track_id)
            ordered.append(track_id)
    return ordered


def remote_playlist_url(created: Dict) -> str:
    external = (created.get("external_urls") or {}).get("spotify")
    if external:
        return external
    return f"https://open.spotify.com/playlist/{created.get('id')}"


class PlaylistService:
    """Entry point used by the views; only EmptyRecommendations and PersistenceError escape."""

    def __init__(
        self,
        gateway: CatalogGateway,
        engine: RecommendationEngine,
        title_generator: TitleGenerator,
        store: PlaylistStore,
    ):
        self.gateway = gateway
        self.engine = engine
        self.title_generator = title_generator
        self.store = store

    def _resolve_track(self, token: str, track_id: str) -> CandidateTrack:
        try:
            return CandidateTrack.from_payload(self.gateway.get_track(token, track_id))
        except CatalogError as exc:
            raise MetadataResolutionFailure(track_id, exc.reason) from exc

    def _seed_metadata(self, token: str, seed_ids: List[str]) -> Optional[CandidateTrack]:
        if not seed_ids:
            return None
        try:
            return self._resolve_track(token, seed_ids[0])
        except MetadataResolutionFailure as exc:
            logger.warning("Seed metadata unavailable for naming: %s", exc)
            return None

    def _naming(
        self,
        token: str,
        seed_ids: List[str],
        tracks: List[CandidateTrack],
        options: PlaylistOptions,
        track_count: Optional[int] = None,
    ) -> Tuple[str, str]:
        name = options.name or getattr(settings, "SEEDMIX_DEFAULT_PLAYLIST_NAME", DEFAULT_PLAYLIST_NAME)
        description = options.description or getattr(
            settings, "SEEDMIX_DEFAULT_PLAYLIST_DESCRIPTION", DEFAULT_PLAYLIST_DESCRIPTION
        )
        if not options.generate_smart_title:
            return name, description

        seed = self._seed_metadata(token, seed_ids)
        if seed is None:
            return name, description

        if track_count is None:
            track_count = len(tracks)
        # Description is written once the real track list is known.
        name = self.title_generator.generate_title(
            seed, options.target_energy, options.target_valence, track_count
        )
        description = self.title_generator.generate_description(
            seed, tracks, options.target_energy, options.target_valence, track_count=track_count
        )
        return name, description

    def create_with_explicit_tracks(
        self, token: str, owner_id: str, track_ids: List[str], options: PlaylistOptions, seed_ids=None
    ) -> Playlist:
        """Persist a curated track list; unresolvable tracks become placeholders."""
        ordered_ids = _unique_ids(track_ids)
        seeds = _unique_ids(seed_ids or []) or ordered_ids[:1]

        records: List[Dict[str, object]] = []
        resolved: List[CandidateTrack] = []
        for track_id in ordered_ids:
            try:
                track = self._resolve_track(token, track_id)
            except MetadataResolutionFailure as exc:
                logger.warning("Using placeholder for %s: %s", track_id, exc.reason)
                records.append(placeholder_record(track_id))
                continue
            resolved.append(track)
            records.append(track_record(track))

        # Placeholders count toward the size of the stored playlist.
        name, description = self._naming(token, seeds, resolved, options, track_count=len(records))
        return self.store.insert(
            owner_id=owner_id,
            name=name,
            description=description,
            tracks=records,
            seed_tracks=seeds,
            generation_params=options.as_params(tier="selected"),
        )

    def generate(
        self, token: str, owner_id: str, seed_ids: List[str], options: PlaylistOptions
    ) -> Playlist:
        seeds = _unique_ids(seed_ids)
        result = self.engine.get_recommendations(
            token,
            seeds,
            options.resolved_limit(),
            target_energy=options.target_energy,
            target_valence=options.target_valence,
        )
        if not result.tracks:
            logger.warning("No recommendations for owner %s (seeds=%s).", owner_id, ",".join(seeds))
            raise EmptyRecommendations(EmptyRecommendations.user_message)

        name, description = self._naming(token, seeds, result.tracks, options)
        playlist = self.store.insert(
            owner_id=owner_id,
            name=name,
            description=description,
            tracks=[track_record(track) for track in result.tracks],
            seed_tracks=seeds,
            generation_params=options.as_params(tier=result.tier),
        )
        logger.info(
            "Generated playlist %s with %d tracks via %s tier.", playlist.pk, playlist.track_count, result.tier
        )
        return playlist

    def create(
        self, token: str, owner_id: str, seed_ids: List[str], options: PlaylistOptions
    ) -> Playlist:
        if options.selected_tracks:
            return self.create_with_explicit_tracks(
                token, owner_id, options.selected_tracks, options, seed_ids=seed_ids
            )
        return self.generate(token, owner_id, seed_ids, options)

    def list_playlists(self, owner_id: str) -> List[Playlist]:
        return self.store.find_by_owner(owner_id)

    def get_playlist(self, playlist_id, owner_id: str) -> Optional[Playlist]:
        return self.store.find_one(playlist_id, owner_id)

    def delete_playlist(self, playlist_id, owner_id: str) -> bool:
        return self.store.delete_one(playlist_id, owner_id)

    def export_playlist(
        self, token: str, playlist_id, owner_id: str
    ) -> Optional[Tuple[Playlist, str]]:
        """Push a stored playlist to Spotify. Returns None when it does not exist.

        A playlist is exported once; later calls return the recorded remote playlist.
        CatalogError from the remote calls propagates to the caller.
        """
        playlist = self.store.find_one(playlist_id, owner_id)
        if playlist is None:
            return None
        if playlist.remote_playlist_id:
            return playlist, remote_playlist_url({"id": playlist.remote_playlist_id})

        track_ids = [track.get("spotifyId") for track in playlist.tracks or [] if track.get("spotifyId")]
        created = self.gateway.create_remote_playlist(token, playlist.name, playlist.description, track_ids)
        self.store.set_remote_playlist_id(playlist, created["id"])
        if playlist.remote_playlist_id != created["id"]:
            # A concurrent export won the race; report the playlist that was recorded.
            return playlist, remote_playlist_url({"id": playlist.remote_playlist_id})
        logger.info("Exported playlist %s to Spotify playlist %s.", playlist.pk, created["id"])
        return playlist, remote_playlist_url(created)


def build_catalog_gateway() -> CatalogGateway:
    track_cache = KeyedStore(
        "seedmix:track", default_ttl=int(getattr(settings, "SEEDMIX_TRACK_CACHE_SECONDS", 300))
    )
    return CatalogGateway(track_cache=track_cache)


def build_playlist_service() -> PlaylistService:
    """Wire the service from settings."""
    gateway = build_catalog_gateway()
    text_generator = llm_handler.generate_text if llm_handler.is_configured() else None
    return PlaylistService(
        gateway=gateway,
        engine=build_default_engine(gateway),
        title_generator=TitleGenerator(text_generator=text_generator),
        store=PlaylistStore(),
    )
