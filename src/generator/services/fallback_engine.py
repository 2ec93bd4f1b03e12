"""Recommendation pipeline that degrades through several strategies.

Spotify's recommendation endpoint is frequently unavailable for new apps, so
the engine tries, in order:

1. ``native``  - the catalog recommendation endpoint.
2. ``ai``      - model-suggested songs resolved through catalog search.
3. ``search``  - same-artist, inferred-genre and mood-term searches.
4. ``popular`` - generic popular-track searches.

Each strategy returns a track list or ``None``; the first non-empty list wins.
Catalog failures are logged and swallowed, so callers only ever see an empty
result when every tier came back with nothing.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from django.conf import settings

from ..errors import CatalogError
from . import llm_handler
from .catalog_gateway import CandidateTrack, CatalogGateway, clean_track_id

logger = logging.getLogger(__name__)

SAME_ARTIST_SHARE = 0.3
GENRE_SHARE = 0.3
MOOD_SHARE = 0.4
MAX_GENRE_HINTS = 2
MAX_MOOD_TERMS = 3
ARTIST_REPEAT_CAP = 3
TOP_UP_QUERY = "year:2024"
TOP_UP_MAX_PAGES = 4
POPULAR_QUERIES = ("year:2024 tag:hipster", "top hits")
SEARCH_PAGE_LIMIT = 50

# First matching keyword wins; each entry yields two search hints.
GENRE_KEYWORDS: Tuple[Tuple[Tuple[str, ...], Tuple[str, str]], ...] = (
    (("rock",), ("rock", "alternative")),
    (("pop",), ("pop", "top 40")),
    (("rap", "hip"), ("hip hop", "rap")),
    (("jazz",), ("jazz", "blues")),
    (("electro", "edm"), ("electronic", "dance")),
    (("country",), ("country", "folk")),
    (("classical",), ("classical", "instrumental")),
)
DEFAULT_GENRES = ("pop", "rock", "indie", "alternative")

ENERGY_TERMS = (
    (0.8, ("energetic", "upbeat", "party", "dance")),
    (0.6, ("groove", "rhythm", "beat")),
    (0.4, ("moderate", "steady")),
    (0.2, ("mellow", "smooth", "laid back")),
)
LOW_ENERGY_TERMS = ("ambient", "chill", "relaxing", "calm")
VALENCE_TERMS = (
    (0.8, ("happy", "joyful", "uplifting")),
    (0.6, ("positive", "feel good")),
    (0.4, ("neutral mood",)),
    (0.2, ("emotional", "introspective")),
)
LOW_VALENCE_TERMS = ("melancholic", "sad", "moody")
DEFAULT_MOOD_TERMS = ("popular", "trending", "hits")

AI_SYSTEM_INSTRUCTIONS = (
    "You are a music recommendation expert. Return only valid JSON arrays of songs "
    "that exist on Spotify."
)


def quota(limit: int, share: float) -> int:
    """Share of ``limit`` rounded up so quotas never under-allocate."""
    return int(math.ceil(limit * share))


def energy_descriptor(target_energy: Optional[float]) -> str:
    if target_energy is None:
        return "varied energy"
    if target_energy > 0.7:
        return "high-energy, upbeat"
    if target_energy < 0.3:
        return "calm, relaxing"
    return "moderate energy"


def mood_descriptor(target_valence: Optional[float]) -> str:
    if target_valence is None:
        return "varied mood"
    if target_valence > 0.7:
        return "happy, positive"
    if target_valence < 0.3:
        return "melancholic, introspective"
    return "balanced mood"


def infer_genres(track_name: str, artist_name: str) -> List[str]:
    """Guess genre hints from keywords in the track and artist names."""
    haystack = f"{track_name or ''} {artist_name or ''}".lower()
    for keywords, hints in GENRE_KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return list(hints)
    return list(DEFAULT_GENRES)


def _banded_terms(value: float, bands, low_terms) -> Tuple[str, ...]:
    for threshold, terms in bands:
        if value > threshold:
            return terms
    return low_terms


def build_mood_terms(
    target_energy: Optional[float], target_valence: Optional[float]
) -> List[str]:
    terms: List[str] = []
    if target_energy is not None:
        terms.extend(_banded_terms(target_energy, ENERGY_TERMS, LOW_ENERGY_TERMS))
    if target_valence is not None:
        terms.extend(_banded_terms(target_valence, VALENCE_TERMS, LOW_VALENCE_TERMS))
    if not terms:
        terms.extend(DEFAULT_MOOD_TERMS)
    return terms


def diversify_tracks(
    new_tracks: Iterable[CandidateTrack], existing_tracks: Iterable[CandidateTrack]
) -> List[CandidateTrack]:
    """Drop candidates whose primary artist already appears ARTIST_REPEAT_CAP times."""
    artist_counts: Dict[str, int] = {}
    for track in existing_tracks:
        if track.artist_id:
            artist_counts[track.artist_id] = artist_counts.get(track.artist_id, 0) + 1

    diverse: List[CandidateTrack] = []
    for track in new_tracks:
        artist_id = track.artist_id
        if not artist_id:
            diverse.append(track)
            continue
        if artist_counts.get(artist_id, 0) >= ARTIST_REPEAT_CAP:
            continue
        diverse.append(track)
        artist_counts[artist_id] = artist_counts.get(artist_id, 0) + 1
    return diverse


def dedupe_tracks(tracks: Iterable[CandidateTrack]) -> List[CandidateTrack]:
    """Remove repeated track ids, keeping the first occurrence."""
    seen = set()
    unique: List[CandidateTrack] = []
    for track in tracks:
        if not track.id or track.id in seen:
            continue
        seen.add(track.id)
        unique.append(track)
    return unique


class Deadline:
    """Wall-clock budget shared by every tier of one request."""

    def __init__(self, seconds: Optional[float], clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds if seconds else None

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at


@dataclass
class RecommendationResult:
    tracks: List[CandidateTrack]
    tier: str

    def as_dict(self) -> Dict[str, object]:
        return {"tracks": [track.as_dict() for track in self.tracks], "tier": self.tier}


@dataclass
class _GenerationRequest:
    token: str
    seed_ids: List[str]
    limit: int
    target_energy: Optional[float]
    target_valence: Optional[float]
    deadline: Deadline
    seed_track: Optional[CandidateTrack] = field(default=None, repr=False)
    seed_error: Optional[CatalogError] = field(default=None, repr=False)

    @property
    def primary_seed(self) -> str:
        return self.seed_ids[0] if self.seed_ids else ""


class RecommendationEngine:
    """Produce a track list for seed tracks, degrading tier by tier."""

    def __init__(
        self,
        gateway: CatalogGateway,
        *,
        text_generator: Optional[Callable[[str], str]] = None,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.text_generator = text_generator
        self.deadline_seconds = deadline_seconds
        self._clock = clock

    def get_recommendations(
        self,
        token: str,
        seed_ids: List[str],
        limit: int,
        target_energy: Optional[float] = None,
        target_valence: Optional[float] = None,
    ) -> RecommendationResult:
        request = _GenerationRequest(
            token=token,
            seed_ids=[clean_track_id(seed) for seed in seed_ids if seed],
            limit=max(int(limit), 1),
            target_energy=target_energy,
            target_valence=target_valence,
            deadline=Deadline(self.deadline_seconds, self._clock),
        )

        strategies = [
            ("native", self._native),
            ("ai", self._ai_assisted),
            ("search", self._search_based),
        ]
        for tier, strategy in strategies:
            if request.deadline.expired():
                logger.warning(
                    "Generation deadline exceeded before tier %s (seed=%s); using popular tracks.",
                    tier,
                    request.primary_seed,
                )
                break
            try:
                tracks = strategy(request)
            except CatalogError as exc:
                logger.warning(
                    "Recommendation tier %s failed (seed=%s): %s", tier, request.primary_seed, exc.reason
                )
                if tier == "search":
                    break
                continue
            if tracks:
                logger.info(
                    "Recommendation tier %s produced %d tracks (seed=%s).",
                    tier,
                    len(tracks),
                    request.primary_seed,
                )
                return RecommendationResult(tracks=tracks[: request.limit], tier=tier)

        tracks = self._popular(request)
        return RecommendationResult(tracks=tracks, tier="popular" if tracks else "none")

    def _seed_track(self, request: _GenerationRequest) -> CandidateTrack:
        """Fetch (once) full metadata for the first seed."""
        if request.seed_track is not None:
            return request.seed_track
        if request.seed_error is not None:
            raise request.seed_error
        if not request.primary_seed:
            request.seed_error = CatalogError("No seed track supplied", status=400)
            raise request.seed_error
        try:
            payload = self.gateway.get_track(request.token, request.primary_seed)
        except CatalogError as exc:
            request.seed_error = exc
            raise
        request.seed_track = CandidateTrack.from_payload(payload)
        return request.seed_track

    def _native(self, request: _GenerationRequest) -> Optional[List[CandidateTrack]]:
        tracks = self.gateway.get_recommendations(
            request.token,
            request.seed_ids,
            request.limit,
            target_energy=request.target_energy,
            target_valence=request.target_valence,
        )
        return dedupe_tracks(tracks) or None

    def _ai_prompt(self, seed: CandidateTrack, request: _GenerationRequest) -> str:
        return (
            f'Based on the song "{seed.name}" by {seed.primary_artist_name}, suggest '
            f"{request.limit} similar songs that match these criteria:\n"
            f"- Energy: {energy_descriptor(request.target_energy)}\n"
            f"- Mood: {mood_descriptor(request.target_valence)}\n"
            "- Similar genre and style\n\n"
            "Return ONLY a JSON array of songs with this exact format, no additional text:\n"
            '[{"title": "Song Name", "artist": "Artist Name"}]'
        )

    def _ai_assisted(self, request: _GenerationRequest) -> Optional[List[CandidateTrack]]:
        if self.text_generator is None:
            return None

        seed = self._seed_track(request)
        try:
            raw = self.text_generator(self._ai_prompt(seed, request))
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("AI suggestion request failed (seed=%s): %s", seed.id, exc)
            return None

        suggestions = llm_handler.parse_song_suggestions(raw)
        if suggestions is None:
            logger.warning("AI suggestions were not a JSON array (seed=%s).", seed.id)
            return None

        resolved: List[CandidateTrack] = []
        for suggestion in suggestions[: request.limit]:
            if request.deadline.expired():
                logger.warning("Generation deadline exceeded during AI resolution (seed=%s).", seed.id)
                return None
            query = f"track:{suggestion['title']} artist:{suggestion['artist']}"
            try:
                hits = self.gateway.search_tracks(request.token, query, 1)
            except CatalogError as exc:
                logger.debug("AI suggestion search failed for %r: %s", query, exc.reason)
                continue
            if hits:
                resolved.append(hits[0])
            else:
                logger.debug("No catalog match for AI suggestion %r.", query)

        resolved = dedupe_tracks(resolved)
        if len(resolved) < request.limit / 2:
            logger.info(
                "AI tier resolved %d/%d tracks (seed=%s); falling back to search.",
                len(resolved),
                request.limit,
                seed.id,
            )
            return None
        return resolved

    def _search_tier_step(self, label: str, request: _GenerationRequest, query: str, limit: int):
        if request.deadline.expired():
            logger.debug("Skipping search strategy %s for %r; deadline exceeded.", label, query)
            return []
        try:
            return self.gateway.search_tracks(request.token, query, limit)
        except CatalogError as exc:
            logger.warning(
                "Search strategy %s failed for %r (seed=%s): %s",
                label,
                query,
                request.primary_seed,
                exc.reason,
            )
            return []

    def _search_based(self, request: _GenerationRequest) -> Optional[List[CandidateTrack]]:
        seed = self._seed_track(request)
        limit = request.limit
        collected: List[CandidateTrack] = []

        artist_quota = quota(limit, SAME_ARTIST_SHARE)
        artist_tracks = self._search_tier_step(
            "same-artist",
            request,
            f'artist:"{seed.primary_artist_name}"',
            artist_quota * 2,
        )
        artist_tracks = [track for track in artist_tracks if track.id != seed.id]
        artist_tracks.sort(key=lambda track: track.popularity or 0, reverse=True)
        collected.extend(artist_tracks[:artist_quota])

        genre_quota = quota(limit, GENRE_SHARE)
        genres = infer_genres(seed.name, seed.primary_artist_name)
        per_genre = int(math.ceil(genre_quota / len(genres)))
        for genre in genres[:MAX_GENRE_HINTS]:
            collected.extend(
                self._search_tier_step("genre", request, f'genre:"{genre}"', per_genre)
            )

        mood_quota = quota(limit, MOOD_SHARE)
        terms = build_mood_terms(request.target_energy, request.target_valence)
        per_term = int(math.ceil(mood_quota / len(terms)))
        for term in terms[:MAX_MOOD_TERMS]:
            mood_tracks = self._search_tier_step("mood", request, term, per_term)
            collected.extend(diversify_tracks(mood_tracks, collected))

        unique = dedupe_tracks(collected)
        seen = {track.id for track in unique}
        offset = 0
        for _ in range(TOP_UP_MAX_PAGES):
            needed = limit - len(unique)
            if needed <= 0 or request.deadline.expired():
                break
            page_size = min(needed, SEARCH_PAGE_LIMIT)
            page = self._top_up_page(request, page_size, offset)
            if not page:
                break
            for track in page:
                if track.id and track.id not in seen:
                    seen.add(track.id)
                    unique.append(track)
            offset += page_size

        logger.debug(
            "Search tier assembled %d unique tracks (seed=%s, limit=%d).",
            len(unique),
            seed.id,
            limit,
        )
        if request.deadline.expired():
            logger.warning(
                "Generation deadline exceeded during search tier (seed=%s); keeping %d tracks.",
                seed.id,
                min(len(unique), limit),
            )
        return unique[:limit]

    def _top_up_page(self, request: _GenerationRequest, page_size: int, offset: int):
        try:
            return self.gateway.search_tracks(request.token, TOP_UP_QUERY, page_size, offset=offset)
        except CatalogError as exc:
            logger.warning(
                "Top-up search failed at offset %d (seed=%s): %s",
                offset,
                request.primary_seed,
                exc.reason,
            )
            return []

    def _popular(self, request: _GenerationRequest) -> List[CandidateTrack]:
        for query in POPULAR_QUERIES:
            try:
                tracks = self.gateway.search_tracks(request.token, query, request.limit)
            except CatalogError as exc:
                logger.warning(
                    "Popular tracks search %r failed (seed=%s): %s", query, request.primary_seed, exc.reason
                )
                continue
            tracks = dedupe_tracks(tracks)
            if tracks:
                logger.info("Popular tracks tier produced %d tracks for %r.", len(tracks), query)
                return tracks[: request.limit]
        logger.error("All recommendation tiers failed (seed=%s).", request.primary_seed)
        return []


def build_default_engine(gateway: CatalogGateway) -> RecommendationEngine:
    """Wire the engine from settings, enabling the AI tier only when OpenAI is configured."""
    text_generator = None
    if llm_handler.is_configured():
        text_generator = lambda prompt: llm_handler.generate_text(  # noqa: E731
            prompt, instructions=AI_SYSTEM_INSTRUCTIONS
        )
    return RecommendationEngine(
        gateway,
        text_generator=text_generator,
        deadline_seconds=getattr(settings, "SEEDMIX_GENERATION_DEADLINE_SECONDS", 25),
    )
