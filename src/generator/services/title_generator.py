"""Playlist naming: model-written titles with a template fallback."""

import logging
import random
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from ..errors import NamingFailure
from .catalog_gateway import CandidateTrack

logger = logging.getLogger(__name__)

MAX_TITLE_WORDS = 5
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 300
MAX_FEATURED_ARTISTS = 3

TITLE_TEMPLATES = (
    "{time_of_day} {mood} Mix",
    "{season} {energy} Vibes",
    "{mood} {time_of_day} with {artist}",
    "Inspired by {track}",
    "{artist} {season} Radio",
    "{energy} {season} {time_of_day}",
)
DESCRIPTION_TEMPLATES = (
    "{count} {mood_lower} tracks inspired by {artist}.",
    "A {energy_lower} {season_lower} mix of {count} songs built around {artist}.",
    "{count} songs for a {mood_lower} {time_of_day_lower}, starting from {artist}.",
    "From {artist} outward: {count} {energy_lower} picks for the {season_lower}.",
    "{count} tracks that keep the {mood_lower} feel of {artist} going.",
)

TITLE_INSTRUCTIONS = (
    "You name music playlists. Reply with the title only, at most five words, "
    "no quotes or emojis."
)
DESCRIPTION_INSTRUCTIONS = (
    "You write short playlist descriptions. Reply with one or two sentences and "
    "nothing else."
)


def time_of_day_label(hour: int) -> str:
    if 5 <= hour <= 11:
        return "Morning"
    if 12 <= hour <= 16:
        return "Afternoon"
    if 17 <= hour <= 20:
        return "Evening"
    return "Late Night"


def season_label(month_index: int) -> str:
    """Season for a 0-based month index (0 = January)."""
    if 2 <= month_index <= 4:
        return "Spring"
    if 5 <= month_index <= 7:
        return "Summer"
    if 8 <= month_index <= 10:
        return "Fall"
    return "Winter"


def mood_energy_pair(
    target_valence: Optional[float], target_energy: Optional[float]
) -> Tuple[str, str]:
    """Return the (mood, energy) descriptor words; missing targets count as 0.5."""
    valence = 0.5 if target_valence is None else target_valence
    energy = 0.5 if target_energy is None else target_energy

    if valence >= 0.7 and energy >= 0.7:
        return "Euphoric", "High-Energy"
    if valence >= 0.7 and energy < 0.3:
        return "Blissful", "Mellow"
    if valence < 0.3 and energy >= 0.7:
        return "Brooding", "Intense"
    if valence < 0.3 and energy < 0.3:
        return "Melancholy", "Hushed"
    if energy >= 0.7:
        return "Dynamic", "Upbeat"
    if energy < 0.3:
        return "Chill", "Laid-Back"
    return "Balanced", "Steady"


def featured_artists(tracks: Sequence[CandidateTrack], limit: int = MAX_FEATURED_ARTISTS) -> List[str]:
    names: List[str] = []
    for track in tracks:
        name = track.primary_artist_name
        if name and name not in names:
            names.append(name)
        if len(names) >= limit:
            break
    return names


def _clean_title(raw: str) -> str:
    lines = (raw or "").strip().splitlines()
    text = lines[0].strip("\"'` ") if lines else ""
    if text.lower().startswith("title:"):
        text = text[len("title:"):].strip()
    words = text.split()
    if not words:
        return ""
    return " ".join(words[:MAX_TITLE_WORDS])[:MAX_TITLE_LENGTH]


def _clean_description(raw: str) -> str:
    text = " ".join((raw or "").split()).strip("\"'` ")
    return text[:MAX_DESCRIPTION_LENGTH]


class TitleGenerator:
    """Produce playlist titles and descriptions.

    ``text_generator`` is any callable taking a prompt and an ``instructions``
    keyword and returning text; when it is missing, raises, or answers with
    nothing usable, a template is filled in instead. ``rng`` and ``clock`` are
    injectable so template choice and time labels can be pinned in tests.
    """

    def __init__(
        self,
        text_generator: Optional[Callable[..., str]] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.text_generator = text_generator
        self.rng = rng or random.Random()
        self.clock = clock or datetime.now

    def _labels(self, target_energy, target_valence):
        now = self.clock()
        mood, energy = mood_energy_pair(target_valence, target_energy)
        time_of_day = time_of_day_label(now.hour)
        season = season_label(now.month - 1)
        return {
            "time_of_day": time_of_day,
            "time_of_day_lower": time_of_day.lower(),
            "season": season,
            "season_lower": season.lower(),
            "mood": mood,
            "mood_lower": mood.lower(),
            "energy": energy,
            "energy_lower": energy.lower(),
        }

    def _ask(self, prompt: str, instructions: str) -> str:
        if self.text_generator is None:
            raise NamingFailure("No text generator configured")
        try:
            return self.text_generator(prompt, instructions=instructions) or ""
        except Exception as exc:  # pylint: disable=broad-except
            raise NamingFailure(str(exc)) from exc

    def fallback_title(
        self,
        seed_track: CandidateTrack,
        target_energy: Optional[float] = None,
        target_valence: Optional[float] = None,
    ) -> str:
        values = self._labels(target_energy, target_valence)
        values["artist"] = seed_track.primary_artist_name
        values["track"] = seed_track.name
        return self.rng.choice(TITLE_TEMPLATES).format(**values)[:MAX_TITLE_LENGTH]

    def fallback_description(
        self,
        seed_track: CandidateTrack,
        track_count: int,
        target_energy: Optional[float] = None,
        target_valence: Optional[float] = None,
    ) -> str:
        values = self._labels(target_energy, target_valence)
        values["artist"] = seed_track.primary_artist_name
        values["count"] = track_count
        return self.rng.choice(DESCRIPTION_TEMPLATES).format(**values)[:MAX_DESCRIPTION_LENGTH]

    def generate_title(
        self,
        seed_track: CandidateTrack,
        target_energy: Optional[float] = None,
        target_valence: Optional[float] = None,
        track_count: int = 0,
    ) -> str:
        mood, energy = mood_energy_pair(target_valence, target_energy)
        prompt = (
            f'Create a playlist title for {track_count} songs inspired by "{seed_track.name}" '
            f"by {seed_track.primary_artist_name}. The mood is {mood.lower()} and the energy "
            f"is {energy.lower()}. Keep it to at most {MAX_TITLE_WORDS} words."
        )
        try:
            title = _clean_title(self._ask(prompt, TITLE_INSTRUCTIONS))
            if not title:
                raise NamingFailure("Empty title")
            return title
        except NamingFailure as exc:
            logger.info("Using template title for seed %s: %s", seed_track.id, exc)
            return self.fallback_title(seed_track, target_energy, target_valence)

    def generate_description(
        self,
        seed_track: CandidateTrack,
        tracks: Sequence[CandidateTrack],
        target_energy: Optional[float] = None,
        target_valence: Optional[float] = None,
        track_count: Optional[int] = None,
    ) -> str:
        artists = featured_artists(tracks) or [seed_track.primary_artist_name]
        if track_count is None:
            track_count = len(tracks)
        mood, energy = mood_energy_pair(target_valence, target_energy)
        prompt = (
            f'Write a one or two sentence description for a playlist of {track_count} songs '
            f'seeded by "{seed_track.name}" by {seed_track.primary_artist_name}. '
            f"Mention these artists: {', '.join(artists)}. "
            f"The mood is {mood.lower()} and the energy is {energy.lower()}."
        )
        try:
            description = _clean_description(self._ask(prompt, DESCRIPTION_INSTRUCTIONS))
            if not description:
                raise NamingFailure("Empty description")
            return description
        except NamingFailure as exc:
            logger.info("Using template description for seed %s: %s", seed_track.id, exc)
            return self.fallback_description(seed_track, track_count, target_energy, target_valence)
