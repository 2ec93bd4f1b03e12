"""Unit tests for the tiered recommendation engine."""

import itertools
import json
from unittest.mock import MagicMock

from django.test import SimpleTestCase

from generator.errors import CatalogError
from generator.services.catalog_gateway import CandidateTrack, CatalogGateway
from generator.services.fallback_engine import (
    RecommendationEngine,
    build_mood_terms,
    dedupe_tracks,
    diversify_tracks,
    energy_descriptor,
    infer_genres,
    mood_descriptor,
    quota,
)

SEED_ID = "4uLU6hMCjMI75M1A2tKUQC"


def _candidate(track_id, artist_id="artist-x", popularity=50, name=None):
    return CandidateTrack(
        id=track_id,
        name=name or f"Song {track_id}",
        primary_artist_name=f"Name {artist_id}",
        artist_id=artist_id,
        album_name="Album",
        album_art_url="",
        duration_ms=180000,
        popularity=popularity,
    )


def _seed_payload(name="Song", artist_name="Artist X", artist_id="artist-x"):
    return {
        "id": SEED_ID,
        "name": name,
        "artists": [{"id": artist_id, "name": artist_name}],
        "album": {"name": "Seed Album", "images": []},
        "duration_ms": 210000,
        "popularity": 70,
    }


def _gateway(search_handler=None, native=None, seed=None):
    """Return a mocked gateway; ``search_handler(query, limit, offset)`` answers searches."""
    gateway = MagicMock(spec=CatalogGateway)
    if isinstance(native, Exception):
        gateway.get_recommendations.side_effect = native
    else:
        gateway.get_recommendations.return_value = native or []
    if isinstance(seed, Exception):
        gateway.get_track.side_effect = seed
    else:
        gateway.get_track.return_value = seed or _seed_payload()

    def _search(token, query, limit, offset=0):
        if search_handler is None:
            return []
        return search_handler(query, limit, offset)

    gateway.search_tracks.side_effect = _search
    return gateway


def _queries(gateway):
    return [call.args[1] for call in gateway.search_tracks.call_args_list]


class DescriptorTests(SimpleTestCase):
    """Tests for the pure helper functions."""

    def test_quota_rounds_up(self):
        self.assertEqual(quota(20, 0.3), 6)
        self.assertEqual(quota(10, 0.3), 3)
        self.assertEqual(quota(1, 0.4), 1)

    def test_energy_and_mood_descriptors(self):
        self.assertEqual(energy_descriptor(None), "varied energy")
        self.assertEqual(energy_descriptor(0.9), "high-energy, upbeat")
        self.assertEqual(energy_descriptor(0.1), "calm, relaxing")
        self.assertEqual(energy_descriptor(0.5), "moderate energy")
        self.assertEqual(mood_descriptor(None), "varied mood")
        self.assertEqual(mood_descriptor(0.71), "happy, positive")
        self.assertEqual(mood_descriptor(0.2), "melancholic, introspective")
        self.assertEqual(mood_descriptor(0.7), "balanced mood")

    def test_infer_genres_uses_first_matching_keyword(self):
        self.assertEqual(infer_genres("Rock Anthem", "Band"), ["rock", "alternative"])
        self.assertEqual(infer_genres("Tune", "Hip Crew"), ["hip hop", "rap"])
        self.assertEqual(infer_genres("Night", "EDM Squad"), ["electronic", "dance"])
        self.assertEqual(infer_genres("Song", "Artist"), ["pop", "rock", "indie", "alternative"])

    def test_build_mood_terms_bands(self):
        self.assertEqual(build_mood_terms(None, None), ["popular", "trending", "hits"])
        self.assertEqual(build_mood_terms(0.9, None), ["energetic", "upbeat", "party", "dance"])
        self.assertEqual(build_mood_terms(0.1, 0.5), ["ambient", "chill", "relaxing", "calm", "neutral mood"])
        self.assertEqual(build_mood_terms(None, 0.1), ["melancholic", "sad", "moody"])
        # Thresholds are strict.
        self.assertEqual(build_mood_terms(0.8, None), ["groove", "rhythm", "beat"])

    def test_diversify_counts_existing_and_accepted(self):
        existing = [_candidate("e1", "a"), _candidate("e2", "a")]
        incoming = [
            _candidate("n1", "a"),
            _candidate("n2", "a"),
            _candidate("n3", "b"),
            _candidate("n4", None),
        ]

        accepted = diversify_tracks(incoming, existing)

        self.assertEqual([track.id for track in accepted], ["n1", "n3", "n4"])

    def test_dedupe_keeps_first_occurrence(self):
        tracks = [_candidate("t1", popularity=1), _candidate("t2"), _candidate("t1", popularity=99)]

        unique = dedupe_tracks(tracks)

        self.assertEqual([track.id for track in unique], ["t1", "t2"])
        self.assertEqual(unique[0].popularity, 1)


class NativeTierTests(SimpleTestCase):
    """Native recommendations short-circuit every other tier."""

    def test_native_success_returns_unique_tracks(self):
        native = [_candidate(f"n{index}", f"artist{index}") for index in range(20)]
        gateway = _gateway(native=native)
        text_generator = MagicMock()
        engine = RecommendationEngine(gateway, text_generator=text_generator)

        result = engine.get_recommendations("token", [SEED_ID], 20)

        self.assertEqual(result.tier, "native")
        self.assertEqual(len(result.tracks), 20)
        self.assertEqual(len({track.id for track in result.tracks}), 20)
        gateway.search_tracks.assert_not_called()
        gateway.get_track.assert_not_called()
        text_generator.assert_not_called()

    def test_native_passes_targets(self):
        gateway = _gateway(native=[_candidate("n1")])
        RecommendationEngine(gateway).get_recommendations(
            "token", [SEED_ID], 5, target_energy=0.2, target_valence=0.9
        )
        gateway.get_recommendations.assert_called_once_with(
            "token", [SEED_ID], 5, target_energy=0.2, target_valence=0.9
        )


class AiTierTests(SimpleTestCase):
    """AI-assisted tier behaviour."""

    def _search_hits(self, query, limit, offset):
        title = query.split(" artist:")[0].replace("track:", "")
        if title == "Missing":
            return []
        return [_candidate(f"ai-{title}", f"artist-{title}")]

    def test_ai_suggestions_are_resolved_through_search(self):
        suggestions = [{"title": name, "artist": "Someone"} for name in ("One", "Two", "Three", "Missing")]
        text_generator = MagicMock(return_value=f"```json\n{json.dumps(suggestions)}\n```")
        gateway = _gateway(self._search_hits, native=CatalogError("gone", status=404))
        engine = RecommendationEngine(gateway, text_generator=text_generator)

        result = engine.get_recommendations("token", [SEED_ID], 4, target_energy=0.9)

        self.assertEqual(result.tier, "ai")
        self.assertEqual([track.id for track in result.tracks], ["ai-One", "ai-Two", "ai-Three"])
        prompt = text_generator.call_args.args[0]
        self.assertIn('"Song" by Artist X', prompt)
        self.assertIn("high-energy, upbeat", prompt)
        self.assertIn("varied mood", prompt)
        self.assertIn("track:One artist:Someone", _queries(gateway))
        for call in gateway.search_tracks.call_args_list:
            self.assertEqual(call.args[2], 1)

    def test_too_few_resolved_suggestions_fall_to_search(self):
        suggestions = [{"title": "Missing", "artist": "Nobody"}] * 3 + [{"title": "One", "artist": "A"}]
        text_generator = MagicMock(return_value=json.dumps(suggestions))
        gateway = _gateway(self._search_hits, native=CatalogError("gone", status=404))

        result = RecommendationEngine(gateway, text_generator=text_generator).get_recommendations(
            "token", [SEED_ID], 4
        )

        self.assertEqual(result.tier, "search")

    def test_unparsable_ai_output_falls_to_search_without_retry(self):
        text_generator = MagicMock(return_value="Sorry, I cannot help with that.")
        gateway = _gateway(
            lambda query, limit, offset: [_candidate(f"{query}-{offset}", query)],
            native=CatalogError("gone", status=404),
        )

        result = RecommendationEngine(gateway, text_generator=text_generator).get_recommendations(
            "token", [SEED_ID], 4
        )

        self.assertEqual(result.tier, "search")
        text_generator.assert_called_once()

    def test_ai_exception_falls_to_search(self):
        text_generator = MagicMock(side_effect=RuntimeError("model down"))
        gateway = _gateway(
            lambda query, limit, offset: [_candidate(f"{query}-{offset}", query)],
            native=CatalogError("gone", status=404),
        )

        result = RecommendationEngine(gateway, text_generator=text_generator).get_recommendations(
            "token", [SEED_ID], 3
        )

        self.assertEqual(result.tier, "search")

    def test_seed_lookup_is_shared_between_tiers(self):
        """The seed track is fetched once per request."""
        text_generator = MagicMock(return_value="not json")
        gateway = _gateway(
            lambda query, limit, offset: [_candidate(f"{query}-{offset}", query)],
            native=CatalogError("gone", status=404),
        )

        RecommendationEngine(gateway, text_generator=text_generator).get_recommendations(
            "token", [SEED_ID], 3
        )

        gateway.get_track.assert_called_once_with("token", SEED_ID)


class SearchTierTests(SimpleTestCase):
    """Heuristic search tier: quotas, diversification and top-up."""

    def test_same_artist_genre_and_mood_with_diversification(self):
        """Mood results by an artist already over the cap are dropped."""
        same_artist = [_candidate(f"a{index}", "artist-x", popularity=index) for index in range(10)]
        genre = [_candidate(f"g{index}", "artist-x") for index in range(5)] + [
            _candidate(f"gy{index}", "artist-y") for index in range(3)
        ]
        mood = [_candidate(f"mx{index}", "artist-x") for index in range(4)] + [
            _candidate(f"mz{index}", f"artist-z{index}") for index in range(6)
        ]

        def handler(query, limit, offset):
            if query == 'artist:"Artist X"':
                return same_artist
            if query == 'genre:"pop"':
                return genre
            if query == "popular":
                return mood
            return []

        gateway = _gateway(handler, native=CatalogError("unavailable", status=503))

        result = RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 20)

        ids = [track.id for track in result.tracks]
        self.assertEqual(result.tier, "search")
        self.assertLessEqual(len(ids), 20)
        self.assertEqual(len(ids), len(set(ids)))
        # Same-artist keeps the six most popular hits.
        self.assertEqual(ids[:6], ["a9", "a8", "a7", "a6", "a5", "a4"])
        self.assertFalse(any(track_id.startswith("mx") for track_id in ids))
        self.assertTrue(all(f"mz{index}" in ids for index in range(6)))
        queries = _queries(gateway)
        self.assertEqual(queries[:3], ['artist:"Artist X"', 'genre:"pop"', 'genre:"rock"'])
        self.assertEqual(queries[3:6], ["popular", "trending", "hits"])

    def test_requested_sizes_follow_quotas(self):
        gateway = _gateway(lambda query, limit, offset: [], native=CatalogError("gone"))

        RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 20, target_energy=0.9)

        limits = {call.args[1]: call.args[2] for call in gateway.search_tracks.call_args_list}
        self.assertEqual(limits['artist:"Artist X"'], 12)
        self.assertEqual(limits['genre:"pop"'], 2)
        # ceil(8 / 4 terms) for the first three energy terms.
        self.assertEqual(limits["energetic"], 2)
        self.assertEqual(limits["party"], 2)
        self.assertNotIn("dance", limits)

    def test_seed_track_is_excluded_from_same_artist_results(self):
        def handler(query, limit, offset):
            if query.startswith("artist:"):
                return [_candidate(SEED_ID, "artist-x", popularity=100), _candidate("other", "artist-x")]
            return []

        gateway = _gateway(handler, native=CatalogError("gone"))

        result = RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 2)

        self.assertNotIn(SEED_ID, [track.id for track in result.tracks])

    def test_top_up_pages_until_limit(self):
        """Top-up skips ids it has already seen and pages forward."""
        pages = {
            0: [_candidate(f"y{index}", f"y{index}") for index in range(4)],
            10: [_candidate("y0", "y0")] + [_candidate(f"y{index}", f"y{index}") for index in range(10, 16)],
        }

        def handler(query, limit, offset):
            if query == "year:2024":
                return pages.get(offset, [])
            return []

        gateway = _gateway(handler, native=CatalogError("gone"))

        result = RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 10)

        self.assertEqual(result.tier, "search")
        self.assertEqual(len(result.tracks), 10)
        self.assertEqual(len({track.id for track in result.tracks}), 10)
        top_up_calls = [
            (call.args[2], call.kwargs.get("offset"))
            for call in gateway.search_tracks.call_args_list
            if call.args[1] == "year:2024"
        ]
        self.assertEqual(top_up_calls, [(10, 0), (6, 10)])

    def test_result_is_short_when_catalog_runs_dry(self):
        def handler(query, limit, offset):
            if query == "year:2024" and offset == 0:
                return [_candidate("only", "solo")]
            return []

        gateway = _gateway(handler, native=CatalogError("gone"))

        result = RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 10)

        self.assertEqual([track.id for track in result.tracks], ["only"])

    def test_deadline_stops_remaining_sub_strategies(self):
        """Once the budget runs out mid-tier, the tracks gathered so far are returned."""
        now = [0.0]

        def handler(query, limit, offset):
            if query.startswith("artist:"):
                now[0] = 100.0
                return [_candidate(f"a{index}", "artist-x") for index in range(4)]
            return [_candidate(f"{query}-{index}", f"{query}-{index}") for index in range(limit)]

        gateway = _gateway(handler, native=CatalogError("gone"))
        engine = RecommendationEngine(gateway, deadline_seconds=10, clock=lambda: now[0])

        result = engine.get_recommendations("token", [SEED_ID], 10)

        self.assertEqual(result.tier, "search")
        self.assertEqual([track.id for track in result.tracks], ["a0", "a1", "a2"])
        self.assertEqual(_queries(gateway), ['artist:"Artist X"'])

    def test_failing_sub_strategy_is_skipped(self):
        def handler(query, limit, offset):
            if query.startswith("genre:"):
                raise CatalogError("genre search broke", status=500)
            return [_candidate(f"{query}-{index}", f"{query}-{index}") for index in range(limit)]

        gateway = _gateway(handler, native=CatalogError("gone"))

        result = RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 10)

        self.assertEqual(result.tier, "search")
        self.assertEqual(len(result.tracks), 10)


class DegradationTests(SimpleTestCase):
    """Popular tier and overall failure handling."""

    def test_catalog_down_reaches_popular_tier(self):
        def handler(query, limit, offset):
            if query == "year:2024 tag:hipster":
                return [_candidate("p1", "p1"), _candidate("p1", "p1"), _candidate("p2", "p2")]
            raise CatalogError("down", status=503)

        gateway = _gateway(handler, native=CatalogError("down", status=503), seed=CatalogError("down", 503))

        result = RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 20)

        self.assertEqual(result.tier, "popular")
        self.assertEqual([track.id for track in result.tracks], ["p1", "p2"])

    def test_popular_tier_falls_back_to_top_hits(self):
        def handler(query, limit, offset):
            if query == "top hits":
                return [_candidate("hit", "hit")]
            return []

        gateway = _gateway(handler, native=CatalogError("down"), seed=CatalogError("down"))

        result = RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 5)

        self.assertEqual(result.tier, "popular")
        self.assertEqual([track.id for track in result.tracks], ["hit"])

    def test_everything_failing_returns_empty_without_raising(self):
        def handler(query, limit, offset):
            raise CatalogError("down", status=503)

        gateway = _gateway(handler, native=CatalogError("down"), seed=CatalogError("down"))

        result = RecommendationEngine(gateway).get_recommendations("token", [SEED_ID], 5)

        self.assertEqual(result.tracks, [])
        self.assertEqual(result.tier, "none")

    def test_expired_deadline_short_circuits_to_popular(self):
        clock = itertools.chain([0.0, 0.0], itertools.repeat(100.0)).__next__
        text_generator = MagicMock()

        def handler(query, limit, offset):
            if query == "year:2024 tag:hipster":
                return [_candidate("p1", "p1")]
            return []

        gateway = _gateway(handler, native=CatalogError("slow"))
        engine = RecommendationEngine(
            gateway, text_generator=text_generator, deadline_seconds=10, clock=clock
        )

        result = engine.get_recommendations("token", [SEED_ID], 5)

        self.assertEqual(result.tier, "popular")
        text_generator.assert_not_called()
        gateway.get_track.assert_not_called()
