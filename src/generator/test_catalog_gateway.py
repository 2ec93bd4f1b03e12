"""Unit tests for the Spotify catalog gateway."""

from django.core.cache import cache
from django.test import SimpleTestCase, TestCase
from requests.exceptions import ConnectionError as RequestsConnectionError
from spotipy import SpotifyException
from unittest.mock import patch

from generator.errors import CatalogError
from generator.services.catalog_gateway import (
    CandidateTrack,
    CatalogGateway,
    clean_track_id,
    neutral_audio_features,
)
from generator.services.keyed_store import KeyedStore


def _track_payload(track_id, name="Song", artist_id="artist1", artist_name="Artist", **extra):
    payload = {
        "id": track_id,
        "name": name,
        "artists": [{"id": artist_id, "name": artist_name}],
        "album": {"name": "Album", "images": [{"url": "https://img/1.jpg"}]},
        "duration_ms": 200000,
        "popularity": 50,
        "preview_url": None,
    }
    payload.update(extra)
    return payload


class HelperTests(SimpleTestCase):
    """Tests for pure helpers in the gateway module."""

    def test_clean_track_id_strips_uri_and_url(self):
        self.assertEqual(clean_track_id("spotify:track:4uLU6hMCjMI75M1A2tKUQC"), "4uLU6hMCjMI75M1A2tKUQC")
        self.assertEqual(
            clean_track_id("https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC?si=abc"),
            "4uLU6hMCjMI75M1A2tKUQC",
        )
        self.assertEqual(clean_track_id(" plainid "), "plainid")

    def test_candidate_from_payload_defaults(self):
        track = CandidateTrack.from_payload({"id": "t1"})
        self.assertEqual(track.primary_artist_name, "Unknown Artist")
        self.assertIsNone(track.artist_id)
        self.assertEqual(track.duration_ms, 0)
        self.assertEqual(track.album_art_url, "")


class CatalogGatewayTests(TestCase):
    """Tests for CatalogGateway against a mocked spotipy client."""

    def setUp(self):
        cache.clear()

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_search_tags_items_by_section(self, mock_spotify):
        mock_instance = mock_spotify.return_value
        mock_instance.search.return_value = {
            "tracks": {"items": [_track_payload("t1")]},
            "albums": {"items": [{"id": "al1", "name": "Album One"}]},
            "playlists": {"items": [None, {"id": "pl1", "name": "Mix"}]},
        }

        items = CatalogGateway().search("token", "query", search_type="track,album,playlist")

        self.assertEqual([(item.kind, item.id) for item in items], [
            ("track", "t1"),
            ("album", "al1"),
            ("playlist", "pl1"),
        ])
        mock_instance.search.assert_called_once_with(
            q="query", type="track,album,playlist", limit=20, offset=0
        )

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_search_tracks_caps_limit(self, mock_spotify):
        mock_instance = mock_spotify.return_value
        mock_instance.search.return_value = {"tracks": {"items": [_track_payload("t1")]}}

        tracks = CatalogGateway().search_tracks("token", "year:2024", 80, offset=50)

        self.assertEqual([track.id for track in tracks], ["t1"])
        mock_instance.search.assert_called_once_with(q="year:2024", type="track", limit=50, offset=50)

    def test_search_tracks_with_zero_limit_skips_request(self):
        factory_calls = []
        gateway = CatalogGateway(client_factory=factory_calls.append)
        self.assertEqual(gateway.search_tracks("token", "anything", 0), [])
        self.assertEqual(factory_calls, [])

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_spotify_errors_become_catalog_errors(self, mock_spotify):
        mock_instance = mock_spotify.return_value
        mock_instance.search.side_effect = SpotifyException(429, -1, "rate limited")

        with self.assertRaises(CatalogError) as ctx:
            CatalogGateway().search("token", "q")
        self.assertEqual(ctx.exception.status, 429)

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_network_errors_become_catalog_errors(self, mock_spotify):
        mock_instance = mock_spotify.return_value
        mock_instance.track.side_effect = RequestsConnectionError("boom")

        with self.assertRaises(CatalogError) as ctx:
            CatalogGateway().get_track("token", "t1")
        self.assertIsNone(ctx.exception.status)

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_get_track_uses_cache(self, mock_spotify):
        """Second lookup of the same id is served from the keyed store."""
        mock_instance = mock_spotify.return_value
        mock_instance.track.return_value = _track_payload("t1")
        gateway = CatalogGateway(track_cache=KeyedStore("test:track"))

        first = gateway.get_track("token", "spotify:track:t1")
        second = gateway.get_track("token", "t1")

        self.assertEqual(first["id"], "t1")
        self.assertEqual(second, first)
        mock_instance.track.assert_called_once_with("t1")

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_get_track_empty_payload_is_not_found(self, mock_spotify):
        mock_spotify.return_value.track.return_value = None

        with self.assertRaises(CatalogError) as ctx:
            CatalogGateway().get_track("token", "missing")
        self.assertTrue(ctx.exception.is_not_found)

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_audio_features_forbidden_returns_neutral_record(self, mock_spotify):
        """Spotify denies audio features for many apps; callers get neutral values instead."""
        mock_instance = mock_spotify.return_value
        mock_instance.audio_features.side_effect = SpotifyException(403, -1, "forbidden")

        features = CatalogGateway().get_audio_features("token", "t1")

        self.assertEqual(features, neutral_audio_features("t1"))
        self.assertEqual(features["energy"], 0.5)
        self.assertEqual(features["speechiness"], 0.5)

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_audio_features_null_entry_returns_neutral_record(self, mock_spotify):
        mock_spotify.return_value.audio_features.return_value = [None]

        self.assertEqual(CatalogGateway().get_audio_features("token", "t1"), neutral_audio_features("t1"))

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_audio_features_server_error_propagates(self, mock_spotify):
        mock_spotify.return_value.audio_features.side_effect = SpotifyException(500, -1, "server")

        with self.assertRaises(CatalogError):
            CatalogGateway().get_audio_features("token", "t1")

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_recommendations_pass_targets_and_cap_seeds(self, mock_spotify):
        mock_instance = mock_spotify.return_value
        mock_instance.recommendations.return_value = {"tracks": [_track_payload("r1"), {"id": None}]}

        tracks = CatalogGateway().get_recommendations(
            "token", ["a", "b", "c", "d", "e", "f"], 10, target_energy=0.8
        )

        self.assertEqual([track.id for track in tracks], ["r1"])
        mock_instance.recommendations.assert_called_once_with(
            seed_tracks=["a", "b", "c", "d", "e"], limit=10, target_energy=0.8
        )

    def test_top_items_rejects_unknown_type(self):
        with self.assertRaises(ValueError):
            CatalogGateway(client_factory=lambda token: None).get_top_items("token", "albums")

    @patch("generator.services.catalog_gateway.spotipy.Spotify")
    def test_create_remote_playlist_batches_uris(self, mock_spotify):
        """Spotify accepts at most 100 items per add request."""
        mock_instance = mock_spotify.return_value
        mock_instance.current_user.return_value = {"id": "user123"}
        mock_instance.user_playlist_create.return_value = {"id": "remote1"}
        track_ids = [f"track{index}" for index in range(150)]

        created = CatalogGateway().create_remote_playlist("token", "Name", "Desc", track_ids)

        self.assertEqual(created["id"], "remote1")
        mock_instance.user_playlist_create.assert_called_once_with(
            "user123", "Name", public=False, description="Desc"
        )
        batches = [call.args[1] for call in mock_instance.playlist_add_items.call_args_list]
        self.assertEqual([len(batch) for batch in batches], [100, 50])
        self.assertEqual(batches[0][0], "spotify:track:track0")


class KeyedStoreTests(SimpleTestCase):
    """Tests for the cache-backed keyed store."""

    def setUp(self):
        cache.clear()

    def test_put_get_delete_are_namespaced(self):
        tracks = KeyedStore("tracks")
        other = KeyedStore("other")

        tracks.put("abc", {"id": "abc"})

        self.assertEqual(tracks.get("abc"), {"id": "abc"})
        self.assertIsNone(other.get("abc"))
        tracks.delete("abc")
        self.assertIsNone(tracks.get("abc"))

    def test_zero_ttl_expires_immediately(self):
        store = KeyedStore("short")
        store.put("key", "value", ttl=0)
        self.assertIsNone(store.get("key"))
