"""JSON API views for playlist generation and Spotify catalog access."""

import json
import logging
import re
import uuid
from functools import wraps
from typing import Dict, List, Optional, Tuple

from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from .errors import CatalogError, EmptyRecommendations, PersistenceError
from .services.catalog_gateway import MAX_SEED_TRACKS, SEARCH_SECTIONS
from .services.fallback_engine import build_default_engine
from .services.playlist_service import (
    PlaylistOptions,
    build_catalog_gateway,
    build_playlist_service,
)

logger = logging.getLogger(__name__)

TRACK_ID_RE = re.compile(r"^[a-zA-Z0-9]{22}$")
NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 300
MAX_LIMIT = 100
MAX_SELECTED_TRACKS = 100
MAX_SEARCH_LIMIT = 50
TIME_RANGES = ("short_term", "medium_term", "long_term")
SEARCH_TYPES = tuple(SEARCH_SECTIONS.values())

_ANGLE_BRACKETS_RE = re.compile(r"[<>]")
_JS_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)


def sanitize_text(value: str) -> str:
    """Strip markup and inline script fragments from user supplied text."""
    text = _ANGLE_BRACKETS_RE.sub("", value or "")
    text = _JS_SCHEME_RE.sub("", text)
    text = _EVENT_HANDLER_RE.sub("", text)
    return text.strip()


def _validation_error(details: List[Dict[str, str]]) -> JsonResponse:
    return JsonResponse({"error": "Validation failed", "details": details}, status=400)


def _error_id() -> str:
    return uuid.uuid4().hex[:12]


def _unexpected_error(label: str, exc: Exception) -> JsonResponse:
    error_id = _error_id()
    logger.exception("Unexpected error during %s (error_id=%s): %s", label, error_id, exc)
    return JsonResponse({"error": "Internal server error.", "errorId": error_id}, status=500)


def spotify_session_required(view):
    """Reject requests whose session carries no Spotify credentials."""

    @wraps(view)
    def _wrapped(request, *args, **kwargs):
        access_token = request.session.get("spotify_access_token")
        user_id = request.session.get("spotify_user_id")
        if not access_token or not user_id:
            return JsonResponse({"error": "Spotify authentication required."}, status=401)
        request.spotify_token = access_token
        request.spotify_user_id = str(user_id)
        return view(request, *args, **kwargs)

    return _wrapped


def _load_json_body(request) -> Tuple[Optional[Dict], Optional[JsonResponse]]:
    try:
        payload = json.loads(request.body.decode("utf-8") or "{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, JsonResponse({"error": "Invalid JSON payload."}, status=400)
    if not isinstance(payload, dict):
        return None, JsonResponse({"error": "Expected a JSON object."}, status=400)
    return payload, None


def _as_unit_float(value, field_name: str, details: List[Dict[str, str]]) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        details.append({"field": field_name, "message": "Must be a number between 0 and 1"})
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        details.append({"field": field_name, "message": "Must be a number between 0 and 1"})
        return None
    if not 0 <= number <= 1:
        details.append({"field": field_name, "message": "Must be a number between 0 and 1"})
        return None
    return number


def _as_bounded_int(
    value, field_name: str, low: int, high: int, details: List[Dict[str, str]]
) -> Optional[int]:
    if value is None or value == "":
        return None
    # Booleans and fractional numbers are not integers, even though int() accepts them.
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        details.append({"field": field_name, "message": f"Must be an integer between {low} and {high}"})
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        details.append({"field": field_name, "message": f"Must be an integer between {low} and {high}"})
        return None
    if not low <= number <= high:
        details.append({"field": field_name, "message": f"Must be an integer between {low} and {high}"})
        return None
    return number


def _validate_track_ids(
    value, field_name: str, low: int, high: int, details: List[Dict[str, str]]
) -> List[str]:
    if not isinstance(value, list) or not low <= len(value) <= high:
        details.append({"field": field_name, "message": f"Must contain between {low} and {high} track IDs"})
        return []
    if not all(isinstance(item, str) and TRACK_ID_RE.match(item) for item in value):
        details.append({"field": field_name, "message": "Invalid Spotify track ID format"})
        return []
    return list(value)


def validate_generate_payload(payload: Dict) -> Tuple[List[str], PlaylistOptions, List[Dict[str, str]]]:
    """Validate a generation request, returning seeds, options and any field errors."""
    details: List[Dict[str, str]] = []
    seeds = _validate_track_ids(payload.get("seedTracks"), "seedTracks", 1, MAX_SEED_TRACKS, details)

    name = payload.get("name")
    if name is not None and (not isinstance(name, str) or len(name) > NAME_MAX_LENGTH):
        details.append({"field": "name", "message": f"Must be at most {NAME_MAX_LENGTH} characters"})
        name = None
    description = payload.get("description")
    if description is not None and (
        not isinstance(description, str) or len(description) > DESCRIPTION_MAX_LENGTH
    ):
        details.append(
            {"field": "description", "message": f"Must be at most {DESCRIPTION_MAX_LENGTH} characters"}
        )
        description = None

    raw_options = payload.get("options") or {}
    if not isinstance(raw_options, dict):
        details.append({"field": "options", "message": "Must be an object"})
        raw_options = {}
    limit = _as_bounded_int(raw_options.get("limit"), "options.limit", 1, MAX_LIMIT, details)
    target_energy = _as_unit_float(raw_options.get("targetEnergy"), "options.targetEnergy", details)
    target_valence = _as_unit_float(raw_options.get("targetValence"), "options.targetValence", details)
    genres = raw_options.get("genres") or []
    if not isinstance(genres, list) or not all(isinstance(genre, str) for genre in genres):
        details.append({"field": "options.genres", "message": "Must be a list of strings"})
        genres = []

    selected: List[str] = []
    if payload.get("selectedTracks"):
        selected = _validate_track_ids(
            payload.get("selectedTracks"), "selectedTracks", 1, MAX_SELECTED_TRACKS, details
        )

    options = PlaylistOptions(
        name=sanitize_text(name) if name else None,
        description=sanitize_text(description) if description else None,
        limit=limit,
        target_energy=target_energy,
        target_valence=target_valence,
        generate_smart_title=bool(raw_options.get("generateSmartTitle")),
        genres=[sanitize_text(genre) for genre in genres],
        selected_tracks=selected,
    )
    return seeds, options, details


@require_POST
@spotify_session_required
def generate_playlist(request):
    payload, error_response = _load_json_body(request)
    if error_response is not None:
        return error_response

    seeds, options, details = validate_generate_payload(payload)
    if details:
        return _validation_error(details)

    service = build_playlist_service()
    try:
        playlist = service.create(request.spotify_token, request.spotify_user_id, seeds, options)
    except EmptyRecommendations:
        return JsonResponse({"error": EmptyRecommendations.user_message}, status=422)
    except PersistenceError:
        return JsonResponse({"error": PersistenceError.user_message}, status=500)
    except Exception as exc:  # pylint: disable=broad-except
        return _unexpected_error("playlist generation", exc)

    return JsonResponse(playlist.as_dict(), status=201)


@require_GET
@spotify_session_required
def list_playlists(request):
    try:
        playlists = build_playlist_service().list_playlists(request.spotify_user_id)
    except PersistenceError:
        return JsonResponse({"error": "Failed to load playlists."}, status=500)
    return JsonResponse({"playlists": [playlist.as_dict() for playlist in playlists]})


@require_http_methods(["GET", "DELETE"])
@spotify_session_required
def playlist_detail(request, playlist_id):
    service = build_playlist_service()
    try:
        if request.method == "DELETE":
            if not service.delete_playlist(playlist_id, request.spotify_user_id):
                return JsonResponse({"error": "Playlist not found."}, status=404)
            return JsonResponse({"message": "Playlist deleted successfully."})
        playlist = service.get_playlist(playlist_id, request.spotify_user_id)
    except PersistenceError:
        return JsonResponse({"error": "Failed to load playlist."}, status=500)

    if playlist is None:
        return JsonResponse({"error": "Playlist not found."}, status=404)
    return JsonResponse(playlist.as_dict())


@require_POST
@spotify_session_required
def export_playlist(request, playlist_id):
    service = build_playlist_service()
    try:
        exported = service.export_playlist(request.spotify_token, playlist_id, request.spotify_user_id)
    except CatalogError as exc:
        logger.warning("Export of playlist %s failed: %s", playlist_id, exc.reason)
        return JsonResponse({"error": "Failed to export playlist to Spotify."}, status=502)
    except PersistenceError:
        return JsonResponse({"error": "Failed to export playlist to Spotify."}, status=500)

    if exported is None:
        return JsonResponse({"error": "Playlist not found."}, status=404)
    playlist, url = exported
    return JsonResponse(
        {
            "message": "Playlist exported to Spotify successfully.",
            "spotifyUrl": url,
            "remotePlaylistId": playlist.remote_playlist_id,
        }
    )


@require_GET
@spotify_session_required
def search_catalog(request):
    details: List[Dict[str, str]] = []
    query = sanitize_text(request.GET.get("q", ""))
    if not query:
        details.append({"field": "q", "message": "Search query is required"})
    search_type = request.GET.get("type", "track")
    if any(part not in SEARCH_TYPES for part in search_type.split(",")):
        details.append({"field": "type", "message": f"Must be one of {', '.join(SEARCH_TYPES)}"})
    limit = _as_bounded_int(request.GET.get("limit"), "limit", 1, MAX_SEARCH_LIMIT, details)
    if details:
        return _validation_error(details)

    try:
        items = build_catalog_gateway().search(
            request.spotify_token, query, search_type=search_type, limit=limit or 20
        )
    except CatalogError:
        return JsonResponse({"error": "Failed to search Spotify."}, status=502)
    return JsonResponse({"items": [item.as_dict() for item in items]})


def _invalid_track_id(track_id: str) -> Optional[JsonResponse]:
    if TRACK_ID_RE.match(track_id or ""):
        return None
    return _validation_error([{"field": "id", "message": "Invalid Spotify track ID format"}])


@require_GET
@spotify_session_required
def track_detail(request, track_id):
    invalid = _invalid_track_id(track_id)
    if invalid is not None:
        return invalid
    try:
        track = build_catalog_gateway().get_track(request.spotify_token, track_id)
    except CatalogError as exc:
        if exc.is_not_found:
            return JsonResponse({"error": "Track not found."}, status=404)
        return JsonResponse({"error": "Failed to fetch track."}, status=502)
    return JsonResponse(track)


@require_GET
@spotify_session_required
def track_features(request, track_id):
    invalid = _invalid_track_id(track_id)
    if invalid is not None:
        return invalid
    try:
        features = build_catalog_gateway().get_audio_features(request.spotify_token, track_id)
    except CatalogError:
        return JsonResponse({"error": "Failed to fetch audio features."}, status=502)
    return JsonResponse(features)


@require_GET
@spotify_session_required
def recommendations(request):
    details: List[Dict[str, str]] = []
    raw_seeds = [seed.strip() for seed in request.GET.get("seed_tracks", "").split(",") if seed.strip()]
    seeds = _validate_track_ids(raw_seeds, "seed_tracks", 1, MAX_SEED_TRACKS, details)
    limit = _as_bounded_int(request.GET.get("limit"), "limit", 1, MAX_LIMIT, details)
    target_energy = _as_unit_float(request.GET.get("target_energy"), "target_energy", details)
    target_valence = _as_unit_float(request.GET.get("target_valence"), "target_valence", details)
    if details:
        return _validation_error(details)

    engine = build_default_engine(build_catalog_gateway())
    try:
        result = engine.get_recommendations(
            request.spotify_token,
            seeds,
            limit or 20,
            target_energy=target_energy,
            target_valence=target_valence,
        )
    except Exception as exc:  # pylint: disable=broad-except
        return _unexpected_error("recommendations", exc)
    return JsonResponse(result.as_dict())


@require_GET
@spotify_session_required
def top_items(request, item_type):
    details: List[Dict[str, str]] = []
    if item_type not in ("artists", "tracks"):
        details.append({"field": "type", "message": "Must be 'artists' or 'tracks'"})
    time_range = request.GET.get("time_range", "medium_term")
    if time_range not in TIME_RANGES:
        details.append({"field": "time_range", "message": f"Must be one of {', '.join(TIME_RANGES)}"})
    limit = _as_bounded_int(request.GET.get("limit"), "limit", 1, MAX_SEARCH_LIMIT, details)
    if details:
        return _validation_error(details)

    try:
        response = build_catalog_gateway().get_top_items(
            request.spotify_token, item_type, time_range=time_range, limit=limit or 20
        )
    except CatalogError:
        return JsonResponse({"error": "Failed to fetch top items."}, status=502)
    return JsonResponse(response or {})
