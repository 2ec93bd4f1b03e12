"""Request throttling for the JSON API."""

import logging
import math
import time

from django.conf import settings
from django.core.cache import cache
from django.http import JsonResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


def client_identifier(request) -> str:
    """Combine the remote address with the Spotify user when the session has one."""
    address = request.META.get("REMOTE_ADDR") or "unknown"
    user_id = "anonymous"
    session = getattr(request, "session", None)
    if session is not None:
        user_id = session.get("spotify_user_id") or "anonymous"
    return f"{address}:{user_id}"


class RateLimitMiddleware:
    """Fixed-window counter kept in the Django cache.

    Every request under SEEDMIX_RATE_LIMIT_PATH_PREFIX counts against the
    client's budget; past it the request is answered with 429 and never reaches
    the view. Windows are aligned to wall-clock multiples of the window length.
    """

    def __init__(self, get_response, clock=time.time):
        self.get_response = get_response
        self.clock = clock

    def __call__(self, request):
        limit = int(getattr(settings, "SEEDMIX_RATE_LIMIT_REQUESTS", 100))
        window = int(getattr(settings, "SEEDMIX_RATE_LIMIT_WINDOW_SECONDS", 900))
        prefix = getattr(settings, "SEEDMIX_RATE_LIMIT_PATH_PREFIX", "/api/")
        if limit <= 0 or window <= 0 or not request.path.startswith(prefix):
            return self.get_response(request)

        now = self.clock()
        window_index = int(now // window)
        identifier = client_identifier(request)
        key = f"seedmix:ratelimit:{identifier}:{window_index}"

        cache.add(key, 0, timeout=window)
        try:
            count = cache.incr(key)
        except ValueError:
            # The entry expired between add() and incr().
            cache.set(key, 1, timeout=window)
            count = 1

        if count > limit:
            retry_after = max(1, math.ceil((window_index + 1) * window - now))
            logger.warning("Rate limit exceeded for %s on %s", identifier, request.path)
            response = JsonResponse({"error": RATE_LIMIT_MESSAGE}, status=429)
            response["Retry-After"] = str(retry_after)
            return response

        response = self.get_response(request)
        response["X-RateLimit-Limit"] = str(limit)
        response["X-RateLimit-Remaining"] = str(max(0, limit - count))
        return response
