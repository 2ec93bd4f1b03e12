"""Thin adapter around the OpenAI model used for creative suggestions and naming."""

import json
import logging
import os
import re
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, List, Optional

from django.conf import settings
from openai import OpenAI, OpenAIError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_OUTPUT_TOKENS = 1000

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_JSON_OPENER_RE = re.compile(r"[\[{]")


def _setting(name: str, default=None):
    """Django settings win; the process environment is the fallback."""
    return getattr(settings, name, os.getenv(name, default))


def is_configured() -> bool:
    """Return True when an OpenAI API key is available."""
    return bool(_setting("OPENAI_API_KEY"))


@lru_cache(maxsize=1)
def _build_client(api_key: str, base_url: Optional[str], organization: Optional[str]) -> OpenAI:
    options = {"api_key": api_key}
    if base_url:
        options["base_url"] = base_url
    if organization:
        options["organization"] = organization
    return OpenAI(**options)


def reset_client() -> None:
    """Forget the cached OpenAI client so the next call rebuilds it."""
    _build_client.cache_clear()


def get_client() -> Optional[OpenAI]:
    """Return the shared client for the current credentials, or None without a key."""
    api_key = _setting("OPENAI_API_KEY")
    if not api_key:
        logger.info("OPENAI_API_KEY is not set; text generation disabled.")
        return None
    try:
        return _build_client(
            api_key, _setting("OPENAI_API_BASE") or None, _setting("OPENAI_ORGANIZATION") or None
        )
    except (OpenAIError, ValueError) as exc:
        logger.error("Could not create the OpenAI client: %s", exc)
        return None


def _coerce(value, cast: Callable[[Any], Any], fallback):
    try:
        return cast(value)
    except (TypeError, ValueError):
        return fallback


def _response_text(response) -> str:
    text = getattr(response, "output_text", "")
    if text:
        return text.strip()
    # Some SDK versions only expose output[].content[].text.
    pieces = []
    for item in getattr(response, "output", None) or []:
        for part in getattr(item, "content", None) or []:
            value = getattr(part, "text", None)
            value = getattr(value, "value", value)
            if isinstance(value, str):
                pieces.append(value)
    return "".join(pieces).strip()


def generate_text(
    prompt: str,
    *,
    instructions: Optional[str] = None,
    temperature: Optional[float] = None,
    max_output_tokens: Optional[int] = None,
) -> str:
    """Send a prompt to the configured model and return the stripped response text.

    Returns an empty string when the client is unavailable or the request fails.
    """
    client = get_client()
    if client is None:
        return ""

    if temperature is None:
        temperature = _setting("SEEDMIX_OPENAI_TEMPERATURE", DEFAULT_TEMPERATURE)
    if max_output_tokens is None:
        max_output_tokens = _setting("SEEDMIX_OPENAI_MAX_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS)

    request = {
        "model": _setting("SEEDMIX_OPENAI_MODEL", DEFAULT_MODEL),
        "input": prompt,
        "temperature": _coerce(temperature, float, DEFAULT_TEMPERATURE),
        "max_output_tokens": _coerce(max_output_tokens, int, DEFAULT_MAX_OUTPUT_TOKENS),
    }
    if instructions:
        request["instructions"] = instructions

    try:
        response = client.responses.create(**request)
    except (OpenAIError, ValueError, TypeError) as exc:
        logger.warning("OpenAI request failed: %s", exc)
        return ""
    return _response_text(response)


def _candidate_texts(raw: str) -> Iterator[str]:
    """Yield fenced code blocks first, then the whole response."""
    for block in _FENCED_BLOCK_RE.findall(raw):
        if block.strip():
            yield block.strip()
    yield raw.strip()


def parse_json_response(raw: str) -> Optional[Any]:
    """Decode the first JSON value found in model output that may be wrapped in prose."""
    if not raw or not raw.strip():
        return None

    decoder = json.JSONDecoder()
    for text in _candidate_texts(raw):
        starts = [0] + [match.start() for match in _JSON_OPENER_RE.finditer(text)]
        for start in starts:
            try:
                value, _ = decoder.raw_decode(text, start)
            except json.JSONDecodeError:
                continue
            return value
    return None


def parse_song_suggestions(raw: str) -> Optional[List[Dict[str, str]]]:
    """Parse a `[{"title": ..., "artist": ...}]` array.

    Returns None when the response is not a JSON array; entries without a title
    are dropped.
    """
    parsed = parse_json_response(raw)
    if not isinstance(parsed, list):
        return None

    suggestions: List[Dict[str, str]] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        artist = item.get("artist") or ""
        if isinstance(artist, list):
            artist = ", ".join(str(part) for part in artist)
        if title:
            suggestions.append({"title": title, "artist": str(artist).strip()})
    return suggestions
