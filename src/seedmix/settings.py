"""Django settings for the seedmix project.

Every value can be overridden through the environment.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-seedmix-development-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [
    host.strip()
    for host in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",")
    if host.strip()
]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "generator",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "generator.middleware.RateLimitMiddleware",
]

ROOT_URLCONF = "seedmix.urls"
WSGI_APPLICATION = "seedmix.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("SEEDMIX_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "seedmix",
    }
}

SESSION_ENGINE = "django.contrib.sessions.backends.db"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"
STATIC_URL = "static/"

# Spotify. OAuth lives outside this project; views read the session keys it sets.
SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID", "")
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET", "")
SPOTIFY_HTTP_TIMEOUT = int(os.getenv("SPOTIFY_HTTP_TIMEOUT", "15"))
SPOTIFY_RETRIES = int(os.getenv("SPOTIFY_RETRIES", "3"))
SPOTIFY_STATUS_RETRIES = int(os.getenv("SPOTIFY_STATUS_RETRIES", "3"))
SPOTIFY_BACKOFF_FACTOR = float(os.getenv("SPOTIFY_BACKOFF_FACTOR", "0.3"))

# OpenAI. Leaving the key unset disables the AI tier and model-written titles.
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "")
OPENAI_ORGANIZATION = os.getenv("OPENAI_ORGANIZATION", "")
SEEDMIX_OPENAI_MODEL = os.getenv("SEEDMIX_OPENAI_MODEL", "gpt-4o-mini")
SEEDMIX_OPENAI_TEMPERATURE = float(os.getenv("SEEDMIX_OPENAI_TEMPERATURE", "0.7"))
SEEDMIX_OPENAI_MAX_TOKENS = int(os.getenv("SEEDMIX_OPENAI_MAX_TOKENS", "1000"))

SEEDMIX_DEFAULT_LIMIT = int(os.getenv("SEEDMIX_DEFAULT_LIMIT", "20"))
SEEDMIX_GENERATION_DEADLINE_SECONDS = float(os.getenv("SEEDMIX_GENERATION_DEADLINE_SECONDS", "25"))
SEEDMIX_TRACK_CACHE_SECONDS = int(os.getenv("SEEDMIX_TRACK_CACHE_SECONDS", "300"))
SEEDMIX_DEFAULT_PLAYLIST_NAME = os.getenv("SEEDMIX_DEFAULT_PLAYLIST_NAME", "SeedMix Generated Playlist")
SEEDMIX_DEFAULT_PLAYLIST_DESCRIPTION = os.getenv(
    "SEEDMIX_DEFAULT_PLAYLIST_DESCRIPTION", "Created with SeedMix"
)

# Fixed-window request budget per client address and Spotify user; 0 disables it.
SEEDMIX_RATE_LIMIT_REQUESTS = int(os.getenv("SEEDMIX_RATE_LIMIT_REQUESTS", "100"))
SEEDMIX_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("SEEDMIX_RATE_LIMIT_WINDOW_SECONDS", "900"))
SEEDMIX_RATE_LIMIT_PATH_PREFIX = "/api/"

SEEDMIX_LOG_LEVEL = os.getenv("SEEDMIX_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "generator": {
            "handlers": ["console"],
            "level": SEEDMIX_LOG_LEVEL,
            "propagate": False,
        },
        # spotipy logs every retried request at warning level.
        "spotipy": {
            "handlers": ["console"],
            "level": "ERROR",
            "propagate": False,
        },
    },
}
