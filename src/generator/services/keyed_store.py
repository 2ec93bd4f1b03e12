"""Small keyed store with expiry, backed by Django's cache framework."""

from typing import Any, Optional

from django.core.cache import caches


class KeyedStore:
    """Namespaced put/get/delete over a configured Django cache alias."""

    def __init__(self, namespace: str, *, alias: str = "default", default_ttl: int = 300):
        self.namespace = namespace
        self.alias = alias
        self.default_ttl = default_ttl

    @property
    def _cache(self):
        return caches[self.alias]

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        timeout = self.default_ttl if ttl is None else ttl
        self._cache.set(self._key(key), value, timeout=timeout)

    def get(self, key: str) -> Optional[Any]:
        return self._cache.get(self._key(key))

    def delete(self, key: str) -> None:
        self._cache.delete(self._key(key))
