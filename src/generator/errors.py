"""Exception types raised by the playlist generation pipeline."""

from typing import Optional


class SeedMixError(Exception):
    """Base class for generator errors."""


class CatalogError(SeedMixError):
    """Raised when talking to the Spotify catalog fails for any reason."""

    def __init__(self, reason: str, status: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status = status

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_forbidden(self) -> bool:
        return self.status == 403


class EmptyRecommendations(SeedMixError):
    """Every fallback tier came back empty; there is nothing to persist."""

    user_message = "No recommendations found. Try a different seed track."


class MetadataResolutionFailure(SeedMixError):
    """A single track's metadata could not be resolved."""

    def __init__(self, track_id: str, reason: str):
        super().__init__(f"Could not resolve track {track_id}: {reason}")
        self.track_id = track_id
        self.reason = reason


class NamingFailure(SeedMixError):
    """The text-generation capability produced no usable title or description."""


class PersistenceError(SeedMixError):
    """Writing or reading playlist documents failed."""

    user_message = "Failed to generate playlist."
