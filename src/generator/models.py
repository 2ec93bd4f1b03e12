"""Data models for the generator app."""

import uuid

from django.db import models
from django.utils import timezone


class Playlist(models.Model):
    """A generated playlist owned by a single Spotify user."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner_id = models.CharField(max_length=128, db_index=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    # List of {spotifyId, name, artist, album, duration, albumArt, previewUrl}.
    tracks = models.JSONField(default=list, blank=True)
    seed_tracks = models.JSONField(default=list, blank=True)
    generation_params = models.JSONField(default=dict, blank=True)
    total_duration = models.BigIntegerField(default=0)
    remote_playlist_id = models.CharField(max_length=64, blank=True, null=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=("owner_id", "-created_at"), name="generator_owner_created_idx"),
        ]
        ordering = ("-created_at",)

    @property
    def track_count(self) -> int:
        return len(self.tracks or [])

    def as_dict(self) -> dict:
        """Serialize the playlist into the camelCase document shape used by clients."""
        return {
            "id": str(self.id),
            "ownerId": self.owner_id,
            "name": self.name,
            "description": self.description,
            "tracks": list(self.tracks or []),
            "seedTracks": list(self.seed_tracks or []),
            "generationParams": dict(self.generation_params or {}),
            "totalDuration": self.total_duration,
            "remotePlaylistId": self.remote_playlist_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __str__(self) -> str:
        return f"{self.name} ({self.owner_id})"
