"""Owner-scoped persistence for generated playlists."""

import logging
import uuid
from typing import Dict, List, Optional

from django.db import DatabaseError, transaction

from ..errors import PersistenceError
from ..models import Playlist

logger = logging.getLogger(__name__)


def _as_uuid(playlist_id) -> Optional[uuid.UUID]:
    if isinstance(playlist_id, uuid.UUID):
        return playlist_id
    try:
        return uuid.UUID(str(playlist_id))
    except (TypeError, ValueError):
        return None


class PlaylistStore:
    """Every lookup is filtered by owner; a playlist owned by someone else reads as missing."""

    def insert(
        self,
        *,
        owner_id: str,
        name: str,
        description: str,
        tracks: List[Dict],
        seed_tracks: List[str],
        generation_params: Dict,
    ) -> Playlist:
        total_duration = sum(int(track.get("duration") or 0) for track in tracks)
        try:
            with transaction.atomic():
                return Playlist.objects.create(
                    owner_id=owner_id,
                    name=name,
                    description=description,
                    tracks=tracks,
                    seed_tracks=seed_tracks,
                    generation_params=generation_params,
                    total_duration=total_duration,
                )
        except DatabaseError as exc:
            logger.error("Failed to save playlist for owner %s: %s", owner_id, exc)
            raise PersistenceError(str(exc)) from exc

    def find_by_owner(self, owner_id: str) -> List[Playlist]:
        try:
            return list(Playlist.objects.filter(owner_id=owner_id).order_by("-created_at"))
        except DatabaseError as exc:
            logger.error("Failed to list playlists for owner %s: %s", owner_id, exc)
            raise PersistenceError(str(exc)) from exc

    def find_one(self, playlist_id, owner_id: str) -> Optional[Playlist]:
        pk = _as_uuid(playlist_id)
        if pk is None:
            return None
        try:
            return Playlist.objects.filter(pk=pk, owner_id=owner_id).first()
        except DatabaseError as exc:
            logger.error("Failed to load playlist %s: %s", playlist_id, exc)
            raise PersistenceError(str(exc)) from exc

    def delete_one(self, playlist_id, owner_id: str) -> bool:
        pk = _as_uuid(playlist_id)
        if pk is None:
            return False
        try:
            deleted, _ = Playlist.objects.filter(pk=pk, owner_id=owner_id).delete()
        except DatabaseError as exc:
            logger.error("Failed to delete playlist %s: %s", playlist_id, exc)
            raise PersistenceError(str(exc)) from exc
        return deleted > 0

    def set_remote_playlist_id(self, playlist: Playlist, remote_playlist_id: str) -> Playlist:
        """Record the export target. An id that is already stored is never replaced."""
        try:
            updated = Playlist.objects.filter(pk=playlist.pk, remote_playlist_id__isnull=True).update(
                remote_playlist_id=remote_playlist_id
            )
            if not updated:
                logger.warning(
                    "Playlist %s was already exported; keeping the stored remote id.", playlist.pk
                )
            playlist.refresh_from_db(fields=["remote_playlist_id"])
        except DatabaseError as exc:
            logger.error("Failed to record export of playlist %s: %s", playlist.pk, exc)
            raise PersistenceError(str(exc)) from exc
        return playlist
