"""Admin configuration for the generator app."""

from django.contrib import admin

from .models import Playlist


@admin.register(Playlist)
class PlaylistAdmin(admin.ModelAdmin):
    """Read-mostly admin view over generated playlists."""

    list_display = ("name", "owner_id", "total_duration", "remote_playlist_id", "created_at")
    search_fields = ("name", "owner_id", "remote_playlist_id")
    list_filter = ("created_at",)
    readonly_fields = ("created_at",)
