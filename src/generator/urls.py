"""URL routes for the playlist and Spotify catalog JSON API."""

from django.urls import path

from . import views

playlist_patterns = [
    path("generate/", views.generate_playlist, name="generate_playlist"),
    path("", views.list_playlists, name="list_playlists"),
    path("my-playlists/", views.list_playlists, name="my_playlists"),
    path("<str:playlist_id>/", views.playlist_detail, name="playlist_detail"),
    path("<str:playlist_id>/export-to-spotify/", views.export_playlist, name="export_playlist"),
]

spotify_patterns = [
    path("search/", views.search_catalog, name="search_catalog"),
    path("track/<str:track_id>/", views.track_detail, name="track_detail"),
    path("track/<str:track_id>/features/", views.track_features, name="track_features"),
    path("recommendations/", views.recommendations, name="recommendations"),
    # GET endpoint for the listener's top artists or tracks
    path("me/top/<str:item_type>/", views.top_items, name="top_items"),
]
