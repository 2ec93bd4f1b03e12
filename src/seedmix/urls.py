"""
URL configuration for the seedmix project.
"""
from django.contrib import admin
from django.urls import include, path

from generator.urls import playlist_patterns, spotify_patterns

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/playlists/', include((playlist_patterns, 'playlists'))),
    path('api/spotify/', include((spotify_patterns, 'spotify'))),
]
