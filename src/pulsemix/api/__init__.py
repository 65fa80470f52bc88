"""
FastAPI server for PulseMix.

Serves the browser client: wearable sync, mood, playlists and the
Spotify / WHOOP authorization redirects.
"""

from .server import create_app, main

__all__ = ["create_app", "main"]
