"""Finds Twitch VOD playlists and clips by probing the CDN."""

__version__ = "0.11.0"
