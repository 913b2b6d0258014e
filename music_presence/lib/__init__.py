"""Shared building blocks for the music-presence service."""
