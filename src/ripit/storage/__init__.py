"""Persistent storage for the media queue."""
