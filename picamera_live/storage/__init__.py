"""
Storage module for picamera-live.

Handles the segment store and live playlist generation.
"""

from .segment_store import SegmentStore, load_segments, create_segment_store
from .playlist import (
    Playlist,
    PlaylistGenerator,
    generate_playlist,
    playlist_segment_count,
)

__all__ = [
    'SegmentStore',
    'load_segments',
    'create_segment_store',
    'Playlist',
    'PlaylistGenerator',
    'generate_playlist',
    'playlist_segment_count',
]
