"""
HLS playlist generation.

Turns an ordered window of segments into a live M3U8 playlist, marking gaps
in segment ids with discontinuity tags.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Sequence

from ..state.models import Segment


PLAYLIST_CONTENT_TYPE = 'application/vnd.apple.mpegurl'
TEXT_CONTENT_TYPE = 'text/plain'

SEGMENTS_PATH = 'segments/'
MIN_PLAYLIST_SEGMENTS = 3


@dataclass(frozen=True)
class Playlist:
    """Rendered playlist and the content type it should be served with."""
    content: str
    content_type: str


class PlaylistGenerator:
    """
    Generates live HLS playlists for a window of segments.
    """

    PLAYLIST_HEADER = """#EXTM3U
#EXT-X-TARGETDURATION:{target_duration}
#EXT-X-MEDIA-SEQUENCE:{media_sequence}
"""

    DISCONTINUITY = "#EXT-X-DISCONTINUITY\n"

    SEGMENT_ENTRY = """#EXTINF:{duration:f},
{path}
"""

    def __init__(self, segments_path: str = SEGMENTS_PATH):
        self.segments_path = segments_path

    def generate(self, segments: Sequence[Segment], as_text: bool = False) -> Playlist:
        """
        Generate a live playlist.

        Args:
            segments: Segments in ascending id order
            as_text: Serve as plain text instead of an HLS playlist

        Returns:
            Playlist with content and content type
        """
        # Target duration must be an upper bound on every whole-second duration
        target_duration = max((s.duration for s in segments), default=timedelta(0))
        first_segment_id = segments[0].id if segments else 0

        content = self.PLAYLIST_HEADER.format(
            target_duration=target_duration // timedelta(seconds=1),
            media_sequence=first_segment_id
        )

        previous_id = first_segment_id - 1
        for segment in segments:
            if segment.id != previous_id + 1:
                content += self.DISCONTINUITY

            content += self.SEGMENT_ENTRY.format(
                duration=segment.duration_seconds,
                path=f"{self.segments_path}{segment.name}"
            )

            previous_id = segment.id

        return Playlist(
            content=content,
            content_type=TEXT_CONTENT_TYPE if as_text else PLAYLIST_CONTENT_TYPE
        )


def playlist_segment_count(window_seconds: float, segment_duration: float) -> int:
    """
    Number of segments needed to fill a live window.

    Never fewer than three, regardless of the window length.
    """
    count = int(window_seconds // segment_duration) if segment_duration > 0 else 0
    return max(count, MIN_PLAYLIST_SEGMENTS)


def generate_playlist(segments: Sequence[Segment], as_text: bool = False) -> Playlist:
    """
    Convenience function to generate a playlist with default settings.

    Args:
        segments: Segments in ascending id order
        as_text: Serve as plain text instead of an HLS playlist

    Returns:
        Playlist instance
    """
    return PlaylistGenerator().generate(segments, as_text)
