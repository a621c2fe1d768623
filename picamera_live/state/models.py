"""
Data models for picamera-live.

Defines segments, their on-disk naming scheme, capture states and health status.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ..utils.exceptions import SegmentNameError


SEGMENT_PREFIX = 'segment'
SEGMENT_EXTENSION = '.ts'


def segment_file_name(
    created_at_seconds: int,
    duration_ms: int,
    segment_id: int,
    extension: str = SEGMENT_EXTENSION
) -> str:
    """
    Build the canonical segment file name.

    Format: ``segment_<unixSeconds>_<durationMs>_<id><extension>``
    """
    return f"{SEGMENT_PREFIX}_{created_at_seconds}_{duration_ms}_{segment_id}{extension}"


def parse_segment_file_name(name: str) -> tuple[int, int, int]:
    """
    Parse a canonical segment file name.

    Args:
        name: File name, e.g. ``segment_1700000000_5000_42.ts``

    Returns:
        Tuple of (created_at_seconds, duration_ms, segment_id)

    Raises:
        SegmentNameError: If the name does not follow the naming scheme
    """
    parts = name.split('.')[0].split('_')
    if len(parts) != 4 or parts[0] != SEGMENT_PREFIX:
        raise SegmentNameError(f"Invalid segment file name: {name}")

    fields = parts[1:]
    # Plain base-10 digits only: no signs, whitespace or underscores
    if not all(field.isascii() and field.isdigit() for field in fields):
        raise SegmentNameError(f"Invalid segment file name: {name}")

    created_at_seconds, duration_ms, segment_id = (int(field) for field in fields)
    return created_at_seconds, duration_ms, segment_id


@dataclass(frozen=True)
class Segment:
    """
    A playable, already-converted unit of recorded video.

    Segments are identified by a store-assigned integer id that is never reused.
    """

    id: int
    name: str
    created_at: datetime
    duration: timedelta

    @classmethod
    def create(
        cls,
        segment_id: int,
        created_at: datetime,
        duration: timedelta,
        extension: str = SEGMENT_EXTENSION
    ) -> 'Segment':
        """Create a segment with its canonical file name."""
        name = segment_file_name(
            int(created_at.timestamp()),
            duration // timedelta(milliseconds=1),
            segment_id,
            extension
        )
        return cls(id=segment_id, name=name, created_at=created_at, duration=duration)

    @classmethod
    def from_file_name(cls, name: str) -> 'Segment':
        """
        Create a segment from a file name found on disk.

        Raises:
            SegmentNameError: If the name does not follow the naming scheme
        """
        created_at_seconds, duration_ms, segment_id = parse_segment_file_name(name)
        return cls(
            id=segment_id,
            name=name,
            created_at=datetime.fromtimestamp(created_at_seconds),
            duration=timedelta(milliseconds=duration_ms),
        )

    @property
    def duration_seconds(self) -> float:
        """Get duration in fractional seconds."""
        return self.duration.total_seconds()


class CaptureState(Enum):
    """States of the capture monitor."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class HealthStatus:
    """Health status of the running server."""

    capture_state: CaptureState = CaptureState.IDLE
    mock_capture: bool = False
    server_running: bool = False

    last_segment_id: int = 0
    segment_count: int = 0
    last_published: Optional[datetime] = None

    disk_usage_mb: float = 0.0
    disk_limit_mb: float = 0.0

    segments_published: int = 0
    conversion_errors: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            'capture_state': self.capture_state.value,
            'mock_capture': self.mock_capture,
            'server_running': self.server_running,
            'last_segment_id': self.last_segment_id,
            'segment_count': self.segment_count,
            'last_published': self.last_published.isoformat() if self.last_published else None,
            'disk_usage_mb': round(self.disk_usage_mb, 2),
            'disk_limit_mb': self.disk_limit_mb,
            'segments_published': self.segments_published,
            'conversion_errors': self.conversion_errors,
            'healthy': self.is_healthy,
        }

    @property
    def is_healthy(self) -> bool:
        """Capture is running and the segment directory is within its limit."""
        if self.capture_state != CaptureState.RUNNING:
            return False
        if self.disk_limit_mb and self.disk_usage_mb > self.disk_limit_mb:
            return False
        return True
