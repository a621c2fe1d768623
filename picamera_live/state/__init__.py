"""
State module for picamera-live.
"""

from .models import (
    Segment,
    CaptureState,
    HealthStatus,
    segment_file_name,
    parse_segment_file_name,
)

__all__ = [
    'Segment',
    'CaptureState',
    'HealthStatus',
    'segment_file_name',
    'parse_segment_file_name',
]
