"""
Capture module for picamera-live.

Handles the camera capture process, chunk draining and FFmpeg remuxing.
"""

from .monitor import (
    CaptureMonitor,
    MockCaptureMonitor,
    CaptureSession,
    Subscriber,
    create_capture_monitor,
)
from .remux import remux_chunk, converted_path

__all__ = [
    'CaptureMonitor',
    'MockCaptureMonitor',
    'CaptureSession',
    'Subscriber',
    'create_capture_monitor',
    'remux_chunk',
    'converted_path',
]
