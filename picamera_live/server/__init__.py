"""
Server module for picamera-live.

Provides the HLS streaming server.
"""

from .hls_server import HLSServer, create_hls_server

__all__ = [
    'HLSServer',
    'create_hls_server',
]
