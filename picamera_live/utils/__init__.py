"""
Utilities module for picamera-live.
"""

from .config import load_config, get_config, Config
from .logger import setup_logging, get_logger
from .exceptions import (
    StreamError,
    ConfigurationError,
    StorageError,
    SegmentIntegrityError,
    SegmentNameError,
    CaptureError,
    ConversionError,
    CaptureProcessError,
    CertificateError,
)

__all__ = [
    'load_config',
    'get_config',
    'Config',
    'setup_logging',
    'get_logger',
    'StreamError',
    'ConfigurationError',
    'StorageError',
    'SegmentIntegrityError',
    'SegmentNameError',
    'CaptureError',
    'ConversionError',
    'CaptureProcessError',
    'CertificateError',
]
