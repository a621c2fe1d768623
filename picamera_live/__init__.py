"""
picamera-live

Records a camera in fixed-length segments and serves the newest ones as a
live HLS stream.
"""

__version__ = "1.0.0"

from .utils.config import load_config, get_config, Config
from .utils.logger import setup_logging, get_logger
from .main import CameraServer, main

__all__ = [
    'load_config',
    'get_config',
    'Config',
    'setup_logging',
    'get_logger',
    'CameraServer',
    'main',
]
