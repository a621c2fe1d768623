"""
Shared fixtures.
"""

from datetime import datetime, timedelta

import pytest

from picamera_live.utils.config import Config
from picamera_live.storage.segment_store import SegmentStore


@pytest.fixture
def config(tmp_path):
    """Configuration rooted in a temporary directory."""
    return Config({
        'paths': {'base_dir': str(tmp_path / 'base')},
        'capture': {
            'segment_duration': 5,
            'drain_interval': 0.05,
            'startup_grace': 0,
            'stop_timeout': 5,
        },
        'storage': {'max_size_mb': 0},
    })


@pytest.fixture
def segments_dir(tmp_path):
    path = tmp_path / 'segments'
    path.mkdir()
    return path


@pytest.fixture
def store(segments_dir):
    return SegmentStore(segments_dir, max_size_mb=0)


@pytest.fixture
def make_source(tmp_path):
    """Factory writing a converted segment file to publish."""
    counter = {'n': 0}

    def _make(content: bytes = b'video data'):
        counter['n'] += 1
        path = tmp_path / f'converted_{counter["n"]}.ts'
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def timestamps():
    created = datetime(2024, 1, 1, 12, 0, 0)
    return created, created + timedelta(seconds=5)
