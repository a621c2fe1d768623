"""
Tests for capture supervision, draining and remuxing.
"""

import subprocess
import time
from datetime import timedelta
from pathlib import Path

import pytest

from picamera_live.capture import monitor as monitor_module
from picamera_live.capture import remux
from picamera_live.capture.monitor import CaptureMonitor, MockCaptureMonitor, create_capture_monitor
from picamera_live.state.models import CaptureState
from picamera_live.utils.exceptions import CaptureProcessError, ConversionError, StorageError


class RecordingSubscriber:
    """Subscriber that remembers what it was handed."""

    def __init__(self):
        self.calls = []

    def video_recorded(self, file_path, created, modified):
        self.calls.append((file_path.name, file_path.read_bytes(), created, modified))


class FailingSubscriber:
    def video_recorded(self, file_path, created, modified):
        raise StorageError("disk full")


class CommandMonitor(CaptureMonitor):
    """Capture monitor running an arbitrary command instead of raspivid."""

    def __init__(self, config, command):
        super().__init__(config)
        self._command = command

    def _build_capture_command(self):
        return list(self._command)


def fake_remux(chunk_path, timeout=60):
    output = remux.converted_path(chunk_path)
    output.write_bytes(b'ts:' + chunk_path.read_bytes())
    return output


def write_chunks(work_dir, numbers):
    for number in numbers:
        (work_dir / f'segment{number:012d}.h264').write_bytes(f'chunk{number}'.encode())


@pytest.fixture
def monitor(config, monkeypatch):
    monkeypatch.setattr(monitor_module, 'remux_chunk', fake_remux)
    return CaptureMonitor(config)


class TestDrain:
    """Test a single drain pass."""

    def test_publishes_all_but_newest(self, monitor):
        """Test chunks 0 and 1 are published and removed while 2 stays."""
        subscriber = RecordingSubscriber()
        monitor.add_subscriber(subscriber)
        write_chunks(monitor.work_dir, [0, 1, 2])

        published = monitor.drain()

        assert published == 2
        assert [call[0] for call in subscriber.calls] == [
            'segment000000000000.ts',
            'segment000000000001.ts',
        ]
        assert [call[1] for call in subscriber.calls] == [b'ts:chunk0', b'ts:chunk1']
        remaining = sorted(p.name for p in monitor.work_dir.iterdir() if p.suffix in ('.h264', '.ts'))
        assert remaining == ['segment000000000002.h264']

    def test_nominal_duration(self, monitor):
        """Test modified time is created time plus the configured duration."""
        subscriber = RecordingSubscriber()
        monitor.add_subscriber(subscriber)
        write_chunks(monitor.work_dir, [0, 1])

        monitor.drain()

        _, _, created, modified = subscriber.calls[0]
        assert modified - created == timedelta(seconds=5)

    @pytest.mark.parametrize('numbers', [[], [0]])
    def test_fewer_than_two_chunks(self, monitor, numbers):
        """Test the chunk being written is never touched."""
        subscriber = RecordingSubscriber()
        monitor.add_subscriber(subscriber)
        write_chunks(monitor.work_dir, numbers)

        assert monitor.drain() == 0
        assert subscriber.calls == []
        assert len(monitor.list_chunks()) == len(numbers)

    def test_conversion_failure_aborts_pass(self, monitor, monkeypatch):
        """Test a failed chunk is discarded and later chunks wait for the next pass."""
        subscriber = RecordingSubscriber()
        monitor.add_subscriber(subscriber)
        write_chunks(monitor.work_dir, [0, 1, 2])

        def failing_remux(chunk_path, timeout=60):
            if chunk_path.name.startswith('segment000000000000'):
                remux.converted_path(chunk_path).write_bytes(b'partial')
                raise ConversionError("bad chunk")
            return fake_remux(chunk_path)

        monkeypatch.setattr(monitor_module, 'remux_chunk', failing_remux)

        assert monitor.drain() == 0
        assert subscriber.calls == []
        assert monitor.conversion_errors == 1
        assert [p.name for p in monitor.list_chunks()] == [
            'segment000000000001.h264',
            'segment000000000002.h264',
        ]
        assert not (monitor.work_dir / 'segment000000000000.ts').exists()

        assert monitor.drain() == 1
        assert [call[0] for call in subscriber.calls] == ['segment000000000001.ts']

    def test_subscriber_error_does_not_stop_others(self, monitor):
        subscriber = RecordingSubscriber()
        monitor.add_subscriber(FailingSubscriber())
        monitor.add_subscriber(subscriber)
        write_chunks(monitor.work_dir, [0, 1])

        assert monitor.drain() == 1
        assert len(subscriber.calls) == 1
        assert monitor.list_chunks()[0].name == 'segment000000000001.h264'

    def test_publishes_into_store(self, monitor, store):
        """Test the store records each drained chunk as a segment."""
        monitor.add_subscriber(store)
        write_chunks(monitor.work_dir, [0, 1, 2, 3])

        monitor.drain()

        segments = store.latest_segments(10)
        assert [s.id for s in segments] == [1, 2, 3]
        assert all(s.duration == timedelta(seconds=5) for s in segments)
        assert (store.segment_dir / segments[0].name).read_bytes() == b'ts:chunk0'

    def test_chunk_published_once_when_removal_fails(self, monitor, store, monkeypatch):
        """Test a chunk that cannot be removed is not handed out and later republished."""
        monitor.add_subscriber(store)
        write_chunks(monitor.work_dir, [0, 1])

        original_unlink = Path.unlink
        failures = []

        def unlink(path, *args, **kwargs):
            if path.suffix == '.h264' and not failures:
                failures.append(path)
                raise PermissionError(13, 'Permission denied', str(path))
            return original_unlink(path, *args, **kwargs)

        monkeypatch.setattr(Path, 'unlink', unlink)

        with pytest.raises(StorageError):
            monitor.drain()
        assert store.segment_count == 0
        assert not (monitor.work_dir / 'segment000000000000.ts').exists()

        assert monitor.drain() == 1
        assert monitor.drain() == 0
        assert [s.id for s in store.latest_segments(10)] == [1]

    def test_unexpected_subscriber_error(self, monitor):
        """Test a subscriber bug cannot cause the same chunk to be published again."""
        class BrokenSubscriber:
            def video_recorded(self, file_path, created, modified):
                raise RuntimeError("bug")

        subscriber = RecordingSubscriber()
        monitor.add_subscriber(subscriber)
        monitor.add_subscriber(BrokenSubscriber())
        write_chunks(monitor.work_dir, [0, 1])

        with pytest.raises(RuntimeError):
            monitor.drain()

        assert monitor.drain() == 0
        assert len(subscriber.calls) == 1
        assert not (monitor.work_dir / 'segment000000000000.ts').exists()
        assert [p.name for p in monitor.list_chunks()] == ['segment000000000001.h264']


class TestLifecycle:
    """Test starting and stopping the capture process."""

    def test_start_and_stop(self, config):
        monitor = CommandMonitor(config, ['sleep', '30'])

        monitor.start()
        try:
            assert monitor.state == CaptureState.RUNNING
            assert monitor.is_running
        finally:
            exit_code = monitor.stop()

        assert exit_code is not None
        assert monitor.state == CaptureState.IDLE

    def test_stop_is_idempotent(self, config):
        monitor = CommandMonitor(config, ['sleep', '30'])
        monitor.start()

        assert monitor.stop() is not None
        assert monitor.stop() is None

    def test_stop_when_idle(self, config):
        assert CaptureMonitor(config).stop() is None

    def test_start_twice(self, config):
        monitor = CommandMonitor(config, ['sleep', '30'])
        monitor.start()
        try:
            with pytest.raises(CaptureProcessError):
                monitor.start()
        finally:
            monitor.stop()

    def test_start_purges_leftovers(self, config):
        monitor = CommandMonitor(config, ['sleep', '30'])
        write_chunks(monitor.work_dir, [0, 1])
        (monitor.work_dir / 'segment000000000000.ts').write_bytes(b'old')

        monitor.start()
        try:
            assert monitor.list_chunks() == []
            assert not (monitor.work_dir / 'segment000000000000.ts').exists()
        finally:
            monitor.stop()

    def test_start_keeps_stored_segments(self, config):
        """Test segments sharing the working directory survive the purge."""
        monitor = CommandMonitor(config, ['sleep', '30'])
        write_chunks(monitor.work_dir, [0])
        stored = monitor.work_dir / 'segment_1700000000_5000_1.ts'
        stored.write_bytes(b'keep')

        monitor.start()
        try:
            assert monitor.list_chunks() == []
            assert stored.read_bytes() == b'keep'
        finally:
            monitor.stop()

    def test_missing_command(self, config):
        """Test a launch failure leaves the monitor idle."""
        monitor = CommandMonitor(config, ['picamera-live-no-such-command'])

        with pytest.raises(CaptureProcessError):
            monitor.start()

        assert monitor.state == CaptureState.IDLE

    def test_exit_during_startup(self, config):
        config.set('capture.startup_grace', 2)
        monitor = CommandMonitor(config, ['sh', '-c', 'echo no camera >&2; exit 3'])

        with pytest.raises(CaptureProcessError) as exc_info:
            monitor.start()

        assert exc_info.value.exit_code == 3
        assert 'no camera' in str(exc_info.value)
        assert monitor.state == CaptureState.IDLE

    def test_restart_after_stop(self, config):
        monitor = CommandMonitor(config, ['sleep', '30'])

        monitor.start()
        monitor.stop()
        monitor.start()
        try:
            assert monitor.is_running
        finally:
            monitor.stop()

    def test_drain_loop_publishes(self, config, monkeypatch):
        """Test the background loop drains chunks while running."""
        monkeypatch.setattr(monitor_module, 'remux_chunk', fake_remux)
        monitor = CommandMonitor(config, ['sleep', '30'])
        subscriber = RecordingSubscriber()
        monitor.add_subscriber(subscriber)

        monitor.start()
        try:
            write_chunks(monitor.work_dir, [0, 1, 2])

            deadline = time.monotonic() + 5
            while monitor.chunks_published < 2 and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            monitor.stop()

        assert [call[0] for call in subscriber.calls] == [
            'segment000000000000.ts',
            'segment000000000001.ts',
        ]
        assert monitor.chunks_published == 2
        assert monitor.last_published is not None


class TestCommands:
    """Test command construction."""

    def test_raspivid_command(self, config):
        monitor = CaptureMonitor(config)

        cmd = monitor._build_capture_command()

        assert cmd[0] == 'raspivid'
        assert cmd[cmd.index('--segment') + 1] == '5000'
        assert cmd[cmd.index('--width') + 1] == '640'
        assert cmd[cmd.index('-b') + 1] == '4000000'
        assert cmd[-1].endswith('segment%012d.h264')

    def test_mock_command(self, config):
        monitor = create_capture_monitor(config, mock=True)

        cmd = monitor._build_capture_command()

        assert isinstance(monitor, MockCaptureMonitor)
        assert monitor.is_mock
        assert cmd[0] == 'ffmpeg'
        assert 'lavfi' in cmd
        assert cmd[cmd.index('-segment_format') + 1] == 'h264'
        assert cmd[-1] == str(monitor.chunk_pattern)

    def test_factory_default(self, config):
        monitor = create_capture_monitor(config)

        assert type(monitor) is CaptureMonitor
        assert not monitor.is_mock


class TestRemux:
    """Test FFmpeg remuxing."""

    def test_command_copies_streams(self, tmp_path):
        cmd = remux.build_remux_command(tmp_path / 'a.h264', tmp_path / 'a.ts')

        assert cmd[0] == 'ffmpeg'
        assert cmd[cmd.index('-codec') + 1] == 'copy'
        assert cmd[-1] == str(tmp_path / 'a.ts')

    def test_converted_path(self, tmp_path):
        assert remux.converted_path(tmp_path / 'segment000000000001.h264') == \
            tmp_path / 'segment000000000001.ts'

    def test_success(self, tmp_path, monkeypatch):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 0, stdout='', stderr='')

        monkeypatch.setattr(remux.subprocess, 'run', fake_run)

        assert remux.remux_chunk(tmp_path / 'a.h264') == tmp_path / 'a.ts'

    def test_nonzero_exit(self, tmp_path, monkeypatch):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 1, stdout='', stderr='Invalid data found')

        monkeypatch.setattr(remux.subprocess, 'run', fake_run)

        with pytest.raises(ConversionError) as exc_info:
            remux.remux_chunk(tmp_path / 'a.h264')

        assert 'Invalid data found' in str(exc_info.value)

    def test_ffmpeg_missing(self, tmp_path, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(remux.subprocess, 'run', fake_run)

        with pytest.raises(ConversionError):
            remux.remux_chunk(tmp_path / 'a.h264')
