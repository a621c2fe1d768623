"""
Capture process supervision and chunk draining.

Runs the camera capture process, which writes fixed-length raw H.264 chunks
into a working directory, and periodically converts finished chunks into
MPEG-TS segments that are handed to subscribers.
"""

import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from threading import Event, Thread
from typing import Optional, Protocol

from ..utils.config import Config
from ..utils.exceptions import (
    CaptureProcessError,
    ConversionError,
    StorageError,
    StreamError,
)
from ..utils.logger import get_logger
from ..state.models import CaptureState
from .remux import RAW_CHUNK_EXTENSION, CONVERTED_EXTENSION, converted_path, remux_chunk


logger = get_logger(__name__)

# Fixed-width sequence number keeps lexical order equal to capture order
CHUNK_PATTERN = 'segment%012d' + RAW_CHUNK_EXTENSION
# Chunk file stem; stored segment names never match it
CHUNK_GLOB = 'segment' + '[0-9]' * 12
CAPTURE_LOG = 'capture.log'


class Subscriber(Protocol):
    """Receives each converted segment file exactly once."""

    def video_recorded(self, file_path: Path, created: datetime, modified: datetime) -> None:
        ...


@dataclass
class CaptureSession:
    """A running capture process and the signal that stops its drain loop."""
    process: subprocess.Popen
    stop_event: Event = field(default_factory=Event)
    started_at: datetime = field(default_factory=datetime.now)
    exit_reported: bool = False


class CaptureMonitor:
    """
    Supervises the camera capture process and drains its output.

    Lifecycle: IDLE -> STARTING -> RUNNING -> STOPPING -> IDLE.
    Subscribers should be registered before ``start()``.
    """

    is_mock = False

    def __init__(self, config: Config):
        """
        Initialize capture monitor.

        Args:
            config: Application configuration
        """
        self.config = config
        self.work_dir = config.get_work_dir()

        capture = config.get_capture_config()
        self.segment_duration = config.get_segment_duration()
        self.command = capture.get('command', 'raspivid')
        self.width = capture.get('width', 640)
        self.height = capture.get('height', 480)
        self.bit_rate = capture.get('bit_rate', 4000000)
        self.framerate = capture.get('framerate', 25)
        self.drain_interval = capture.get('drain_interval', 1.0)
        self.startup_grace = capture.get('startup_grace', 1.0)
        self.stop_timeout = capture.get('stop_timeout', 10)

        self._subscribers: list[Subscriber] = []
        self._session: Optional[CaptureSession] = None
        self._state = CaptureState.IDLE
        self._lock = threading.Lock()
        self._thread: Optional[Thread] = None

        # Stats
        self._chunks_published = 0
        self._conversion_errors = 0
        self._last_published: Optional[datetime] = None

    @property
    def state(self) -> CaptureState:
        """Get current lifecycle state."""
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        """Check if a capture session is running."""
        return self.state == CaptureState.RUNNING

    @property
    def chunks_published(self) -> int:
        return self._chunks_published

    @property
    def conversion_errors(self) -> int:
        return self._conversion_errors

    @property
    def last_published(self) -> Optional[datetime]:
        return self._last_published

    @property
    def chunk_pattern(self) -> Path:
        """Output pattern handed to the capture process."""
        return self.work_dir / CHUNK_PATTERN

    def add_subscriber(self, subscriber: Subscriber) -> None:
        """Register a subscriber for converted segments."""
        self._subscribers.append(subscriber)

    def _build_capture_command(self) -> list[str]:
        """Build the raspivid command that writes segmented raw H.264."""
        return [
            self.command,
            '--segment', str(int(self.segment_duration * 1000)),
            '--timeout', '0',
            '--width', str(self.width),
            '--height', str(self.height),
            '-b', str(self.bit_rate),
            '-o', str(self.chunk_pattern),
        ]

    def list_chunks(self) -> list[Path]:
        """
        List raw chunks in capture order.

        Raises:
            StorageError: If the working directory cannot be listed
        """
        try:
            return sorted(self.work_dir.glob(CHUNK_GLOB + RAW_CHUNK_EXTENSION))
        except OSError as e:
            raise StorageError(f"Cannot list {self.work_dir}: {e}")

    def purge_chunks(self) -> int:
        """
        Delete raw chunks and intermediate files left by an earlier session.

        Returns:
            Number of files deleted
        """
        purged = 0
        try:
            for pattern in (CHUNK_GLOB + RAW_CHUNK_EXTENSION, CHUNK_GLOB + CONVERTED_EXTENSION):
                for path in self.work_dir.glob(pattern):
                    path.unlink()
                    purged += 1
        except OSError as e:
            raise StorageError(f"Cannot clean {self.work_dir}: {e}")

        if purged:
            logger.info(f"Removed {purged} leftover files from {self.work_dir}")
        return purged

    def _read_capture_log(self, limit: int = 500) -> str:
        try:
            return (self.work_dir / CAPTURE_LOG).read_text(errors='replace')[-limit:].strip()
        except OSError:
            return ""

    def _launch(self) -> subprocess.Popen:
        """Launch the capture process and make sure it survives startup."""
        cmd = self._build_capture_command()
        logger.info(f"Starting capture: {' '.join(cmd)}")

        try:
            with open(self.work_dir / CAPTURE_LOG, 'wb') as log_file:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=log_file,
                    cwd=str(self.work_dir),
                    # Use process group for clean shutdown
                    preexec_fn=os.setsid if os.name != 'nt' else None
                )
        except FileNotFoundError:
            raise CaptureProcessError(f"{cmd[0]} not found")
        except OSError as e:
            raise CaptureProcessError(f"Failed to start {cmd[0]}: {e}")

        if self.startup_grace > 0:
            try:
                exit_code = process.wait(timeout=self.startup_grace)
            except subprocess.TimeoutExpired:
                exit_code = None

            if exit_code is not None:
                output = self._read_capture_log() or "no output"
                raise CaptureProcessError(
                    f"{cmd[0]} exited during startup (exit code {exit_code}): {output}",
                    exit_code=exit_code
                )

        logger.info(f"Capture started (PID: {process.pid})")
        return process

    def start(self) -> None:
        """
        Start capturing and draining.

        Raises:
            CaptureProcessError: If not idle or the capture process fails to start
            StorageError: If leftover chunks cannot be removed
        """
        with self._lock:
            if self._state != CaptureState.IDLE:
                raise CaptureProcessError(f"Capture already {self._state.value}")
            self._state = CaptureState.STARTING

        try:
            self.purge_chunks()
            session = CaptureSession(process=self._launch())
        except StreamError:
            with self._lock:
                self._state = CaptureState.IDLE
            raise

        with self._lock:
            self._session = session
            self._state = CaptureState.RUNNING

        self._thread = Thread(
            target=self._drain_loop,
            args=(session,),
            daemon=True,
            name="capture-drain"
        )
        self._thread.start()

    def stop(self) -> Optional[int]:
        """
        Stop the capture process and wait for it to exit.

        Calling stop when not running does nothing.

        Returns:
            Exit code of the capture process, or None if nothing was running
        """
        with self._lock:
            if self._state != CaptureState.RUNNING or self._session is None:
                return None
            session = self._session
            self._session = None
            self._state = CaptureState.STOPPING

        session.stop_event.set()

        try:
            exit_code = self._terminate(session.process)
        finally:
            with self._lock:
                self._state = CaptureState.IDLE

        logger.info(f"Capture stopped (exit code: {exit_code})")
        return exit_code

    def _terminate(self, process: subprocess.Popen) -> int:
        """Interrupt the capture process group, escalating to SIGKILL."""
        if process.poll() is not None:
            return process.returncode

        try:
            if os.name != 'nt':
                os.killpg(os.getpgid(process.pid), signal.SIGINT)
            else:
                process.terminate()
        except ProcessLookupError:
            return process.wait()

        try:
            return process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Capture process not responding, force killing...")
            try:
                if os.name != 'nt':
                    os.killpg(os.getpgid(process.pid), signal.SIGKILL)
                else:
                    process.kill()
            except ProcessLookupError:
                pass
            return process.wait()

    def _drain_loop(self, session: CaptureSession) -> None:
        """Drain finished chunks until the session is stopped."""
        while not session.stop_event.is_set():
            self._check_process(session)

            try:
                self.drain()
            except Exception as e:
                logger.error(f"Error when checking files: {e}")

            session.stop_event.wait(self.drain_interval)

    def _check_process(self, session: CaptureSession) -> None:
        """Report a capture process that exited on its own, once per session."""
        exit_code = session.process.poll()
        if exit_code is None or session.exit_reported or session.stop_event.is_set():
            return

        session.exit_reported = True
        logger.error(
            f"Capture process exited unexpectedly (exit code {exit_code}): "
            f"{self._read_capture_log() or 'no output'}"
        )

    def drain(self) -> int:
        """
        Convert and publish every finished chunk.

        The newest chunk is still being written and is left alone. A
        conversion failure discards that chunk and ends the pass.

        Returns:
            Number of chunks published

        Raises:
            StorageError: If the working directory cannot be listed or cleaned
        """
        chunks = self.list_chunks()
        if len(chunks) < 2:
            return 0

        published = 0
        for chunk in chunks[:-1]:
            try:
                output = remux_chunk(chunk)
            except ConversionError as e:
                self._conversion_errors += 1
                logger.error(f"Discarding chunk {chunk.name}: {e}")
                self._remove(chunk, converted_path(chunk))
                break

            # Remove the raw chunk before notifying so it is published at most once
            try:
                self._remove(chunk)
            except StorageError:
                self._remove(output)
                raise

            # Capture start time is not tracked; assume the nominal duration
            created = datetime.now()
            modified = created + timedelta(seconds=self.segment_duration)
            try:
                self._publish(output, created, modified)
            finally:
                self._remove(output)
            published += 1

        return published

    def _publish(self, file_path: Path, created: datetime, modified: datetime) -> None:
        for subscriber in self._subscribers:
            try:
                subscriber.video_recorded(file_path, created, modified)
            except StreamError as e:
                logger.error(f"Error when adding segment from {file_path.name}: {e}")

        self._chunks_published += 1
        self._last_published = created

    def _remove(self, *paths: Path) -> None:
        try:
            for path in paths:
                path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot remove {path}: {e}")


class MockCaptureMonitor(CaptureMonitor):
    """
    Capture monitor fed by an FFmpeg test pattern instead of a camera.

    Used when the camera cannot be started, e.g. during development.
    """

    is_mock = True

    def _build_capture_command(self) -> list[str]:
        """Build FFmpeg command that writes a segmented raw H.264 test pattern."""
        duration = self.segment_duration
        return [
            'ffmpeg',
            '-hide_banner',
            '-loglevel', 'error',
            '-nostats',
            '-re',
            '-f', 'lavfi',
            '-i', f'testsrc=size={self.width}x{self.height}:rate={self.framerate}',
            '-c:v', 'libx264',
            '-preset', 'ultrafast',
            '-tune', 'zerolatency',
            '-pix_fmt', 'yuv420p',
            '-b:v', str(self.bit_rate),
            '-force_key_frames', f'expr:gte(t,n_forced*{duration})',
            '-f', 'segment',
            '-segment_time', str(duration),
            '-segment_format', 'h264',
            str(self.chunk_pattern),
        ]


def create_capture_monitor(config: Config, mock: bool = False) -> CaptureMonitor:
    """
    Factory function to create a capture monitor.

    Args:
        config: Application configuration
        mock: Use the FFmpeg test pattern instead of the camera

    Returns:
        CaptureMonitor instance
    """
    if mock:
        return MockCaptureMonitor(config)
    return CaptureMonitor(config)
