"""
Main entry point for picamera-live.

Wires together the segment store, capture monitor and HLS server.
"""

import asyncio
import signal
import sys
from typing import Optional

import click

from .utils.config import Config, load_config
from .utils.logger import setup_from_config, get_logger
from .utils.exceptions import StreamError, ConfigurationError, CaptureProcessError
from .utils.keys import create_ssl_context
from .state.models import CaptureState, HealthStatus
from .capture.monitor import CaptureMonitor, create_capture_monitor
from .storage.segment_store import SegmentStore, create_segment_store
from .server.hls_server import HLSServer


logger = get_logger(__name__)


class CameraServer:
    """
    Top-level orchestrator.

    Manages lifecycle of:
    - Segment store (loaded from disk at startup)
    - Capture monitor (camera, or FFmpeg test pattern as fallback)
    - HLS server
    """

    def __init__(self, config: Config, https: bool = False, mock: bool = False):
        """
        Initialize server with configuration.

        Args:
            config: Application configuration
            https: Serve over TLS with a self-signed certificate
            mock: Capture a test pattern instead of the camera

        Raises:
            StorageError: If the segment directory cannot be read
        """
        self.config = config
        self.https = https
        self.mock = mock

        self.store: SegmentStore = create_segment_store(config)
        self.monitor: Optional[CaptureMonitor] = None
        self.hls_server: Optional[HLSServer] = None

        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    def _get_health_status(self) -> HealthStatus:
        """Get current health status."""
        status = HealthStatus()

        if self.monitor:
            status.capture_state = self.monitor.state
            status.mock_capture = self.monitor.is_mock
            status.segments_published = self.monitor.chunks_published
            status.conversion_errors = self.monitor.conversion_errors
            status.last_published = self.monitor.last_published

        status.server_running = self.hls_server is not None
        status.last_segment_id = self.store.last_segment_id
        status.segment_count = self.store.segment_count
        status.disk_usage_mb = self.store.disk_usage_bytes() / (1024 * 1024)
        status.disk_limit_mb = self.config.get('storage.max_size_mb', 1024)

        return status

    def start_capture(self) -> CaptureMonitor:
        """
        Start the capture monitor, falling back to the test pattern.

        Raises:
            CaptureProcessError: If neither the camera nor the fallback starts
        """
        monitor = create_capture_monitor(self.config, mock=self.mock)
        monitor.add_subscriber(self.store)

        try:
            monitor.start()
        except CaptureProcessError as e:
            if monitor.is_mock or not self.config.get('capture.mock_fallback', True):
                raise
            logger.warning(f"Unable to start recorder: {e}")
            logger.warning("Using mock recorder")

            monitor = create_capture_monitor(self.config, mock=True)
            monitor.add_subscriber(self.store)
            monitor.start()

        self.monitor = monitor
        return monitor

    async def start(self) -> None:
        """Start capture and the HTTP server."""
        logger.info("Starting picamera-live")

        self.start_capture()

        ssl_context = create_ssl_context(self.config) if self.https else None
        self.hls_server = HLSServer(
            self.config,
            self.store,
            self.monitor.segment_duration,
            health_callback=self._get_health_status,
            ssl_context=ssl_context
        )
        await self.hls_server.start()

        self._running = True

    async def stop(self) -> None:
        """Stop the HTTP server and capture."""
        logger.info("Stopping picamera-live...")

        if self.hls_server:
            await self.hls_server.stop()
            self.hls_server = None

        if self.monitor and self.monitor.state == CaptureState.RUNNING:
            await asyncio.get_running_loop().run_in_executor(None, self.monitor.stop)

        self._running = False
        logger.info("picamera-live stopped")

    def request_stop(self) -> None:
        """Ask the run loop to shut down."""
        if self._stop_event:
            self._stop_event.set()

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except NotImplementedError:
                # Not supported on Windows event loops
                pass

    def _on_signal(self, signum: int) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
        self.request_stop()

    async def run(self) -> None:
        """Run until a shutdown signal is received."""
        self._stop_event = asyncio.Event()
        self._setup_signals()

        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            await self.stop()


@click.command()
@click.option(
    '--config', '-c',
    default=None,
    help='Path to YAML configuration file'
)
@click.option(
    '--https/--http',
    default=None,
    help='Serve over HTTPS with a self-signed certificate'
)
@click.option(
    '--mock',
    is_flag=True,
    help='Capture an FFmpeg test pattern instead of the camera'
)
def main(config: Optional[str], https: Optional[bool], mock: bool):
    """
    picamera-live

    Records the camera in fixed-length segments and serves them as live HLS.
    """
    try:
        cfg = load_config(config)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    setup_from_config(cfg)

    if https is None:
        https = bool(cfg.get('server.https', False))

    try:
        server = CameraServer(cfg, https=https, mock=mock)
        asyncio.run(server.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except StreamError as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
