"""
HLS server for live camera streaming.

Serves the live playlist, segment files, a player page and a health endpoint.
"""

import ssl
from typing import Callable, Optional

from aiohttp import web

from ..utils.config import Config
from ..utils.logger import get_logger
from ..state.models import HealthStatus
from ..storage.segment_store import SegmentStore
from ..storage.playlist import PlaylistGenerator, playlist_segment_count


logger = get_logger(__name__)

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}

INDEX_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>picamera-live</title>
    <script src="https://cdn.jsdelivr.net/npm/hls.js@latest"></script>
    <style>
        body {{ font-family: Arial, sans-serif; background: #1a1a1a; color: #fff; margin: 0; padding: 20px; }}
        video {{ max-width: 100%; background: #000; }}
        a {{ color: #4CAF50; }}
    </style>
</head>
<body>
    <video id="video" controls autoplay muted playsinline></video>
    <p>
        <a href="/live.m3u">live.m3u</a> |
        <a href="/live.txt">live.txt</a> |
        <a href="/health">health</a>
    </p>
    <script>
        const video = document.getElementById('video');
        const src = '/live.m3u';

        if (Hls.isSupported()) {{
            const hls = new Hls({{ liveSyncDurationCount: {sync_count} }});
            hls.loadSource(src);
            hls.attachMedia(video);
            hls.on(Hls.Events.MANIFEST_PARSED, () => video.play());
        }} else if (video.canPlayType('application/vnd.apple.mpegurl')) {{
            video.src = src;
            video.addEventListener('loadedmetadata', () => video.play());
        }}
    </script>
</body>
</html>
"""


class HLSServer:
    """
    Async HTTP server for the live stream.

    Playlists are generated per request from the newest segments in the store.
    """

    def __init__(
        self,
        config: Config,
        store: SegmentStore,
        segment_duration: float,
        health_callback: Optional[Callable[[], HealthStatus]] = None,
        ssl_context: Optional[ssl.SSLContext] = None
    ):
        """
        Initialize HLS server.

        Args:
            config: Application configuration
            store: Segment store to serve from
            segment_duration: Nominal segment duration in seconds
            health_callback: Callback to get current health status
            ssl_context: TLS context, or None for plain HTTP
        """
        self.config = config
        self.store = store
        self.segment_duration = segment_duration
        self.health_callback = health_callback
        self.ssl_context = ssl_context

        server_config = config.get_server_config()
        self.host = server_config.get('host', '0.0.0.0')
        self.port = server_config.get('port', 8080)
        self.cors_enabled = server_config.get('cors_enabled', True)
        self.cors_origins = server_config.get('cors_origins', '*')
        self.playlist_window = server_config.get('playlist_window', 10)

        self.playlist_generator = PlaylistGenerator()

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def playlist_segments(self) -> int:
        """Number of segments listed in the live playlist."""
        return playlist_segment_count(self.playlist_window, self.segment_duration)

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        middlewares = [self._cors_middleware] if self.cors_enabled else []
        app = web.Application(middlewares=middlewares)

        app.router.add_get('/', self._handle_index)
        app.router.add_get('/health', self._handle_health)
        app.router.add_get('/live.m3u', self._handle_playlist)
        app.router.add_get('/live.m3u8', self._handle_playlist)
        app.router.add_get('/live.txt', self._handle_playlist_text)
        app.router.add_get('/segments/{name}', self._handle_segment)

        return app

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler):
        """Add CORS headers to responses."""
        response = await handler(request)

        response.headers['Access-Control-Allow-Origin'] = self.cors_origins
        response.headers['Access-Control-Allow-Methods'] = 'GET, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type'

        return response

    async def _handle_index(self, request: web.Request) -> web.Response:
        html = INDEX_HTML.format(sync_count=self.playlist_segments)
        return web.Response(text=html, content_type='text/html')

    async def _handle_health(self, request: web.Request) -> web.Response:
        if self.health_callback:
            data = self.health_callback().to_dict()
        else:
            data = {'status': 'ok', 'server': 'running'}

        return web.json_response(data)

    async def _handle_playlist(self, request: web.Request) -> web.Response:
        return self._playlist_response(as_text=False)

    async def _handle_playlist_text(self, request: web.Request) -> web.Response:
        return self._playlist_response(as_text=True)

    def _playlist_response(self, as_text: bool) -> web.Response:
        segments = self.store.latest_segments(self.playlist_segments)
        playlist = self.playlist_generator.generate(segments, as_text=as_text)

        return web.Response(
            text=playlist.content,
            content_type=playlist.content_type,
            headers=NO_CACHE_HEADERS
        )

    async def _handle_segment(self, request: web.Request) -> web.StreamResponse:
        name = request.match_info['name']
        segment_path = self.store.segment_path(name)

        if segment_path is None or not segment_path.exists():
            logger.warning(f"Segment not found: {name}")
            raise web.HTTPNotFound(text="Segment not found")

        return web.FileResponse(
            segment_path,
            headers={
                'Content-Type': 'video/mp2t',
                'Cache-Control': 'max-age=31536000',  # Segments never change
            }
        )

    @property
    def url(self) -> str:
        scheme = 'https' if self.ssl_context else 'http'
        return f"{scheme}://{self.host}:{self.port}"

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.host, self.port, ssl_context=self.ssl_context)
        await self._site.start()

        logger.info(f"Starting server at {self.url}")
        logger.info(f"Stream URL: {self.url}/live.m3u")

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("HLS server stopped")


def create_hls_server(
    config: Config,
    store: SegmentStore,
    segment_duration: float,
    health_callback: Optional[Callable[[], HealthStatus]] = None,
    ssl_context: Optional[ssl.SSLContext] = None
) -> HLSServer:
    """
    Factory function to create HLS server.

    Returns:
        HLSServer instance
    """
    return HLSServer(config, store, segment_duration, health_callback, ssl_context)
