"""
Avatar Relay HTTP Server

Provides the host WebSocket endpoint and a small JSON API for status,
avatar selection and WebRTC configuration.
"""

from typing import Any, Dict, List, Optional, Union

from aiohttp import web

from avatar_relay.bridge.host_bridge import HostBridge
from avatar_relay.rig.avatar import DEFAULT_AVATAR_URL, avatar_url_from_query, resolve_avatar_url
from avatar_relay.webserver.state_manager import StateManager
from avatar_relay.webserver.websocket_handler import HostSocketHandler


class WebServer:
    """HTTP server for the host WebSocket endpoint and status API."""

    def __init__(
        self,
        bridge: HostBridge,
        port: int = 8080,
        host: str = '0.0.0.0',
        server_name: str = 'avatar-relay',
        logger=None,
        state_manager: Optional[StateManager] = None,
        ice_servers: Optional[List[Union[str, Dict[str, Any]]]] = None,
        avatar_config=None,
    ):
        self.bridge = bridge
        self.port = port
        self.host = host
        self.server_name = server_name
        self.logger = logger
        self.ice_servers = list(ice_servers or [])
        self.avatar_config = avatar_config

        # Components - use provided state_manager or create new one
        self.state_manager = state_manager or StateManager(
            server_name=server_name, logger=logger
        )
        self.ws_handler = HostSocketHandler(bridge, self.state_manager, logger=logger)

        # aiohttp components
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def log(self, level: str, message: str):
        """Log a message if logger is available."""
        if self.logger:
            getattr(self.logger, level)(message)

    def create_app(self) -> web.Application:
        """Build the aiohttp application."""
        app = web.Application()

        # Debug middleware to log requests
        @web.middleware
        async def debug_middleware(request, handler):
            self.log('debug', f'Request: {request.method} {request.path}')
            try:
                response = await handler(request)
                self.log('debug', f'Response: {response.status} for {request.path}')
                return response
            except web.HTTPException as e:
                self.log('debug', f'HTTP Exception: {e.status} for {request.path}')
                raise

        app.middlewares.append(debug_middleware)

        app.router.add_get('/api/host', self.ws_handler.handle_connection)
        app.router.add_get('/api/status', self._handle_status)
        app.router.add_get('/api/logs', self._handle_logs)
        app.router.add_get('/api/avatar', self._handle_avatar)
        app.router.add_get('/api/webrtc/config', self._handle_webrtc_config)

        self.app = app
        return app

    async def start(self):
        """Start the HTTP server."""
        self.create_app()

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        self.log('info', f'HTTP server listening on {self.host}:{self.port}')

    async def stop(self):
        """Stop the HTTP server gracefully."""
        self.log('info', 'Stopping HTTP server...')

        await self.ws_handler.close_all_connections()

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        self.log('info', 'HTTP server stopped')

    async def _handle_status(self, request: web.Request) -> web.Response:
        """Handle status API endpoint."""
        status = self.state_manager.get_system_status()
        return web.json_response(status)

    async def _handle_logs(self, request: web.Request) -> web.Response:
        """Return recent activity log entries, newest first."""
        try:
            limit = int(request.query.get('limit', 100))
        except ValueError:
            raise web.HTTPBadRequest(text='limit must be an integer')
        level = request.query.get('level')
        logs = self.state_manager.get_logs(limit=limit, level=level)
        return web.json_response({"logs": logs})

    async def _handle_avatar(self, request: web.Request) -> web.Response:
        """Resolve the avatar asset URL from the avatarUrl query parameter."""
        requested = avatar_url_from_query(request.query_string)

        if self.avatar_config is not None:
            url = resolve_avatar_url(
                requested,
                default_url=self.avatar_config.default_url,
                morph_targets=self.avatar_config.morph_targets,
                texture_atlas=self.avatar_config.texture_atlas,
            )
        else:
            url = resolve_avatar_url(requested, default_url=DEFAULT_AVATAR_URL)

        return web.json_response({
            "url": url,
            "source": "query" if requested else "default",
        })

    async def _handle_webrtc_config(self, request: web.Request) -> web.Response:
        """Return ICE servers in RTCConfiguration form."""
        ice_servers = []
        for server in self.ice_servers:
            if isinstance(server, str):
                ice_servers.append({"urls": server})
            else:
                ice_servers.append({k: v for k, v in server.items() if v is not None})
        return web.json_response({"iceServers": ice_servers})
