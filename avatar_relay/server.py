"""
Avatar Relay Server

Wires the relay components together:
- Host WebSocket endpoint and Host Bridge
- WebRTC signaling with the host
- Face tracking and the retargeting loop
- Rig adapter for the renderer
"""

import argparse
import asyncio
import logging
import signal
from typing import Any, Callable, Dict, List, Mapping, Optional

from avatar_relay.bridge import HostBridge
from avatar_relay.config import RelayConfig, load_config
from avatar_relay.rig import RigAdapter, RigTarget
from avatar_relay.signaling import SignalingState, SignalingStateMachine
from avatar_relay.tracking import (
    CameraCapture,
    FaceDetector,
    MediaPipeFaceDetector,
    RetargetingPipeline,
    VideoSink,
)
from avatar_relay.webserver import StateManager, WebServer

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AvatarRelayServer:
    """Main avatar relay server."""

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        detector: Optional[FaceDetector] = None,
        peer_factory: Optional[Callable[[Any], Any]] = None,
        logger=None,
    ):
        self.config = config or RelayConfig()
        self.logger = logger or logging.getLogger('avatar_relay')

        # State manager - shared with web server
        self.state_manager = StateManager(
            server_name=self.config.name,
            logger=self.logger.getChild('state'),
        )

        self.bridge = HostBridge(logger=self.logger.getChild('bridge'))
        self.sink = VideoSink(logger=self.logger.getChild('video'))
        self.camera: Optional[CameraCapture] = None

        # Face tracking
        self.detector = detector or MediaPipeFaceDetector(
            model_asset_path=self.config.tracking.model_asset_path,
            num_faces=self.config.tracking.num_faces,
            logger=self.logger.getChild('inference'),
        )
        self.pipeline = RetargetingPipeline(
            self.detector,
            sink=self.sink,
            refresh_hz=self.config.tracking.refresh_hz,
            logger=self.logger.getChild('pipeline'),
        )
        self.rig = RigAdapter(logger=self.logger.getChild('rig'))

        # Signaling
        ice_servers = self.config.webrtc.peer_ice_servers()
        self.signaling = SignalingStateMachine(
            send=self.bridge.send,
            video_sink=self.sink,
            ice_servers=ice_servers,
            peer_factory=peer_factory,
            logger=self.logger.getChild('signaling'),
        )

        self.web_server = WebServer(
            self.bridge,
            port=self.config.network.port,
            host=self.config.network.host,
            server_name=self.config.name,
            logger=self.logger.getChild('http'),
            state_manager=self.state_manager,
            ice_servers=ice_servers,
            avatar_config=self.config.avatar,
        )

        # FaceFrames go to the rig and out to the host
        self.pipeline.add_subscriber(self.rig.apply_frame)
        self.pipeline.add_subscriber(self.bridge.send_motion)

        self.signaling.on_status(self.state_manager.set_status)
        self.signaling.on_state(self._on_signaling_state)

        self.state_manager.add_status_provider('pipeline', lambda: self.pipeline.stats)
        self.state_manager.add_status_provider('signaling', self.signaling.get_status)
        self.state_manager.add_status_provider('bridge', self.bridge.get_status)
        self.state_manager.add_status_provider('rig', self._rig_status)

        self._running = False

    def _on_signaling_state(self, state: SignalingState):
        self.state_manager.set_signaling_state(state.value)

    def _rig_status(self) -> Dict[str, Any]:
        return {
            "targets": [t.name for t in self.rig.targets],
            "frames_applied": self.rig.frames_applied,
        }

    def load_avatar(self, nodes: Mapping[str, Any]) -> List[RigTarget]:
        """Bind a freshly loaded avatar's scene nodes to the rig adapter."""
        return self.rig.load_avatar(nodes)

    async def start(self):
        """Start the web server, register host entry points and start tracking."""
        if self._running:
            return
        self._running = True

        self.logger.info(f'Avatar relay "{self.config.name}" starting...')

        await self.web_server.start()

        await self.bridge.register({
            HostBridge.RECEIVE_OFFER: self.signaling.handle_offer,
            HostBridge.RECEIVE_ICE_CANDIDATE: self.signaling.handle_ice_candidate,
        })

        await self._start_tracking()

    async def _start_tracking(self) -> bool:
        """Initialize the face tracker and start the retargeting loop."""
        try:
            await self.detector.initialize()
        except Exception as e:
            self.logger.error(f'Face tracker failed to initialize: {e}')
            self.state_manager.set_status(f'Face tracking unavailable: {e}', 'error')
            return False

        self.state_manager.set_tracking_ready(True)

        camera_index = self.config.tracking.camera_index
        if camera_index is not None:
            self.camera = CameraCapture(self.sink, camera_index, logger=self.logger.getChild('camera'))
            try:
                await self.camera.start()
            except Exception as e:
                self.logger.error(f'Camera {camera_index} unavailable: {e}')
                self.camera = None

        self.pipeline.start()
        return True

    async def stop(self):
        """Stop all services and tear down the peer session."""
        if not self._running:
            return
        self._running = False

        self.logger.info('Stopping avatar relay...')

        self.bridge.unregister()
        await self.pipeline.stop()

        if self.camera:
            await self.camera.stop()
            self.camera = None

        await self.signaling.teardown()
        await self.sink.detach_track()
        await self.web_server.stop()
        self.detector.close()
        self.rig.clear_targets()

    @property
    def is_running(self) -> bool:
        return self._running


async def run_server(server: AvatarRelayServer, shutdown_event: Optional[asyncio.Event] = None):
    """Run the server until the shutdown event is set."""
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except (NotImplementedError, RuntimeError):
            pass

    await server.start()
    try:
        await shutdown_event.wait()
        server.logger.info('Shutdown signal received')
    finally:
        await server.stop()


def parse_args(args=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Avatar relay: live face retargeting with WebRTC signaling')
    parser.add_argument('--config', help='Path to relay_config.yaml')
    parser.add_argument('--host', help='HTTP bind address (overrides config)')
    parser.add_argument('--port', type=int, help='HTTP port (overrides config)')
    parser.add_argument('--avatar-url', help='Default avatar asset URL (overrides config)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')
    return parser.parse_args(args)


def main(args=None):
    """Main entry point for the avatar relay."""
    options = parse_args(args)

    logging.basicConfig(level=getattr(logging, options.log_level), format=LOG_FORMAT)
    logger = logging.getLogger('avatar_relay')

    config = load_config(options.config)
    if options.host:
        config.network.host = options.host
    if options.port:
        config.network.port = options.port
    if options.avatar_url:
        config.avatar.default_url = options.avatar_url

    server = AvatarRelayServer(config, logger=logger)

    try:
        asyncio.run(run_server(server))
    except KeyboardInterrupt:
        pass
    finally:
        logger.info('Shut down')


if __name__ == '__main__':
    main()
