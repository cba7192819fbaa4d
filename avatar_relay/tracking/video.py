"""
Video Sources

VideoSink holds the most recent decoded frame and its playback position.
It is fed either by the negotiated remote WebRTC track or by a local
OpenCV camera.
"""

import asyncio
from typing import Any, Optional, Tuple

from aiortc.mediastreams import MediaStreamError


class VideoSink:
    """Latest-frame holder shared by the video feeders and the pipeline."""

    def __init__(self, logger=None):
        self.logger = logger
        self._frame: Any = None
        self._position: Optional[float] = None
        self._ready = asyncio.Event()
        self._track = None
        self._track_task: Optional[asyncio.Task] = None
        self.frame_count = 0

    def set_frame(self, frame: Any, position: float):
        """Store a new frame and its playback position."""
        self._frame = frame
        self._position = position
        self.frame_count += 1
        if not self._ready.is_set():
            self._ready.set()

    def latest(self) -> Tuple[Any, Optional[float]]:
        """Return (frame, position) for the most recent frame."""
        return self._frame, self._position

    @property
    def has_frame(self) -> bool:
        return self._frame is not None

    async def wait_ready(self):
        """Block until the first frame arrives."""
        await self._ready.wait()

    @property
    def track(self):
        return self._track

    def attach_track(self, track) -> bool:
        """Start consuming a remote video track. Only one track is attached at a time."""
        if self._track is not None:
            return False
        self._track = track
        self._track_task = asyncio.create_task(self._consume_track(track))
        if self.logger:
            self.logger.info(f"Remote {track.kind} track attached to video sink")
        return True

    async def _consume_track(self, track):
        while True:
            try:
                frame = await track.recv()
            except MediaStreamError:
                if self.logger:
                    self.logger.info("Remote video track ended")
                break
            position = frame.time if frame.time is not None else frame.pts
            if position is None:
                position = self.frame_count + 1
            self.set_frame(frame.to_ndarray(format="rgb24"), position)

    async def detach_track(self):
        """Stop consuming the remote track, if any."""
        task = self._track_task
        self._track = None
        self._track_task = None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class CameraCapture:
    """
    Local camera feeder using OpenCV.

    Frames are read in the default executor so the event loop stays free
    for signaling work, then converted to RGB before hand-off.
    """

    def __init__(self, sink: VideoSink, camera_index: int = 0, logger=None):
        self.sink = sink
        self.camera_index = camera_index
        self.logger = logger
        self._capture = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._frame_index = 0

    async def start(self):
        """Open the camera and begin feeding the sink."""
        import cv2

        if self._running:
            return

        self._capture = cv2.VideoCapture(self.camera_index)
        if not self._capture.isOpened():
            self._capture = None
            raise RuntimeError(f"Unable to open camera {self.camera_index}")

        self._running = True
        self._task = asyncio.create_task(self._read_loop(cv2))

        if self.logger:
            self.logger.info(f"Camera {self.camera_index} opened")

    async def _read_loop(self, cv2):
        loop = asyncio.get_running_loop()
        while self._running:
            ok, frame = await loop.run_in_executor(None, self._capture.read)
            if not ok:
                await asyncio.sleep(0.01)
                continue
            self._frame_index += 1
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            self.sink.set_frame(rgb, self._frame_index)

    async def stop(self):
        """Stop reading and release the camera."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._capture is not None:
            self._capture.release()
            self._capture = None

        if self.logger:
            self.logger.info(f"Camera {self.camera_index} released")

