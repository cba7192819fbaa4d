"""
Motion Retargeting Pipeline

Pulls the latest video frame, runs the face tracker on it, decomposes
the result into a FaceFrame and publishes that frame to subscribers
(the rig adapter and the host bridge).

All per-session state (last processed position, last rotation, latest
frame) lives on the RetargetingPipeline instance, so several avatar
instances can run side by side.
"""

import asyncio
import time
from typing import Any, Callable, List, Optional

from avatar_relay.tracking.blend_shapes import FaceFrame, Rotation
from avatar_relay.tracking.inference import FaceDetector, InferenceResult
from avatar_relay.tracking.rotation import euler_from_matrix
from avatar_relay.tracking.video import VideoSink

DEFAULT_REFRESH_HZ = 60.0

# Only the first few dropped frames are logged, the rest are counted
DROP_LOG_LIMIT = 5


class RetargetingPipeline:
    """
    Per-frame face retargeting loop.

    The loop is a single asyncio task, so frames are never processed
    concurrently. Inference runs in the default executor and is the only
    suspension point inside a tick.
    """

    def __init__(
        self,
        detector: FaceDetector,
        sink: Optional[VideoSink] = None,
        refresh_hz: float = DEFAULT_REFRESH_HZ,
        logger=None,
    ):
        self.detector = detector
        self.sink = sink or VideoSink(logger=logger)
        self.refresh_hz = refresh_hz
        self.logger = logger

        self._last_video_time: Optional[float] = None
        self._last_timestamp_ms = -1
        self._rotation = Rotation()
        self._latest: Optional[FaceFrame] = None
        self._subscribers: List[Callable[[FaceFrame], None]] = []

        self._task: Optional[asyncio.Task] = None
        self._running = False

        # Statistics
        self.inference_count = 0
        self.frames_published = 0
        self.frames_dropped = 0
        self.error_count = 0

    def add_subscriber(self, callback: Callable[[FaceFrame], None]):
        """Add a callback to be called for every published FaceFrame."""
        self._subscribers.append(callback)

    def remove_subscriber(self, callback: Callable[[FaceFrame], None]):
        """Remove a subscriber."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def latest_frame(self) -> Optional[FaceFrame]:
        """The most recently published FaceFrame."""
        return self._latest

    @property
    def rotation(self) -> Rotation:
        """Rotation carried forward to frames without a transformation matrix."""
        return self._rotation

    def _next_timestamp(self, timestamp_ms: Optional[int] = None) -> int:
        """Return a strictly increasing millisecond timestamp for the tracker."""
        if timestamp_ms is None:
            timestamp_ms = int(time.monotonic() * 1000)
        timestamp_ms = int(timestamp_ms)
        if timestamp_ms <= self._last_timestamp_ms:
            timestamp_ms = self._last_timestamp_ms + 1
        self._last_timestamp_ms = timestamp_ms
        return timestamp_ms

    def _drop(self, reason: str):
        self.frames_dropped += 1
        if self.logger and self.frames_dropped <= DROP_LOG_LIMIT:
            self.logger.debug(f"Frame dropped: {reason}")

    async def process_frame(
        self,
        frame: Any,
        video_time: float,
        timestamp_ms: Optional[int] = None,
    ) -> Optional[FaceFrame]:
        """
        Process one video frame.

        Args:
            frame: RGB frame as a numpy array
            video_time: Playback position of the frame in the source
            timestamp_ms: Optional tracker timestamp (defaults to monotonic clock)

        Returns:
            The published FaceFrame, or None if the frame was skipped or dropped
        """
        # Source has not advanced since the last processed frame
        if video_time == self._last_video_time:
            return None
        self._last_video_time = video_time

        if not self.detector.is_ready:
            self._drop("face tracker not initialized")
            return None

        timestamp_ms = self._next_timestamp(timestamp_ms)
        self.inference_count += 1

        loop = asyncio.get_running_loop()
        try:
            result: Optional[InferenceResult] = await loop.run_in_executor(
                None, self.detector.detect, frame, timestamp_ms
            )
        except Exception as e:
            self.error_count += 1
            self._drop(f"inference error: {e}")
            return None

        if result is None or not result.has_face:
            self._drop("no face detected")
            return None

        rotation = self._rotation
        if result.transforms:
            try:
                rotation = euler_from_matrix(result.transforms[0])
            except ValueError as e:
                if self.logger:
                    self.logger.debug(f"Keeping previous rotation: {e}")
        self._rotation = rotation

        face_frame = FaceFrame.from_categories(result.blendshapes or (), rotation, timestamp_ms)
        self._latest = face_frame
        self._publish(face_frame)
        return face_frame

    def _publish(self, face_frame: FaceFrame):
        self.frames_published += 1
        for callback in list(self._subscribers):
            try:
                callback(face_frame)
            except Exception as e:
                if self.logger:
                    self.logger.error(f"FaceFrame subscriber error: {e}")

    async def _run(self):
        """Tick at the refresh rate until stopped."""
        interval = 1.0 / self.refresh_hz

        await self.sink.wait_ready()
        if self.logger:
            self.logger.info("Video source ready, retargeting started")

        while self._running:
            frame, position = self.sink.latest()
            if frame is not None:
                try:
                    await self.process_frame(frame, position)
                except Exception as e:
                    self.error_count += 1
                    if self.logger:
                        self.logger.error(f"Retargeting tick failed: {e}")
            await asyncio.sleep(interval)

    def start(self):
        """Start the retargeting loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        if self.logger:
            self.logger.info(f"Retargeting loop started at {self.refresh_hz:g} Hz")

    async def stop(self):
        """Stop the loop and wait for the task to finish."""
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

        if self.logger:
            self.logger.info("Retargeting loop stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        """Get pipeline statistics."""
        return {
            "running": self._running,
            "inference_count": self.inference_count,
            "frames_published": self.frames_published,
            "frames_dropped": self.frames_dropped,
            "error_count": self.error_count,
            "last_timestamp_ms": self._latest.timestamp_ms if self._latest else None,
        }
