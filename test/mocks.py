"""
Mock collaborators shared by the avatar relay tests.
"""

import asyncio
import inspect
from typing import Any, Dict, List, Optional

import numpy as np
from aiortc.mediastreams import MediaStreamError

from avatar_relay.tracking.blend_shapes import BlendshapeScore
from avatar_relay.tracking.inference import FaceDetector, InferenceResult


def run_async(coro):
    """Helper to run async functions in tests."""
    return asyncio.run(coro)


IDENTITY = [
    [1.0, 0.0, 0.0, 0.0],
    [0.0, 1.0, 0.0, 0.0],
    [0.0, 0.0, 1.0, 0.0],
    [0.0, 0.0, 0.0, 1.0],
]


def candidate_line(port: int) -> str:
    """A host ICE candidate line distinguishable by port."""
    return f"candidate:1 1 udp 2122260223 192.168.1.2 {port} typ host"


def ice_payload(port: int, sdp_mid: str = "0", sdp_mline_index: int = 0) -> Dict[str, Any]:
    """Inbound iceCandidate data as sent by the host."""
    return {
        "candidate": {
            "candidate": candidate_line(port),
            "sdpMid": sdp_mid,
            "sdpMLineIndex": sdp_mline_index,
        }
    }


class MockDescription:
    def __init__(self, sdp: str, type: str):
        self.sdp = sdp
        self.type = type


class MockPeerConnection:
    """Stand-in for aiortc.RTCPeerConnection."""

    def __init__(self, ice_servers=None, fail_on=()):
        self.ice_servers = ice_servers
        self.fail_on = set(fail_on)
        self.handlers: Dict[str, List[Any]] = {}
        self.remoteDescription = None
        self.localDescription = None
        self.added_candidates: List[Any] = []
        self.connectionState = "new"
        self.closed = False
        # Set to an asyncio.Event to hold setRemoteDescription until it is set
        self.remote_gate: Optional[asyncio.Event] = None

    def on(self, event: str):
        def decorator(fn):
            self.handlers.setdefault(event, []).append(fn)
            return fn
        return decorator

    async def trigger(self, event: str, *args):
        for fn in self.handlers.get(event, []):
            result = fn(*args)
            if inspect.isawaitable(result):
                await result

    async def set_connection_state(self, state: str):
        self.connectionState = state
        await self.trigger("connectionstatechange")

    async def setRemoteDescription(self, description):
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        if "setRemoteDescription" in self.fail_on:
            raise ValueError("malformed offer")
        self.remoteDescription = description

    async def createAnswer(self):
        if "createAnswer" in self.fail_on:
            raise RuntimeError("cannot create answer")
        return MockDescription(sdp="v=0\r\no=- answer\r\n", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def addIceCandidate(self, candidate):
        if self.remoteDescription is None:
            raise RuntimeError("remote description not set")
        self.added_candidates.append(candidate)

    async def close(self):
        self.closed = True
        self.connectionState = "closed"

    @property
    def added_ports(self) -> List[int]:
        return [c.port for c in self.added_candidates]


class MockPeerFactory:
    """Peer factory recording every connection it creates."""

    def __init__(self, fail_on=()):
        self.fail_on = fail_on
        self.created: List[MockPeerConnection] = []

    def __call__(self, ice_servers):
        pc = MockPeerConnection(ice_servers, fail_on=self.fail_on)
        self.created.append(pc)
        return pc

    @property
    def last(self) -> MockPeerConnection:
        return self.created[-1]


class MockFrame:
    """Stand-in for an av.VideoFrame."""

    def __init__(self, time: Optional[float], pts: Optional[int] = None):
        self.time = time
        self.pts = pts

    def to_ndarray(self, format: str = "rgb24"):
        return np.zeros((4, 4, 3), dtype=np.uint8)


class MockTrack:
    """Remote media track yielding a fixed list of frames, then ending."""

    def __init__(self, kind: str = "video", frames: Optional[List[MockFrame]] = None):
        self.kind = kind
        self._frames = list(frames or [])

    async def recv(self):
        if not self._frames:
            raise MediaStreamError
        await asyncio.sleep(0)
        return self._frames.pop(0)


class MockDetector(FaceDetector):
    """Scripted face tracker."""

    def __init__(self, results=None, ready: bool = True, init_error: Optional[Exception] = None):
        self.results = list(results or [])
        self.ready = ready
        self.init_error = init_error
        self.calls: List[int] = []
        self.closed = False

    @property
    def is_ready(self) -> bool:
        return self.ready

    async def initialize(self):
        if self.init_error is not None:
            raise self.init_error
        self.ready = True

    def detect(self, frame, timestamp_ms):
        self.calls.append(timestamp_ms)
        if not self.results:
            return InferenceResult()
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        self.closed = True


def face_result(scores: Dict[str, float], transform=IDENTITY) -> InferenceResult:
    """Build an InferenceResult from {name: score}."""
    return InferenceResult(
        blendshapes=[BlendshapeScore(name=name, score=score) for name, score in scores.items()],
        transforms=[np.asarray(transform)] if transform is not None else None,
    )
