"""
Peer Session

One WebRTC negotiation attempt wrapped around an aiortc RTCPeerConnection.

The session owns the ICE candidate queue: candidates that arrive before the
remote description is applied are buffered and flushed in arrival order
right after it is set.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from avatar_relay.signaling.messages import IceCandidate

DEFAULT_ICE_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
    "stun:stun3.l.google.com:19302",
    "stun:stun4.l.google.com:19302",
]

CANDIDATE_PREFIX = "candidate:"


class ConnectionState(str, Enum):
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"

    @classmethod
    def parse(cls, value: Union[str, 'ConnectionState']) -> 'ConnectionState':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NEW


def build_ice_servers(servers: Optional[Iterable[Union[str, Dict[str, Any]]]] = None) -> List[RTCIceServer]:
    """
    Build aiortc ICE server entries.

    Entries may be plain URLs or dicts with urls/username/credential.
    """
    if servers is None:
        servers = DEFAULT_ICE_SERVERS

    ice_servers = []
    for server in servers:
        if isinstance(server, str):
            ice_servers.append(RTCIceServer(urls=server))
        else:
            ice_servers.append(RTCIceServer(
                urls=server["urls"],
                username=server.get("username"),
                credential=server.get("credential"),
            ))
    return ice_servers


def create_peer_connection(ice_servers: Optional[Iterable[Union[str, Dict[str, Any]]]] = None) -> RTCPeerConnection:
    """Default peer factory: an aiortc connection using the given ICE servers."""
    config = RTCConfiguration(iceServers=build_ice_servers(ice_servers))
    return RTCPeerConnection(configuration=config)


def candidate_to_message(candidate) -> IceCandidate:
    """Convert a local aiortc RTCIceCandidate into its browser JSON form."""
    return IceCandidate(
        candidate=CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        sdp_mid=candidate.sdpMid,
        sdp_mline_index=candidate.sdpMLineIndex,
    )


def candidate_from_message(message: IceCandidate):
    """Parse a browser-form ICE candidate into an aiortc RTCIceCandidate."""
    line = message.candidate
    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX):]
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = message.sdp_mid
    candidate.sdpMLineIndex = message.sdp_mline_index
    return candidate


class PeerSession:
    """
    A single peer-connection lifecycle.

    Created on an inbound offer, closed on teardown or when the transport
    reaches a terminal state.
    """

    def __init__(self, pc, logger=None):
        self.pc = pc
        self.logger = logger

        self.connection_state = ConnectionState.NEW
        self.track = None
        self.local_description_set = False

        self._pending: List[IceCandidate] = []
        self._remote_ready = False
        self._closed = False

        # Statistics
        self.candidates_applied = 0
        self.candidates_failed = 0

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    @property
    def has_remote_description(self) -> bool:
        return self._remote_ready

    @property
    def pending_candidates(self) -> List[IceCandidate]:
        return list(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def queue_candidates(self, candidates: Iterable[IceCandidate]):
        """Pre-seed the queue with candidates received before this session existed."""
        self._pending.extend(candidates)

    async def set_remote_offer(self, sdp: str):
        """Apply the offer as remote description, then flush queued candidates."""
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))

        # Candidates arriving while the queue drains are appended to it
        while self._pending:
            await self._apply(self._pending.pop(0))
        self._remote_ready = True

    async def create_answer(self) -> str:
        """Create an answer, set it as local description and return its SDP."""
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        self.local_description_set = True
        description = self.pc.localDescription or answer
        return description.sdp

    async def add_ice_candidate(self, candidate: IceCandidate) -> bool:
        """
        Apply a remote ICE candidate, or queue it if the remote description
        has not been applied yet.

        Returns:
            True if the candidate was applied immediately
        """
        if self._closed:
            self.log("debug", "Ignoring ICE candidate for closed session")
            return False

        if not self._remote_ready:
            self._pending.append(candidate)
            return False

        return await self._apply(candidate)

    async def _apply(self, message: IceCandidate) -> bool:
        if not message.candidate:
            # End-of-candidates marker
            return False
        try:
            candidate = candidate_from_message(message)
            await self.pc.addIceCandidate(candidate)
        except Exception as e:
            self.candidates_failed += 1
            self.log("error", f"Error adding ICE candidate: {e}")
            return False

        self.candidates_applied += 1
        return True

    def attach_track(self, track) -> bool:
        """Keep the first incoming video track. Returns True if it was kept."""
        if self.track is not None or getattr(track, "kind", None) != "video":
            return False
        self.track = track
        return True

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        self.connection_state = ConnectionState.CLOSED
        try:
            await self.pc.close()
        except Exception as e:
            self.log("warning", f"Error closing peer connection: {e}")
