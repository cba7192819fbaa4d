"""
Signaling Messages

Wire types exchanged with the host application over the Host Bridge.

Inbound (host -> relay):
    {"type": "offer", "data": {"sdp": ...}}
    {"type": "iceCandidate", "data": {"candidate": {"candidate", "sdpMid", "sdpMLineIndex"}}}

Outbound (relay -> host):
    {"type": "answer", "data": {"sdp": ..., "type": "answer"}}
    {"type": "iceCandidate", "data": {"type": "ice", "candidate": {...}}}
    {"type": "ready"}
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from avatar_relay.errors import SignalingError


class MessageType(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "iceCandidate"
    READY = "ready"


def _unwrap_sdp(value: Any) -> str:
    """Accept either a bare SDP string or a {"sdp": ...} description object."""
    if isinstance(value, dict):
        value = value.get("sdp")
    if not isinstance(value, str) or not value:
        raise SignalingError("Offer is missing an SDP payload")
    return value


@dataclass(frozen=True)
class Offer:
    sdp: str

    @classmethod
    def from_payload(cls, data: Any) -> 'Offer':
        if not isinstance(data, dict) or "sdp" not in data:
            raise SignalingError("Offer payload must be an object with an 'sdp' field")
        return cls(sdp=_unwrap_sdp(data["sdp"]))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": MessageType.OFFER.value, "data": {"sdp": self.sdp}}


@dataclass(frozen=True)
class Answer:
    sdp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": MessageType.ANSWER.value,
            "data": {"sdp": self.sdp, "type": "answer"},
        }


@dataclass(frozen=True)
class IceCandidate:
    """
    An ICE candidate in its browser JSON form.

    `candidate` is the SDP attribute line (with or without the leading
    "candidate:"), `sdp_mid` and `sdp_mline_index` identify the m-line.
    """
    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    @classmethod
    def from_payload(cls, data: Any) -> 'IceCandidate':
        if not isinstance(data, dict):
            raise SignalingError("ICE payload must be an object")
        candidate = data.get("candidate")
        if not isinstance(candidate, dict):
            raise SignalingError("ICE payload is missing a 'candidate' object")
        line = candidate.get("candidate")
        if not isinstance(line, str):
            raise SignalingError("ICE candidate is missing its 'candidate' string")
        mline_index = candidate.get("sdpMLineIndex")
        return cls(
            candidate=line,
            sdp_mid=candidate.get("sdpMid"),
            sdp_mline_index=int(mline_index) if mline_index is not None else None,
        )

    def candidate_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": MessageType.ICE_CANDIDATE.value,
            "data": {"type": "ice", "candidate": self.candidate_dict()},
        }


@dataclass(frozen=True)
class ReadyNotice:
    def to_dict(self) -> Dict[str, Any]:
        return {"type": MessageType.READY.value}


SignalMessage = Union[Offer, Answer, IceCandidate, ReadyNotice]


def parse_message(message: Any) -> SignalMessage:
    """
    Parse an inbound host message into a typed SignalMessage.

    Raises:
        SignalingError: if the message type is unknown or the payload is malformed
    """
    if not isinstance(message, dict):
        raise SignalingError("Signaling message must be a JSON object")

    msg_type = message.get("type")
    data = message.get("data")

    if msg_type == MessageType.OFFER.value:
        return Offer.from_payload(data)
    elif msg_type == MessageType.ICE_CANDIDATE.value:
        return IceCandidate.from_payload(data)
    elif msg_type == MessageType.ANSWER.value:
        if not isinstance(data, dict):
            raise SignalingError("Answer payload must be an object")
        return Answer(sdp=_unwrap_sdp(data.get("sdp")))
    elif msg_type == MessageType.READY.value:
        return ReadyNotice()

    raise SignalingError(f"Unknown signaling message type: {msg_type!r}")
