"""
Avatar Relay Signaling Module

WebRTC offer/answer and ICE negotiation with the host application.
"""

from avatar_relay.signaling.messages import (
    MessageType,
    Offer,
    Answer,
    IceCandidate,
    ReadyNotice,
    parse_message,
)
from avatar_relay.signaling.session import ConnectionState, PeerSession, DEFAULT_ICE_SERVERS
from avatar_relay.signaling.state_machine import SignalingState, SignalingStateMachine

__all__ = [
    'MessageType',
    'Offer',
    'Answer',
    'IceCandidate',
    'ReadyNotice',
    'parse_message',
    'ConnectionState',
    'PeerSession',
    'DEFAULT_ICE_SERVERS',
    'SignalingState',
    'SignalingStateMachine',
]
