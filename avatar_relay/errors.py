"""
Avatar Relay Exceptions
"""


class AvatarRelayError(Exception):
    """Base class for avatar relay errors."""


class InferenceUnavailableError(AvatarRelayError):
    """Raised when the face tracker is used before it has been initialized."""


class SignalingError(AvatarRelayError):
    """Raised when an inbound signaling payload is malformed."""


class SessionRejectedError(SignalingError):
    """Raised when an offer arrives while a live peer session exists."""


__all__ = [
    'AvatarRelayError',
    'InferenceUnavailableError',
    'SignalingError',
    'SessionRejectedError',
]
