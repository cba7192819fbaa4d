"""
Avatar Relay Package

Drives a 3D avatar's face and head pose from a live camera feed and relays
motion data and WebRTC signaling to an embedding host application.
"""

__version__ = '0.1.0'

__all__ = [
    'AvatarRelayServer',
    '__version__',
]


# Lazy imports so that light submodules don't pull in the whole server
def __getattr__(name):
    if name == 'AvatarRelayServer':
        from avatar_relay.server import AvatarRelayServer
        return AvatarRelayServer
    if name == 'webserver':
        from avatar_relay import webserver
        return webserver
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
