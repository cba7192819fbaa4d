"""
Avatar Relay Host Bridge
"""

from avatar_relay.bridge.host_bridge import HostBridge

__all__ = ['HostBridge']
