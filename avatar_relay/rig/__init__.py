"""
Avatar Relay Rig Module

Applies face tracking output to an avatar's morph targets and bones.
"""

from avatar_relay.rig.adapter import RigAdapter, RigTarget, Bone, HEAD_MESH_NAMES
from avatar_relay.rig.avatar import resolve_avatar_url, avatar_url_from_query, DEFAULT_AVATAR_URL

__all__ = [
    'RigAdapter',
    'RigTarget',
    'Bone',
    'HEAD_MESH_NAMES',
    'resolve_avatar_url',
    'avatar_url_from_query',
    'DEFAULT_AVATAR_URL',
]
