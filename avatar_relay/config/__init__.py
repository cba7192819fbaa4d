"""
Avatar Relay Configuration Module

Loads and provides access to relay configuration from relay_config.yaml.
"""

import os
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

import yaml

from avatar_relay.rig.avatar import DEFAULT_AVATAR_URL, DEFAULT_MORPH_TARGETS, DEFAULT_TEXTURE_ATLAS
from avatar_relay.signaling.session import DEFAULT_ICE_SERVERS
from avatar_relay.tracking.inference import DEFAULT_MODEL_ASSET_PATH
from avatar_relay.tracking.pipeline import DEFAULT_REFRESH_HZ


@dataclass
class NetworkConfig:
    """Network configuration."""
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class WebRTCConfig:
    """WebRTC configuration."""
    ice_servers: List[str] = field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))
    turn_servers: List[str] = field(default_factory=list)
    turn_username: Optional[str] = None
    turn_credential: Optional[str] = None

    def peer_ice_servers(self) -> List[Any]:
        """ICE server entries for new peer connections (STUN URLs plus TURN dicts)."""
        servers: List[Any] = list(self.ice_servers)
        for url in self.turn_servers:
            servers.append({
                "urls": url,
                "username": self.turn_username,
                "credential": self.turn_credential,
            })
        return servers


@dataclass
class TrackingConfig:
    """Face tracking configuration."""
    model_asset_path: str = DEFAULT_MODEL_ASSET_PATH
    num_faces: int = 1
    refresh_hz: float = DEFAULT_REFRESH_HZ
    camera_index: Optional[int] = None  # None = frames come from the host stream only


@dataclass
class AvatarConfig:
    """Avatar asset configuration."""
    default_url: str = DEFAULT_AVATAR_URL
    morph_targets: str = DEFAULT_MORPH_TARGETS
    texture_atlas: int = DEFAULT_TEXTURE_ATLAS


@dataclass
class RelayConfig:
    """Complete relay configuration."""
    name: str = "avatar-relay"
    network: NetworkConfig = field(default_factory=NetworkConfig)
    webrtc: WebRTCConfig = field(default_factory=WebRTCConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    avatar: AvatarConfig = field(default_factory=AvatarConfig)


# Global config instance
_config: Optional[RelayConfig] = None
_config_path: Optional[str] = None


def get_config_path() -> str:
    """Get the path to the config file."""
    if _config_path:
        return _config_path
    return os.path.join(os.path.dirname(__file__), 'relay_config.yaml')


def load_config(config_path: Optional[str] = None) -> RelayConfig:
    """
    Load relay configuration from YAML file.

    Args:
        config_path: Path to config file (default: relay_config.yaml in this directory)

    Returns:
        RelayConfig instance
    """
    global _config, _config_path

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), 'relay_config.yaml')

    config = RelayConfig()

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
        _apply_dict(config, data)

    _config = config
    _config_path = config_path
    return config


def get_config() -> RelayConfig:
    """
    Get the current relay configuration.

    Loads from file if not already loaded.
    """
    global _config
    if _config is None:
        load_config()
    return _config


def _apply_dict(config: RelayConfig, data: Dict[str, Any]) -> RelayConfig:
    """Apply a (possibly partial) nested dict onto a RelayConfig."""
    # Server settings
    server = data.get('server') or {}
    if 'name' in server:
        config.name = str(server['name'])

    # Network settings
    net = data.get('network') or {}
    if 'host' in net:
        config.network.host = str(net['host'])
    if 'port' in net:
        config.network.port = int(net['port'])

    # WebRTC settings
    rtc = data.get('webrtc') or {}
    if 'ice_servers' in rtc:
        config.webrtc.ice_servers = list(rtc['ice_servers'] or [])
    if 'turn_servers' in rtc:
        config.webrtc.turn_servers = list(rtc['turn_servers'] or [])
    if 'turn_username' in rtc:
        config.webrtc.turn_username = rtc['turn_username'] or None
    if 'turn_credential' in rtc:
        config.webrtc.turn_credential = rtc['turn_credential'] or None

    # Tracking settings
    trk = data.get('tracking') or {}
    if 'model_asset_path' in trk:
        config.tracking.model_asset_path = str(trk['model_asset_path'])
    if 'num_faces' in trk:
        config.tracking.num_faces = int(trk['num_faces'])
    if 'refresh_hz' in trk:
        refresh_hz = float(trk['refresh_hz'])
        if refresh_hz <= 0:
            raise ValueError(f"tracking.refresh_hz must be positive, got {refresh_hz}")
        config.tracking.refresh_hz = refresh_hz
    if 'camera_index' in trk:
        camera_index = trk['camera_index']
        config.tracking.camera_index = int(camera_index) if camera_index is not None else None

    # Avatar settings
    av = data.get('avatar') or {}
    if 'default_url' in av:
        config.avatar.default_url = str(av['default_url'])
    if 'morph_targets' in av:
        config.avatar.morph_targets = str(av['morph_targets'])
    if 'texture_atlas' in av:
        config.avatar.texture_atlas = int(av['texture_atlas'])

    return config


def config_to_dict(config: Optional[RelayConfig] = None) -> dict:
    """
    Convert RelayConfig to dictionary for JSON serialization.

    Args:
        config: RelayConfig to convert (uses global if None)

    Returns:
        Dictionary representation of config
    """
    if config is None:
        config = get_config()

    return {
        'server': {
            'name': config.name,
        },
        'network': {
            'host': config.network.host,
            'port': config.network.port,
        },
        'webrtc': {
            'ice_servers': list(config.webrtc.ice_servers),
            'turn_servers': list(config.webrtc.turn_servers),
            'turn_username': config.webrtc.turn_username,
            'turn_credential': config.webrtc.turn_credential,
        },
        'tracking': {
            'model_asset_path': config.tracking.model_asset_path,
            'num_faces': config.tracking.num_faces,
            'refresh_hz': config.tracking.refresh_hz,
            'camera_index': config.tracking.camera_index,
        },
        'avatar': {
            'default_url': config.avatar.default_url,
            'morph_targets': config.avatar.morph_targets,
            'texture_atlas': config.avatar.texture_atlas,
        },
    }


def save_config(config: Optional[RelayConfig] = None, config_path: Optional[str] = None) -> bool:
    """
    Save relay configuration to YAML file.

    Args:
        config: RelayConfig to save (uses global if None)
        config_path: Destination (defaults to the file the config was loaded from)

    Returns:
        True if saved successfully
    """
    if config is None:
        config = _config
    if config is None:
        return False

    if config_path is None:
        config_path = get_config_path()

    data = config_to_dict(config)

    # Only include TURN credentials if set
    if not config.webrtc.turn_servers:
        for key in ('turn_servers', 'turn_username', 'turn_credential'):
            data['webrtc'].pop(key)

    try:
        with open(config_path, 'w') as f:
            f.write("# Avatar Relay Configuration\n")
            f.write("#\n")
            f.write("# Restart the relay after making changes.\n\n")
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        return True
    except OSError:
        return False


def update_config_from_dict(data: dict) -> RelayConfig:
    """
    Update the global config from a dictionary.

    Args:
        data: Dictionary with config values

    Returns:
        Updated RelayConfig
    """
    global _config

    if _config is None:
        _config = RelayConfig()

    return _apply_dict(_config, data)


__all__ = [
    'RelayConfig',
    'NetworkConfig',
    'WebRTCConfig',
    'TrackingConfig',
    'AvatarConfig',
    'load_config',
    'get_config',
    'get_config_path',
    'save_config',
    'config_to_dict',
    'update_config_from_dict',
]
