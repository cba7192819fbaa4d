"""
Avatar Source Selection

Resolves the avatar asset URL, optionally from an `avatarUrl` query
parameter, and appends the query suffix requesting ARKit morph targets
and a texture atlas.
"""

from typing import Optional, Union
from urllib.parse import parse_qs, urlencode

DEFAULT_AVATAR_URL = "https://models.readyplayer.me/6460d95f9ae10f45bffb2864.glb"
DEFAULT_MORPH_TARGETS = "ARKit"
DEFAULT_TEXTURE_ATLAS = 1024

AVATAR_URL_PARAM = "avatarUrl"


def avatar_query_suffix(morph_targets: str = DEFAULT_MORPH_TARGETS,
                        texture_atlas: Union[int, str] = DEFAULT_TEXTURE_ATLAS) -> str:
    """Return e.g. 'morphTargets=ARKit&textureAtlas=1024'."""
    return urlencode({"morphTargets": morph_targets, "textureAtlas": texture_atlas})


def resolve_avatar_url(
    avatar_url: Optional[str] = None,
    default_url: str = DEFAULT_AVATAR_URL,
    morph_targets: str = DEFAULT_MORPH_TARGETS,
    texture_atlas: Union[int, str] = DEFAULT_TEXTURE_ATLAS,
) -> str:
    """
    Build the avatar asset URL.

    Falls back to default_url when avatar_url is empty. The suffix is
    joined with '&' if the URL already carries a query string.
    """
    base = avatar_url.strip() if avatar_url else ""
    if not base:
        base = default_url
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}{avatar_query_suffix(morph_targets, texture_atlas)}"


def avatar_url_from_query(query_string: str) -> Optional[str]:
    """Extract the avatarUrl parameter from a raw query string."""
    values = parse_qs(query_string.lstrip("?")).get(AVATAR_URL_PARAM)
    if not values:
        return None
    return values[0] or None
