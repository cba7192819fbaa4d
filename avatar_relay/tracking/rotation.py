"""
Head Rotation Decomposition

Converts the facial transformation matrix reported by the face tracker
into an X-Y-Z Euler rotation.
"""

import math
from typing import Any

import numpy as np

from avatar_relay.tracking.blend_shapes import Rotation

# Beyond this |m13| the decomposition is treated as gimbal locked
GIMBAL_LOCK_THRESHOLD = 0.9999999


def _as_matrix(matrix: Any) -> np.ndarray:
    """Coerce a 4x4 or 3x3 matrix (nested or flat, row-major) to an ndarray."""
    m = np.asarray(matrix, dtype=np.float64)
    if m.size == 16:
        return m.reshape(4, 4)
    if m.size == 9:
        return m.reshape(3, 3)
    raise ValueError(f"Expected a 3x3 or 4x4 matrix, got {m.size} values")


def euler_from_matrix(matrix: Any) -> Rotation:
    """
    Decompose the rotation part of a transformation matrix into Euler
    angles for rotation order X-Y-Z.

    The upper 3x3 block is assumed to be a pure (unscaled) rotation.

    Raises:
        ValueError: if the matrix has the wrong size or non-finite entries
    """
    m = _as_matrix(matrix)
    rot = m[:3, :3]
    if not np.isfinite(rot).all():
        raise ValueError("Transformation matrix contains non-finite values")

    m11, m12, m13 = float(rot[0, 0]), float(rot[0, 1]), float(rot[0, 2])
    m22, m23 = float(rot[1, 1]), float(rot[1, 2])
    m32, m33 = float(rot[2, 1]), float(rot[2, 2])

    y = math.asin(max(-1.0, min(1.0, m13)))

    if abs(m13) < GIMBAL_LOCK_THRESHOLD:
        x = math.atan2(-m23, m33)
        z = math.atan2(-m12, m11)
    else:
        x = math.atan2(m32, m22)
        z = 0.0

    return Rotation(x=x, y=y, z=z)

