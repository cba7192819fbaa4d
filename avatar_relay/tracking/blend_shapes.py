"""
Face Frame Definitions

Defines the normalized per-frame face data published by the retargeting
pipeline: named blendshape scores plus a head rotation triple.
Scores are passed through exactly as the face tracker reports them.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union


# Blendshape category names in the order the MediaPipe face landmarker
# reports them (ARKit naming, plus the "_neutral" category).
BLEND_SHAPE_NAMES: List[str] = [
    "_neutral",
    "browDownLeft", "browDownRight", "browInnerUp", "browOuterUpLeft", "browOuterUpRight",
    "cheekPuff", "cheekSquintLeft", "cheekSquintRight",
    "eyeBlinkLeft", "eyeBlinkRight",
    "eyeLookDownLeft", "eyeLookDownRight", "eyeLookInLeft", "eyeLookInRight",
    "eyeLookOutLeft", "eyeLookOutRight", "eyeLookUpLeft", "eyeLookUpRight",
    "eyeSquintLeft", "eyeSquintRight", "eyeWideLeft", "eyeWideRight",
    "jawForward", "jawLeft", "jawOpen", "jawRight",
    "mouthClose", "mouthDimpleLeft", "mouthDimpleRight", "mouthFrownLeft", "mouthFrownRight",
    "mouthFunnel", "mouthLeft", "mouthLowerDownLeft", "mouthLowerDownRight",
    "mouthPressLeft", "mouthPressRight", "mouthPucker", "mouthRight",
    "mouthRollLower", "mouthRollUpper", "mouthShrugLower", "mouthShrugUpper",
    "mouthSmileLeft", "mouthSmileRight", "mouthStretchLeft", "mouthStretchRight",
    "mouthUpperUpLeft", "mouthUpperUpRight",
    "noseSneerLeft", "noseSneerRight",
]

# Total number of categories reported per face
BLEND_SHAPE_COUNT = len(BLEND_SHAPE_NAMES)


@dataclass(frozen=True)
class BlendshapeScore:
    """A single named expression weight."""
    name: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used by the host application."""
        return {"categoryName": self.name, "score": self.score}


@dataclass(frozen=True)
class Rotation:
    """Head rotation in radians (Euler order X-Y-Z)."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __post_init__(self):
        for axis in (self.x, self.y, self.z):
            if not math.isfinite(axis):
                raise ValueError(f"Rotation values must be finite, got ({self.x}, {self.y}, {self.z})")

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


CategoryLike = Union[BlendshapeScore, Tuple[str, float]]


@dataclass(frozen=True)
class FaceFrame:
    """
    Normalized face data for one processed video frame.

    Frames are immutable once published and are superseded by the next
    frame, never merged with it.
    """
    timestamp_ms: int
    blendshapes: Tuple[BlendshapeScore, ...] = ()
    rotation: Rotation = field(default_factory=Rotation)

    def __post_init__(self):
        seen = set()
        for shape in self.blendshapes:
            if shape.name in seen:
                raise ValueError(f"Duplicate blendshape name in frame: {shape.name}")
            seen.add(shape.name)

    @classmethod
    def from_categories(
        cls,
        categories: Iterable[CategoryLike],
        rotation: Rotation,
        timestamp_ms: int,
    ) -> 'FaceFrame':
        """Build a frame from tracker categories, keeping the first score for each name."""
        shapes: List[BlendshapeScore] = []
        seen = set()
        for category in categories:
            if not isinstance(category, BlendshapeScore):
                name, score = category
                category = BlendshapeScore(name=str(name), score=float(score))
            if category.name in seen:
                continue
            seen.add(category.name)
            shapes.append(category)
        return cls(timestamp_ms=int(timestamp_ms), blendshapes=tuple(shapes), rotation=rotation)

    @property
    def names(self) -> List[str]:
        return [shape.name for shape in self.blendshapes]

    def get_value(self, name: str) -> Optional[float]:
        """Get a blendshape score by name, or None if the tracker did not report it."""
        for shape in self.blendshapes:
            if shape.name == name:
                return shape.score
        return None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the outbound motion message.

        Shape: {"blendshapes": [{"categoryName", "score"}], "rotation": {"x", "y", "z"}}
        """
        return {
            "blendshapes": [shape.to_dict() for shape in self.blendshapes],
            "rotation": self.rotation.to_dict(),
        }
