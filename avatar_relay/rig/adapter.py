"""
Rig Adapter

Maps FaceFrame blendshape scores onto avatar morph targets and the head
rotation onto a head/neck/spine bone chain.

The neck and spine follow the head with fixed attenuation so that a single
head-rotation signal produces a natural follow-through:

    Head    (x, y, z)
    Neck    (x / 5 + 0.3, y / 5, z / 5)
    Spine2  (x / 10, y / 10, z / 10)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from avatar_relay.tracking.blend_shapes import FaceFrame, BLEND_SHAPE_NAMES

# Sub-meshes of a Ready Player Me avatar that carry facial morph targets
HEAD_MESH_NAMES: Tuple[str, ...] = (
    "Wolf3D_Head",
    "Wolf3D_Teeth",
    "Wolf3D_Beard",
    "Wolf3D_Avatar",
    "Wolf3D_Head_Custom",
)

HEAD_BONE = "Head"
NECK_BONE = "Neck"
SPINE_BONE = "Spine2"

NECK_DIVISOR = 5
NECK_PITCH_BIAS = 0.3  # radians, forward tilt
SPINE_DIVISOR = 10


@dataclass
class Bone:
    """A skeleton bone with a settable Euler rotation."""
    name: str
    rotation: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    def set_rotation(self, x: float, y: float, z: float):
        self.rotation = (x, y, z)


@dataclass
class RigTarget:
    """
    A named avatar sub-mesh as seen by the adapter.

    Owned by the renderer; the adapter only mutates influences and bone
    rotations in place.
    """
    name: str
    morph_target_dictionary: Dict[str, int] = field(default_factory=dict)
    morph_target_influences: List[float] = field(default_factory=list)
    bones: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_morph_names(cls, name: str, morph_names: Sequence[str], bones: Iterable[Any] = ()) -> 'RigTarget':
        """Create a target whose morph targets are indexed in the given order."""
        return cls(
            name=name,
            morph_target_dictionary={morph: index for index, morph in enumerate(morph_names)},
            morph_target_influences=[0.0] * len(morph_names),
            bones={bone.name: bone for bone in bones},
        )

    def set_influence(self, morph_name: str, value: float) -> bool:
        """Set a morph influence by name. Returns False if the mesh lacks it."""
        index = self.morph_target_dictionary.get(morph_name)
        if index is None or index < 0 or index >= len(self.morph_target_influences):
            return False
        self.morph_target_influences[index] = value
        return True

    def get_influence(self, morph_name: str) -> Optional[float]:
        index = self.morph_target_dictionary.get(morph_name)
        if index is None or index < 0 or index >= len(self.morph_target_influences):
            return None
        return self.morph_target_influences[index]


class RigAdapter:
    """
    Applies FaceFrames to the avatar's rig targets.

    The adapter keeps a non-owning list of targets which is rebuilt every
    time the renderer loads an avatar.
    """

    def __init__(self, logger=None):
        self.logger = logger
        self._targets: List[RigTarget] = []
        self.frames_applied = 0

    @property
    def targets(self) -> List[RigTarget]:
        return list(self._targets)

    def set_targets(self, targets: Iterable[RigTarget]):
        """Replace the target list (called once per avatar load)."""
        self._targets = list(targets)
        if self.logger:
            names = [t.name for t in self._targets]
            self.logger.info(f"Rig targets bound: {names}")
            for target in self._targets:
                if not target.morph_target_dictionary:
                    continue
                missing = [n for n in BLEND_SHAPE_NAMES[1:] if n not in target.morph_target_dictionary]
                if missing:
                    self.logger.debug(f"{target.name} lacks {len(missing)} ARKit morph targets")

    def clear_targets(self):
        """Drop all target references (avatar unloaded or changing)."""
        self._targets = []

    def load_avatar(self, nodes: Mapping[str, Any]) -> List[RigTarget]:
        """
        Bind the targets of a freshly loaded avatar scene.

        Args:
            nodes: Scene graph nodes by name. Head meshes must be RigTargets;
                bone nodes need a set_rotation(x, y, z) method.

        Returns:
            The bound target list
        """
        self.clear_targets()

        targets = [nodes[name] for name in HEAD_MESH_NAMES if name in nodes]
        bones = {name: nodes[name] for name in (HEAD_BONE, NECK_BONE, SPINE_BONE) if name in nodes}
        if bones:
            targets.append(RigTarget(name="skeleton", bones=bones))

        self.set_targets(targets)
        return self.targets

    @staticmethod
    def _find_bone(targets: Sequence[RigTarget], name: str):
        for target in targets:
            bone = target.bones.get(name)
            if bone is not None:
                return bone
        return None

    def apply_frame(self, frame: FaceFrame, targets: Optional[Sequence[RigTarget]] = None):
        """
        Apply a FaceFrame to the rig.

        Morph targets missing from a mesh and absent bones are skipped.
        Frames without blendshapes leave the rig untouched.
        """
        if targets is None:
            targets = self._targets

        if not frame.blendshapes:
            return

        for shape in frame.blendshapes:
            for target in targets:
                target.set_influence(shape.name, shape.score)

        head = self._find_bone(targets, HEAD_BONE)
        if head is not None:
            x, y, z = frame.rotation.as_tuple()
            head.set_rotation(x, y, z)

            neck = self._find_bone(targets, NECK_BONE)
            if neck is not None:
                neck.set_rotation(x / NECK_DIVISOR + NECK_PITCH_BIAS, y / NECK_DIVISOR, z / NECK_DIVISOR)

            spine = self._find_bone(targets, SPINE_BONE)
            if spine is not None:
                spine.set_rotation(x / SPINE_DIVISOR, y / SPINE_DIVISOR, z / SPINE_DIVISOR)

        self.frames_applied += 1
