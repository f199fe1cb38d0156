"""Procedural Mixamo-named humanoid rig.

Produces a skeleton with the same bone names and hierarchy as a Mixamo
export (``mixamorig1Hips`` ... ``mixamorig1RightToeBase``), in metres,
Y up, character facing +Z, left side on +X. All local rotations start at
identity, so the bind pose doubles as the neutral pose.
"""

import numpy as np

from poseforge.constants import BONE_PREFIX
from poseforge.core.math_utils import quat_from_axis_angle
from poseforge.core.skeleton import Skeleton

# (name, parent, local offset); "{S}" expands to Left/Right, x mirrored
_SPINE = [
    ("Hips", None, (0.0, 1.0, 0.0)),
    ("Spine", "Hips", (0.0, 0.10, 0.0)),
    ("Spine1", "Spine", (0.0, 0.12, 0.0)),
    ("Spine2", "Spine1", (0.0, 0.12, 0.0)),
    ("Neck", "Spine2", (0.0, 0.15, 0.0)),
    ("Head", "Neck", (0.0, 0.10, 0.0)),
]

_ARM = [
    ("{S}Shoulder", "Spine2", (0.06, 0.10, 0.0)),
    ("{S}Arm", "{S}Shoulder", (0.12, 0.0, 0.0)),
    ("{S}ForeArm", "{S}Arm", (0.28, 0.0, 0.0)),
    ("{S}Hand", "{S}ForeArm", (0.25, 0.0, 0.0)),
    ("{S}HandThumb1", "{S}Hand", (0.03, 0.0, 0.03)),
    ("{S}HandIndex1", "{S}Hand", (0.09, 0.0, 0.03)),
    ("{S}HandMiddle1", "{S}Hand", (0.095, 0.0, 0.01)),
    ("{S}HandRing1", "{S}Hand", (0.09, 0.0, -0.01)),
    ("{S}HandPinky1", "{S}Hand", (0.08, 0.0, -0.03)),
]

_LEG = [
    ("{S}UpLeg", "Hips", (0.09, -0.05, 0.0)),
    ("{S}Leg", "{S}UpLeg", (0.0, -0.42, 0.0)),
    ("{S}Foot", "{S}Leg", (0.0, -0.42, 0.0)),
    ("{S}ToeBase", "{S}Foot", (0.0, -0.06, 0.12)),
]


def build_humanoid_skeleton(prefix: str = BONE_PREFIX, z_up: bool = False) -> Skeleton:
    """Build the rig. ``z_up`` rotates the armature root frame +90 deg about X,
    as Blender-authored exports do."""
    skeleton = Skeleton()
    if z_up:
        skeleton.root_frame.set_quaternion(quat_from_axis_angle(np.array([1.0, 0.0, 0.0]), np.pi / 2))

    def add(name, parent, offset):
        skeleton.add_bone(
            prefix + name,
            parent=prefix + parent if parent else None,
            position=offset,
        )

    for name, parent, offset in _SPINE:
        add(name, parent, offset)
    for template in (_ARM, _LEG):
        for side, sign in (("Left", 1.0), ("Right", -1.0)):
            for name, parent, (x, y, z) in template:
                add(name.replace("{S}", side), parent.replace("{S}", side), (sign * x, y, z))

    skeleton.update_world_matrices(force=True)
    return skeleton
