"""Before/after snapshots of world bone transforms, for debugging pose writes."""

import logging
from dataclasses import dataclass

import numpy as np

from poseforge.constants import DEFAULT_SNAPSHOT_TOLERANCE
from poseforge.core.math_utils import Quat, Vec3, mat4_decompose, quat_angle_to, rad_to_deg
from poseforge.core.skeleton import Skeleton

logger = logging.getLogger(__name__)


@dataclass
class BoneSnapshot:
    position: Vec3
    quaternion: Quat
    scale: Vec3


@dataclass
class BoneDelta:
    bone: str
    position_delta: float
    rotation_delta_deg: float
    scale_delta: float


def capture_pose_snapshot(skeleton: Skeleton) -> dict[str, BoneSnapshot]:
    """World position, rotation and scale of every bone."""
    skeleton.update_world_matrices()
    snapshot = {}
    for bone in skeleton:
        position, quaternion, scale = mat4_decompose(bone.world_matrix)
        snapshot[bone.name] = BoneSnapshot(position, quaternion, scale)
    return snapshot


def diff_pose_snapshots(
    before: dict[str, BoneSnapshot],
    after: dict[str, BoneSnapshot],
    tolerance: float = DEFAULT_SNAPSHOT_TOLERANCE,
) -> list[BoneDelta]:
    """Bones present in both snapshots whose transform moved beyond ``tolerance``.

    ``tolerance`` applies to distance, degrees and scale alike.
    """
    deltas = []
    tol2 = tolerance * tolerance
    for name, a in before.items():
        b = after.get(name)
        if b is None:
            continue
        pos2 = float(np.sum((b.position - a.position) ** 2))
        rot_deg = rad_to_deg(quat_angle_to(a.quaternion, b.quaternion))
        scale2 = float(np.sum((b.scale - a.scale) ** 2))
        if pos2 > tol2 or abs(rot_deg) > tolerance or scale2 > tol2:
            deltas.append(BoneDelta(name, float(np.sqrt(pos2)), rot_deg, float(np.sqrt(scale2))))
    return deltas


def format_pose_deltas(deltas: list[BoneDelta]) -> str:
    if not deltas:
        return "No bone changes"
    lines = [f"{len(deltas)} bone(s) changed:"]
    for d in deltas:
        lines.append(
            f"  {d.bone}: pos {d.position_delta:.4f}, rot {d.rotation_delta_deg:.2f} deg, "
            f"scale {d.scale_delta:.4f}"
        )
    return "\n".join(lines)
