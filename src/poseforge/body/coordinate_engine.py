"""Joint coordinates from bone orientations, and back.

For a joint between parent segment P and child segment C:

    q_rel   = q_P_world^-1 * q_C_world      (relative orientation)
    q_delta = q_neutral^-1 * q_rel          (deviation from calibration)

``q_delta`` is split into per-axis Euler angles in the joint's order and
the joint's coordinates pick their axis out of that triple, flipping the
sign for inverted coordinates. Writing goes the other way round:
``q_rel = q_neutral * compose(angles)``.

Angle triples are always indexed by axis (0 = X, 1 = Y, 2 = Z).
"""

import logging
import math
from typing import Mapping, Optional, Sequence, Union

import numpy as np

from poseforge.anatomy.definitions import Coordinate, Joint
from poseforge.body.segment_registry import SegmentRegistry
from poseforge.core.errors import SegmentLookupError
from poseforge.core.math_utils import (
    Quat, euler_from_quat, quat_from_euler, quat_inverse, quat_multiply,
    quat_normalize,
)
from poseforge.core.state import CoordinateState, JointState

logger = logging.getLogger(__name__)

Angles = tuple[float, float, float]
CoordinateInput = Union[Mapping[str, float], Sequence[float]]


# ── Quaternion plumbing ───────────────────────────────────────────────

def compute_relative_quaternion(parent: str, child: str, registry: SegmentRegistry) -> Quat:
    """Orientation of ``child`` expressed in ``parent``'s frame.

    Raises SegmentLookupError when either segment does not resolve.
    """
    q_parent = registry.get_world_quaternion(parent)
    q_child = registry.get_world_quaternion(child)
    return quat_normalize(quat_multiply(quat_inverse(q_parent), q_child))


def calibrate_neutral(joint: Joint, registry: SegmentRegistry) -> Optional[Quat]:
    """Record the joint's current relative orientation as its neutral."""
    try:
        return compute_relative_quaternion(joint.parent, joint.child, registry)
    except SegmentLookupError as e:
        logger.warning("Cannot calibrate %s: %s", joint.id, e)
        return None


def compute_deviation(q_neutral: Quat, q_rel: Quat) -> Quat:
    return quat_normalize(quat_multiply(quat_inverse(q_neutral), q_rel))


def decompose(q_delta: Quat, order: str) -> Angles:
    """Per-axis Euler angles (x, y, z) of ``q_delta`` in ``order``."""
    return euler_from_quat(q_delta, order)


def compose(angles: Sequence[float], order: str) -> Quat:
    return quat_from_euler(angles[0], angles[1], angles[2], order)


# ── Angle <-> coordinate mapping ──────────────────────────────────────

def angles_to_coordinates(joint: Joint, angles: Sequence[float]) -> dict[str, float]:
    """Pick each coordinate's axis out of ``angles``, applying ``invert``."""
    return {
        c.id: -angles[c.index] if c.invert else angles[c.index]
        for c in joint.coordinates
    }


def coordinates_to_angles(joint: Joint, coords: CoordinateInput) -> Angles:
    """Inverse of angles_to_coordinates; axes that are not DOFs come out 0.

    ``coords`` is either a mapping coordinate id -> value (missing ids fall
    back to the coordinate's neutral) or an axis-indexed triple in
    coordinate space.
    """
    angles = [0.0, 0.0, 0.0]
    for c in joint.coordinates:
        if isinstance(coords, Mapping):
            value = float(coords.get(c.id, c.neutral))
        else:
            value = float(coords[c.index])
        angles[c.index] = -value if c.invert else value
    return angles[0], angles[1], angles[2]


# ── Read path ─────────────────────────────────────────────────────────

def compute_joint_state(
    joint: Joint, registry: SegmentRegistry, q_neutral: Quat,
) -> Optional[JointState]:
    """Decompose the joint's current pose. Values are never clamped here."""
    try:
        q_rel = compute_relative_quaternion(joint.parent, joint.child, registry)
    except SegmentLookupError as e:
        logger.debug("Skipping %s: %s", joint.id, e)
        return None

    q_delta = compute_deviation(q_neutral, q_rel)
    angles = decompose(q_delta, joint.euler_order)
    values = angles_to_coordinates(joint, angles)

    coordinates = {
        c.id: CoordinateState(
            value=values[c.id],
            locked=c.locked,
            out_of_range=not c.contains(values[c.id]),
        )
        for c in joint.coordinates
    }
    return JointState(
        joint_id=joint.id,
        coordinates=coordinates,
        q_rel=q_rel,
        q_delta=q_delta,
        angles=angles,
    )


# ── Write path ────────────────────────────────────────────────────────

def relative_to_child_local(
    joint: Joint, q_rel: Quat, registry: SegmentRegistry,
) -> tuple[int, Quat]:
    """Local quaternion the child bone needs so its relative orientation is ``q_rel``.

    Goes through the child's actual skeleton parent, so bones sitting
    between the two segments keep their own rotation.
    """
    child = registry.resolve(joint.child)
    if child.kind != "bone":
        raise SegmentLookupError(f"Cannot write to virtual segment {joint.child}")
    skeleton = registry.skeleton
    q_parent_world = registry.get_world_quaternion(joint.parent)
    q_child_world = quat_multiply(q_parent_world, q_rel)
    bone = skeleton.bones[child.bone_index]
    q_bone_parent = skeleton.world_quaternion(bone.parent)
    q_local = quat_normalize(quat_multiply(quat_inverse(q_bone_parent), q_child_world))
    return child.bone_index, q_local


def apply_coordinates_to_skeleton(
    joint: Joint,
    coords: CoordinateInput,
    q_neutral: Quat,
    registry: SegmentRegistry,
) -> bool:
    """Pose the child bone so the joint reads ``coords``; propagate world matrices.

    Returns False (and leaves the skeleton untouched) when a segment does
    not resolve.
    """
    angles = coordinates_to_angles(joint, coords)
    q_rel = quat_multiply(q_neutral, compose(angles, joint.euler_order))
    try:
        index, q_local = relative_to_child_local(joint, q_rel, registry)
    except SegmentLookupError as e:
        logger.warning("Cannot apply coordinates to %s: %s", joint.id, e)
        return False
    registry.skeleton.set_local_quaternion(index, q_local)
    registry.skeleton.update_world_matrices()
    return True


# ── Scalar helpers ────────────────────────────────────────────────────

def clamp_coordinate(coord: Coordinate, value: float) -> float:
    return coord.clamp(value)


def is_coordinate_valid(coord: Coordinate, value: float) -> bool:
    return math.isfinite(value) and coord.contains(value)


def lerp_coordinate(a: float, b: float, t: float) -> float:
    return a + (b - a) * float(np.clip(t, 0.0, 1.0))
