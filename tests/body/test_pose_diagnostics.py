"""Tests for pose snapshot diffs."""

import math

from poseforge.body.pose_diagnostics import (
    capture_pose_snapshot, diff_pose_snapshots, format_pose_deltas,
)
from poseforge.constants import BONE_PREFIX
from poseforge.core.math_utils import quat_from_axis_angle, vec3


def test_no_change(rig):
    before = capture_pose_snapshot(rig)
    after = capture_pose_snapshot(rig)
    assert diff_pose_snapshots(before, after) == []
    assert format_pose_deltas([]) == "No bone changes"


def test_rotation_moves_descendants(rig):
    before = capture_pose_snapshot(rig)
    rig.get_bone(BONE_PREFIX + "RightForeArm").set_quaternion(
        quat_from_axis_angle(vec3(0, 0, 1), math.radians(30))
    )
    after = capture_pose_snapshot(rig)
    deltas = {d.bone: d for d in diff_pose_snapshots(before, after)}

    forearm = deltas[BONE_PREFIX + "RightForeArm"]
    assert abs(forearm.rotation_delta_deg - 30.0) < 1e-6
    assert forearm.position_delta < 1e-9
    assert deltas[BONE_PREFIX + "RightHand"].position_delta > 0.1
    assert BONE_PREFIX + "LeftHand" not in deltas
    assert BONE_PREFIX + "RightArm" not in deltas


def test_format_lists_bones(rig):
    before = capture_pose_snapshot(rig)
    rig.get_bone(BONE_PREFIX + "Head").set_position(0.0, 0.2, 0.0)
    text = format_pose_deltas(diff_pose_snapshots(before, capture_pose_snapshot(rig)))
    assert text.startswith("1 bone(s) changed:")
    assert "Head" in text
