"""Tests for the bone arena."""

import numpy as np
import pytest

from poseforge.core.math_utils import quat_equal, quat_from_axis_angle, quat_identity, vec3
from poseforge.core.skeleton import Skeleton


def _make_arm():
    sk = Skeleton()
    sk.add_bone("shoulder", position=(0, 1, 0))
    sk.add_bone("elbow", parent="shoulder", position=(1, 0, 0))
    sk.add_bone("wrist", parent="elbow", position=(1, 0, 0))
    sk.update_world_matrices()
    return sk


def test_add_bone_indices_and_parents():
    sk = _make_arm()
    assert [b.index for b in sk] == [0, 1, 2]
    assert sk.bones[0].parent == -1
    assert sk.bones[2].parent == 1
    assert sk.bone_index("elbow") == 1
    assert sk.bone_index("missing") is None
    assert "wrist" in sk
    assert len(sk) == 3


def test_parent_must_precede_child():
    sk = Skeleton()
    with pytest.raises(ValueError):
        sk.add_bone("child", parent="not_yet_added")
    with pytest.raises(ValueError):
        sk.add_bone("child", parent=3)


def test_duplicate_names_rejected():
    sk = _make_arm()
    with pytest.raises(ValueError):
        sk.add_bone("elbow")


def test_world_positions_chain():
    sk = _make_arm()
    np.testing.assert_array_almost_equal(sk.world_position(2), [2, 1, 0])


def test_rotation_propagates_to_children():
    sk = _make_arm()
    sk.set_local_quaternion(0, quat_from_axis_angle(vec3(0, 0, 1), np.pi / 2))
    sk.update_world_matrices()
    np.testing.assert_array_almost_equal(sk.world_position(1), [0, 2, 0])
    np.testing.assert_array_almost_equal(sk.world_position(2), [0, 3, 0])


def test_world_quaternion_includes_root_frame():
    sk = _make_arm()
    rot = quat_from_axis_angle(vec3(1, 0, 0), np.pi / 2)
    sk.root_frame.set_quaternion(rot)
    sk.update_world_matrices()
    assert quat_equal(sk.world_quaternion(2), rot, atol=1e-9)
    assert quat_equal(sk.world_quaternion(-1), rot, atol=1e-9)
    # Root frame rotates (0, 1, 0) onto +Z
    np.testing.assert_array_almost_equal(sk.world_position(0), [0, 0, 1])


def test_queries_refresh_dirty_matrices():
    sk = _make_arm()
    sk.bones[0].set_position(0, 5, 0)
    # No explicit update_world_matrices()
    np.testing.assert_array_almost_equal(sk.world_position(2), [2, 5, 0])


def test_world_to_local_and_set_world_position():
    sk = _make_arm()
    sk.set_local_quaternion(0, quat_from_axis_angle(vec3(0, 0, 1), np.pi / 2))
    sk.update_world_matrices()
    local = sk.world_to_local(0, vec3(0, 2, 0))
    np.testing.assert_array_almost_equal(local, [1, 0, 0])

    target = sk.add_bone("target")
    sk.set_bone_world_position(target.index, vec3(3, 4, 5))
    np.testing.assert_array_almost_equal(sk.world_position(target.index), [3, 4, 5])


def test_children_of():
    sk = _make_arm()
    assert sk.children_of(0) == [1]
    assert sk.children_of(-1) == [0]
    assert sk.children_of(2) == []


def test_copy_is_independent():
    sk = _make_arm()
    other = sk.copy()
    other.set_local_quaternion(1, quat_from_axis_angle(vec3(0, 1, 0), 1.0))
    other.update_world_matrices()
    assert quat_equal(sk.bones[1].quaternion, quat_identity())
    assert other.bone_index("wrist") == 2
