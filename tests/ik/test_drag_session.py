"""Tests for interactive chain dragging."""

import numpy as np

from poseforge.anatomy.model_loader import load_model
from poseforge.body.biomech_state import BiomechStateManager
from poseforge.body.humanoid import build_humanoid_skeleton
from poseforge.constants import BONE_PREFIX
from poseforge.core.events import EventBus, EventType
from poseforge.core.math_utils import quat_from_axis_angle, vec3
from poseforge.ik.ccd_solver import CCDSolver
from poseforge.ik.chain_setup import build_ik_configuration
from poseforge.ik.drag_session import ChainRestPose, IKDragSession, chain_bones
from poseforge.ik.rotation_compensation import RotationCompensatedSolver


def _make_session(calibrated=False, bus=None, z_up=False):
    skeleton = build_humanoid_skeleton(z_up=z_up)
    model = load_model()
    state = None
    if calibrated:
        state = BiomechStateManager(model)
        state.initialize(skeleton)
        state.calibrate_neutral()
    setup = build_ik_configuration(skeleton, model, state)
    solver = RotationCompensatedSolver(CCDSolver(skeleton, setup.definitions))
    return skeleton, IKDragSession(skeleton, solver, state, bus)


def _foot_goal(skeleton):
    return skeleton.world_position(skeleton.bone_index(BONE_PREFIX + "LeftFoot")) + np.array([0.0, 0.15, 0.2])


def test_chain_bones_excludes_target():
    skeleton, session = _make_session()
    leg = session.solver.definitions[0]
    bones = chain_bones(leg)
    assert bones[0] == leg.effector
    assert leg.target not in bones
    assert len(bones) == 3


def test_begin_unknown_chain():
    _, session = _make_session()
    assert not session.begin("Tail")
    assert session.active_chain is None
    result = session.drag_to(vec3(0, 0, 0))
    assert not result.ok


def test_drag_moves_effector():
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.IK_SOLVED, lambda **kw: seen.append(kw["result"].chain))
    skeleton, session = _make_session(bus=bus)
    goal = _foot_goal(skeleton)
    effector = skeleton.bone_index(BONE_PREFIX + "LeftFoot")
    start = np.linalg.norm(skeleton.world_position(effector) - goal)

    assert session.begin("Left Leg")
    result = session.drag_to(goal)
    assert result.ok
    assert result.solve.distance < start
    assert seen == ["Left Leg"]


def test_each_drag_starts_from_rest():
    skeleton, session = _make_session()
    goal = _foot_goal(skeleton)
    session.begin("Left Leg")
    session.drag_to(goal + np.array([0.0, 0.0, 0.1]))
    session.drag_to(goal)
    first = [b.quaternion.copy() for b in skeleton]

    other_skeleton, other = _make_session()
    other.begin("Left Leg")
    other.drag_to(goal)
    for q, bone in zip(first, other_skeleton):
        np.testing.assert_allclose(q, bone.quaternion, atol=1e-12)


def test_manual_edits_outside_chain_survive():
    skeleton, session = _make_session()
    arm = skeleton.get_bone(BONE_PREFIX + "RightArm")
    edit = quat_from_axis_angle(vec3(0, 0, 1), 0.7)
    arm.set_quaternion(edit)

    session.begin("Left Leg")
    session.drag_to(_foot_goal(skeleton))
    np.testing.assert_array_equal(arm.quaternion, edit)


def test_end_refreshes_rest_snapshot():
    skeleton, session = _make_session()
    knee = skeleton.get_bone(BONE_PREFIX + "LeftLeg")
    session.begin("Left Leg")
    session.drag_to(_foot_goal(skeleton))
    session.end()
    posed = knee.quaternion.copy()
    assert session.active_chain is None
    assert not np.allclose(posed, [0, 0, 0, 1])

    # Restoring now returns to the dragged pose, not the bind pose
    knee.set_quaternion(quat_from_axis_angle(vec3(1, 0, 0), 0.3))
    session.rest.restore(skeleton, "Left Leg")
    np.testing.assert_array_equal(knee.quaternion, posed)


def test_cancel_restores_chain_and_target():
    skeleton, session = _make_session()
    knee = skeleton.get_bone(BONE_PREFIX + "LeftLeg")
    session.begin("Left Leg")
    session.drag_to(_foot_goal(skeleton))
    session.cancel()
    np.testing.assert_array_equal(knee.quaternion, [0, 0, 0, 1])
    leg = session.solver.definitions[0]
    np.testing.assert_allclose(skeleton.world_position(leg.target), skeleton.world_position(leg.effector))


def test_drag_clamps_through_state():
    skeleton, session = _make_session(calibrated=True)
    # Far behind the body: the unconstrained solve would bend the knee forward
    goal = skeleton.world_position(skeleton.bone_index(BONE_PREFIX + "Hips")) + np.array([0.1, -0.4, -0.6])
    session.begin("Left Leg")
    result = session.drag_to(goal)
    assert result.ok
    knee = session.state.get_coordinate_value("knee_left", "knee_l_flexion")
    limits = session.state.model.get_coordinate("knee_l_flexion")
    assert limits.range_min - 1e-9 <= knee <= limits.range_max + 1e-9


def test_drag_with_rotated_armature():
    skeleton, session = _make_session(z_up=True)
    saved = skeleton.root_frame.quaternion.copy()
    goal = _foot_goal(skeleton)
    effector = skeleton.bone_index(BONE_PREFIX + "LeftFoot")
    start = np.linalg.norm(skeleton.world_position(effector) - goal)
    session.begin("Left Leg")
    session.drag_to(goal)
    assert np.array_equal(skeleton.root_frame.quaternion, saved)
    assert np.linalg.norm(skeleton.world_position(effector) - goal) < start


def test_rest_pose_store():
    skeleton, session = _make_session()
    rest = ChainRestPose()
    assert not rest.restore(skeleton, "Left Leg")
    rest.capture_all(skeleton, session.solver.definitions)
    assert rest.has("Spine Chain")
    rest.clear()
    assert not rest.has("Spine Chain")
