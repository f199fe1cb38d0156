"""Tests for the biomechanical state manager."""

import asyncio
import math

import numpy as np
import pytest

from poseforge.body.biomech_state import BiomechStateManager
from poseforge.body.neutral_pose import NeutralPoseStore
from poseforge.constants import BONE_PREFIX
from poseforge.core.errors import NeutralPoseLoadError
from poseforge.core.events import EventBus, EventType
from poseforge.core.math_utils import quat_from_axis_angle, vec3
from poseforge.core.skeleton import Skeleton
from poseforge.core.state import LifecycleState


def _make_manager(rig, bus=None):
    state = BiomechStateManager(bus=bus)
    state.initialize(rig)
    state.calibrate_neutral(label="bind")
    return state


async def _failing_loader(path):
    raise NeutralPoseLoadError(f"missing {path}")


# ── Lifecycle ─────────────────────────────────────────────────────────

def test_starts_uninitialized():
    state = BiomechStateManager()
    assert state.state is LifecycleState.UNINITIALIZED
    assert state.update(0.016).updated_count == 0
    assert not state.calibrate_neutral().success


def test_initialize_empty_skeleton_fails():
    state = BiomechStateManager()
    result = state.initialize(Skeleton())
    assert not result.success
    assert result.errors
    assert not state.is_initialized()


def test_initialize_full_rig(rig, model):
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.INITIALIZED, lambda **kw: seen.append(kw["result"]))
    state = BiomechStateManager(model, bus=bus)
    result = state.initialize(rig)
    assert result.success
    assert result.segment_count == len(model.segments)
    assert result.joints_initialized == result.joint_count == len(model.joints)
    assert result.missing_segments == []
    assert state.state is LifecycleState.INITIALIZED
    assert seen == [result]


def test_initialize_partial_rig_records_gaps():
    skeleton = Skeleton()
    skeleton.add_bone(BONE_PREFIX + "Hips")
    skeleton.add_bone(BONE_PREFIX + "Spine", parent=BONE_PREFIX + "Hips", position=(0, 0.1, 0))
    state = BiomechStateManager()
    result = state.initialize(skeleton)
    assert result.success
    assert result.segment_count == 2
    assert result.joints_initialized == 1
    assert "head" in result.missing_segments

    calibration = state.calibrate_neutral()
    assert calibration.calibrated_count == 1
    assert "knee_left" in calibration.skipped_joints
    assert state.get_model_state().joints.keys() == {"lumbar_spine"}


def test_calibration_reads_zero(make_rig):
    state = _make_manager(make_rig(seed=2))
    assert state.is_calibrated()
    for value in state.get_model_state().q.values():
        assert value == pytest.approx(0.0, abs=1e-9)


def test_calibration_seeds_neutral_store(rig):
    state = _make_manager(rig)
    assert state.neutral_store.source == "capture"
    assert state.neutral_store.label == "bind"
    assert state.neutral_store.bone_count == len(rig)


def test_reset(rig):
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.STATE_RESET, lambda **kw: seen.append(1))
    state = _make_manager(rig, bus)
    state.reset()
    assert state.state is LifecycleState.UNINITIALIZED
    assert state.get_model_state().joints == {}
    assert state.time_since_last_update() is None
    assert seen == [1]


# ── Per-frame reads ───────────────────────────────────────────────────

def test_update_reports_violations_without_clamping(rig):
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.CONSTRAINT_VIOLATION, lambda **kw: seen.append(kw))
    state = _make_manager(rig, bus)
    forearm = rig.get_bone(BONE_PREFIX + "RightForeArm")
    forearm.set_quaternion(quat_from_axis_angle(vec3(0, 0, 1), math.radians(160)))

    result = state.update(0.016)
    assert result.updated_count == len(state.model.joints)
    assert [v.coordinate_id for v in result.violations] == ["elbow_r_flexion"]
    assert result.violations[0].value == pytest.approx(math.radians(160))
    assert seen[0]["source"] == "state"
    # Reads leave the skeleton alone
    np.testing.assert_allclose(
        forearm.quaternion, quat_from_axis_angle(vec3(0, 0, 1), math.radians(160)),
    )


def test_calibrated_twisted_rig_has_no_violations(make_rig):
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.CONSTRAINT_VIOLATION, lambda **kw: seen.append(kw))
    state = _make_manager(make_rig(seed=3), bus)
    result = state.update(0.016)
    assert result.violations == []
    assert seen == []
    for joint in state.get_model_state().joints.values():
        assert not any(cs.out_of_range for cs in joint.coordinates.values())


def test_update_publishes_state(rig):
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.STATE_UPDATED, lambda **kw: seen.append(kw["result"]))
    state = _make_manager(rig, bus)
    state.update(5.0)
    assert len(seen) == 2  # calibration plus this frame
    assert state.time_since_last_update() >= 0.0


# ── Writes ────────────────────────────────────────────────────────────

def test_apply_coordinates_partial_mapping(rig):
    state = _make_manager(rig)
    state.apply_coordinates("elbow_right", {"elbow_r_pronation": 0.3})
    result = state.apply_coordinates("elbow_right", {"elbow_r_flexion": 1.0})
    assert result.success
    assert result.applied["elbow_r_pronation"] == pytest.approx(0.3, abs=1e-9)
    assert state.get_coordinate_value("elbow_right", "elbow_r_flexion") == pytest.approx(1.0, abs=1e-9)
    assert state.get_coordinate_value("elbow_right", "elbow_r_pronation") == pytest.approx(0.3, abs=1e-9)


def test_apply_coordinates_axis_vector(rig):
    state = _make_manager(rig)
    result = state.apply_coordinates("gh_right", (0.1, 0.4, 0.6))
    assert result.success
    assert state.get_coordinate_value("gh_right", 2) == pytest.approx(0.6, abs=1e-9)
    assert state.get_coordinate_value("gh_right", "gh_r_flexion") == pytest.approx(0.4, abs=1e-9)
    assert state.get_coordinate_value("gh_right", "nope") is None


def test_apply_coordinates_clamps_when_asked(rig):
    state = _make_manager(rig)
    result = state.apply_coordinates("elbow_right", {"elbow_r_flexion": 3.0}, clamp_to_rom=True)
    assert result.clamped
    limit = state.model.get_coordinate("elbow_r_flexion").range_max
    assert state.get_coordinate_value("elbow_right", "elbow_r_flexion") == pytest.approx(limit, abs=1e-9)

    unclamped = state.apply_coordinates("elbow_right", {"elbow_r_flexion": 3.0})
    assert not unclamped.clamped
    assert state.get_joint_state("elbow_right").coordinates["elbow_r_flexion"].out_of_range


def test_apply_coordinates_errors(rig):
    state = BiomechStateManager()
    assert state.apply_coordinates("elbow_right", {}).error == "Not calibrated"
    state = _make_manager(rig)
    assert "Unknown joint" in state.apply_coordinates("tail", {}).error
    assert "Unknown coordinates" in state.apply_coordinates("elbow_right", {"x": 1.0}).error
    assert state.apply_coordinates("elbow_right", (1.0, 2.0)).error


def test_apply_publishes_event(rig):
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.COORDINATES_APPLIED, lambda **kw: seen.append(kw["result"].joint_id))
    state = _make_manager(rig, bus)
    state.apply_coordinates("knee_left", {"knee_l_flexion": -0.5})
    assert seen == ["knee_left"]


def test_validate_bone(rig):
    state = _make_manager(rig)
    state.apply_coordinates("knee_left", {"knee_l_flexion": 0.5})
    result = state.validate_bone(BONE_PREFIX + "LeftLeg")
    assert result.clamped
    assert result.violations == ["knee_l_flexion: 0.500 -> 0.175"]
    assert state.get_coordinate_value("knee_left", "knee_l_flexion") == pytest.approx(math.radians(10), abs=1e-9)
    assert state.validate_bone(BONE_PREFIX + "LeftLeg").valid
    assert state.validate_bone(BONE_PREFIX + "Hips").joint_id is None


# ── Queries ───────────────────────────────────────────────────────────

def test_queries_return_copies(rig):
    state = _make_manager(rig)
    js = state.get_joint_state("elbow_right")
    js.coordinates["elbow_r_flexion"].value = 9.0
    assert state.get_coordinate_value("elbow_right", "elbow_r_flexion") != 9.0
    q = state.get_neutral_quaternion("elbow_right")
    q[3] = 9.0
    assert state.get_neutral_quaternion("elbow_right")[3] != 9.0
    assert state.get_joint_state("tail") is None
    assert state.get_neutral_quaternion("tail") is None


def test_diagnostics(rig):
    state = _make_manager(rig)
    diag = state.get_diagnostics()
    assert diag.initialized and diag.calibrated
    assert diag.segment_count == len(state.model.segments)
    assert diag.neutral_pose_count == len(state.model.joints)
    assert diag.missing_segments == []
    assert diag.lookup_failures == 0
    assert not diag.used_fallback_reference
    assert diag.neutral_pose_source == "capture"
    assert diag.last_update_age_ms is not None


# ── Neutral pose loading ──────────────────────────────────────────────

def test_failed_load_captures_first_frame(rig):
    bus = EventBus()
    captured = []
    bus.subscribe(EventType.NEUTRAL_POSE_CAPTURED, lambda **kw: captured.append(kw["label"]))
    store = NeutralPoseStore(bus, loader=_failing_loader)
    state = BiomechStateManager(neutral_store=store, bus=bus)

    result = asyncio.run(state.load_neutral_pose("missing.glb"))
    assert not result.ok
    state.initialize(rig)
    state.calibrate_neutral(capture_pose=False)
    assert captured == ["first-frame"]
    assert store.source == "capture"


def test_loaded_pose_is_kept_on_calibration(rig):
    async def loader(path):
        return {BONE_PREFIX + "Hips": np.array([0.0, 0.0, 0.0, 1.0])}

    store = NeutralPoseStore(loader=loader)
    state = BiomechStateManager(neutral_store=store)
    assert asyncio.run(state.load_neutral_pose("neutral.json")).ok
    state.initialize(rig)
    state.calibrate_neutral()
    assert store.source == "asset"
    assert store.bone_count == 1
