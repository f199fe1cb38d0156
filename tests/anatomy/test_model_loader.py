"""Tests for the biomechanical model table and its loader."""

import copy
import json
import math

import pytest

from poseforge.anatomy.definitions import (
    BallJoint, Coordinate, HingeJoint, SaddleJoint, make_joint,
)
from poseforge.anatomy.model_loader import build_model, load_model
from poseforge.constants import BONE_PREFIX
from poseforge.core.errors import ModelConfigError


def _make_table():
    return {
        "version": 1,
        "bone_prefix": "rig:",
        "root_segment": "upper",
        "segments": [
            {"id": "upper", "bone": "UpperArm"},
            {"id": "lower", "bone": "LowerArm"},
            {"id": "marker", "source": "virtual"},
        ],
        "joints": [
            {"id": "elbow", "parent": "upper", "child": "lower", "order": "ZXY",
             "coordinates": [
                 {"id": "elbow_flex", "axis": "Z", "index": 2, "min": 0, "max": 145},
             ]},
        ],
        "ik_chains": [
            {"name": "Arm", "target": "ArmTarget", "effector": "LowerArm",
             "links": ["UpperArm"], "iteration": 4,
             "link_bounds": {"UpperArm": {"min": [-90, 0, 0], "max": [90, 0, 0]}}},
        ],
    }


# ── Bundled model ─────────────────────────────────────────────────────

def test_default_model_loads():
    model = load_model()
    assert model.root_segment == "pelvis"
    assert len(model.segments) == 32
    assert model.get_joint("knee_left").kind == "ball"
    assert model.get_joint("elbow_right").kind == "saddle"
    assert model.get_joint("mtp_right").kind == "hinge"


def test_default_model_is_cached():
    assert load_model() is load_model()


def test_default_model_prefixes_bones():
    model = load_model()
    seg = model.get_segment("humerus_right")
    assert seg.bone_name == BONE_PREFIX + "RightArm"
    assert model.get_segment_by_bone_name(BONE_PREFIX + "RightArm") is seg


def test_default_model_lookups():
    model = load_model()
    gh = model.get_joint_by_child_bone(BONE_PREFIX + "RightArm")
    assert gh.id == "gh_right"
    assert model.get_parent_joint("humerus_right") is gh
    assert {j.id for j in model.get_child_joints("humerus_right")} == {"elbow_right"}
    assert model.shoulder_joints("left") == (model.get_joint("gh_left"), model.get_joint("st_left"))
    assert all(j.side == "left" for j in model.joints_by_side("left"))
    assert model.get_coordinate("gh_r_abduction").invert


def test_default_model_degrees_become_radians():
    c = load_model().get_coordinate("elbow_r_flexion")
    assert c.range_min == 0.0
    assert c.range_max == pytest.approx(math.radians(145))


def test_default_ik_chains():
    model = load_model()
    leg = model.get_ik_chain("Left Leg")
    assert leg.effector == BONE_PREFIX + "LeftFoot"
    assert model.get_ik_chain_by_effector(leg.effector) is leg
    assert model.get_ik_chain_by_link(leg.links[0]) is leg
    assert not model.get_ik_chain("Right Arm").enabled
    assert model.get_ik_chain("Nope") is None


# ── build_model ───────────────────────────────────────────────────────

def test_build_small_table():
    model = build_model(_make_table())
    assert model.get_segment("lower").bone_name == "rig:LowerArm"
    assert model.get_segment("marker").is_virtual
    chain = model.get_ik_chain("Arm")
    assert chain.target == "ArmTarget"
    assert chain.links == ("rig:UpperArm",)
    assert chain.iteration == 4
    lo, hi = chain.link_bounds["rig:UpperArm"]
    assert lo[0] == pytest.approx(-math.pi / 2)
    assert hi[0] == pytest.approx(math.pi / 2)


def test_unsupported_version():
    data = _make_table()
    data["version"] = 2
    with pytest.raises(ModelConfigError):
        build_model(data)


def test_duplicate_segment():
    data = _make_table()
    data["segments"].append({"id": "upper", "bone": "Other"})
    with pytest.raises(ModelConfigError, match="Duplicate segment"):
        build_model(data)


def test_unknown_segment_reference():
    data = _make_table()
    data["joints"][0]["child"] = "nowhere"
    with pytest.raises(ModelConfigError, match="unknown segment"):
        build_model(data)


def test_segment_child_of_two_joints():
    data = _make_table()
    extra = copy.deepcopy(data["joints"][0])
    extra["id"] = "elbow2"
    extra["coordinates"][0]["id"] = "elbow2_flex"
    data["joints"].append(extra)
    with pytest.raises(ModelConfigError, match="more than one joint"):
        build_model(data)


def test_missing_field():
    data = _make_table()
    del data["joints"][0]["coordinates"][0]["max"]
    with pytest.raises(ModelConfigError, match="max"):
        build_model(data)


def test_axis_must_match_index():
    data = _make_table()
    data["joints"][0]["coordinates"][0]["axis"] = "X"
    with pytest.raises(ModelConfigError):
        build_model(data)


def test_bad_euler_order():
    data = _make_table()
    data["joints"][0]["order"] = "XXY"
    with pytest.raises(ModelConfigError):
        build_model(data)


def test_inverted_range():
    data = _make_table()
    data["joints"][0]["coordinates"][0]["min"] = 200
    with pytest.raises(ModelConfigError):
        build_model(data)


def test_chain_without_links():
    data = _make_table()
    data["ik_chains"][0]["links"] = []
    with pytest.raises(ModelConfigError):
        build_model(data)


def test_load_model_from_path(tmp_path):
    path = tmp_path / "model.json"
    path.write_text(json.dumps(_make_table()))
    assert load_model(path).get_joint("elbow") is not None


def test_load_model_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ModelConfigError):
        load_model(path)


# ── Joint variants ────────────────────────────────────────────────────

def _coord(cid, index, joint_id="j"):
    return Coordinate(cid, joint_id, cid, "XYZ"[index], index, -1.0, 1.0)


def test_make_joint_picks_variant():
    assert isinstance(make_joint("j", "J", "a", "b", "XYZ", (_coord("c0", 0),)), HingeJoint)
    assert isinstance(
        make_joint("j", "J", "a", "b", "XYZ", (_coord("c0", 0), _coord("c1", 1))), SaddleJoint,
    )
    ball = make_joint("j", "J", "a", "b", "XYZ", (_coord("c0", 0), _coord("c1", 1), _coord("c2", 2)))
    assert isinstance(ball, BallJoint)
    assert ball.dof == 3
    assert ball.axis_indices == (0, 1, 2)
    assert ball.coordinate_by_index(1).id == "c1"
    assert ball.get_coordinate("c2").index == 2


def test_make_joint_rejects_no_coordinates():
    with pytest.raises(ModelConfigError):
        make_joint("j", "J", "a", "b", "XYZ", ())


def test_duplicate_axis_index():
    with pytest.raises(ModelConfigError):
        make_joint("j", "J", "a", "b", "XYZ", (_coord("c0", 0), _coord("c1", 0)))


def test_coordinate_helpers():
    c = Coordinate("c", "j", "c", "X", 0, -0.5, 1.5)
    assert c.center == pytest.approx(0.5)
    assert c.contains(1.5)
    assert not c.contains(1.6)
    assert c.clamp(2.0) == 1.5
    assert c.clamp(-1.0) == -0.5
