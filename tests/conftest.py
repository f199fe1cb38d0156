"""Shared rigs for body and IK tests."""

import numpy as np
import pytest

from poseforge.anatomy.model_loader import load_model
from poseforge.body.humanoid import build_humanoid_skeleton
from poseforge.core.math_utils import quat_from_axis_angle


def make_twisted_rig(seed=3, max_angle=0.4, z_up=False):
    """Humanoid whose bones all start from random non-identity local rotations."""
    skeleton = build_humanoid_skeleton(z_up=z_up)
    rng = np.random.default_rng(seed)
    for bone in skeleton:
        axis = rng.normal(size=3)
        axis /= np.linalg.norm(axis)
        bone.set_quaternion(quat_from_axis_angle(axis, rng.uniform(0.05, max_angle)))
    skeleton.update_world_matrices()
    return skeleton


@pytest.fixture
def model():
    return load_model()


@pytest.fixture
def rig():
    return build_humanoid_skeleton()


@pytest.fixture
def twisted_rig():
    return make_twisted_rig()


@pytest.fixture
def make_rig():
    """Factory for twisted rigs with a chosen seed or root frame."""
    return make_twisted_rig
