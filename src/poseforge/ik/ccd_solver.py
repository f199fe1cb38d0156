"""Cyclic coordinate descent IK over a bone arena.

Same per-link step as the Three.js CCDIKSolver: express the effector and
target directions in the link's frame, rotate the link about their cross
product by the angle between them (clamped to the chain's step limits),
then clamp the link's Euler angles to its box. Links are visited from the
effector toward the root. No randomness, so identical inputs give
identical results.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from poseforge.constants import DEFAULT_IK_ITERATIONS, IK_MIN_ROTATION
from poseforge.core.math_utils import (
    Vec3, euler_from_quat, normalize, quat_from_axis_angle, quat_from_euler,
    quat_inverse, quat_multiply, quat_normalize, quat_rotate_vec3,
)
from poseforge.core.skeleton import Skeleton

logger = logging.getLogger(__name__)


@dataclass
class IKLink:
    """One rotating bone of a chain, with an optional Euler box (radians)."""
    index: int
    enabled: bool = True
    rotation_min: Optional[Vec3] = None
    rotation_max: Optional[Vec3] = None
    order: str = "XYZ"

    @property
    def has_limits(self) -> bool:
        return self.rotation_min is not None and self.rotation_max is not None


@dataclass
class IKDefinition:
    name: str
    target: int
    effector: int
    links: list[IKLink] = field(default_factory=list)
    iteration: int = DEFAULT_IK_ITERATIONS
    min_angle: float = 0.0
    max_angle: float = math.pi


@dataclass
class SolveResult:
    name: str
    iterations: int = 0
    converged: bool = False
    distance: float = 0.0


def clamp_link_rotation(link: IKLink, q) -> np.ndarray:
    """Clamp a local quaternion's Euler angles (link order) into the link's box."""
    angles = np.array(euler_from_quat(q, link.order))
    clamped = np.clip(angles, link.rotation_min, link.rotation_max)
    if np.array_equal(clamped, angles):
        return q
    return quat_from_euler(clamped[0], clamped[1], clamped[2], link.order)


class CCDSolver:
    """Solve a list of chains in place on ``skeleton``."""

    def __init__(self, skeleton: Skeleton, definitions: Sequence[IKDefinition] = (), tolerance: float = 1e-4):
        self.skeleton = skeleton
        self.definitions = list(definitions)
        self.tolerance = tolerance

    def solve(self) -> list[SolveResult]:
        return [self.solve_chain(ik) for ik in self.definitions]

    def solve_chain(self, ik: IKDefinition) -> SolveResult:
        sk = self.skeleton
        sk.update_world_matrices()
        target_pos = sk.world_position(ik.target)

        iterations = 0
        for _ in range(ik.iteration):
            iterations += 1
            rotated = False
            for link in ik.links:
                if not link.enabled:
                    continue
                if self._step_link(ik, link, target_pos):
                    rotated = True
            if not rotated:
                break

        distance = float(np.linalg.norm(sk.world_position(ik.effector) - target_pos))
        result = SolveResult(ik.name, iterations, distance <= self.tolerance, distance)
        logger.debug("CCD %s: %d iterations, distance %.5f", ik.name, iterations, distance)
        return result

    def _step_link(self, ik: IKDefinition, link: IKLink, target_pos: Vec3) -> bool:
        sk = self.skeleton
        bone = sk.bones[link.index]
        link_pos = sk.world_position(link.index)
        inv_link_q = quat_inverse(sk.world_quaternion(link.index))
        effector_pos = sk.world_position(ik.effector)

        effector_vec = normalize(quat_rotate_vec3(inv_link_q, effector_pos - link_pos))
        target_vec = normalize(quat_rotate_vec3(inv_link_q, target_pos - link_pos))

        angle = math.acos(float(np.clip(np.dot(target_vec, effector_vec), -1.0, 1.0)))
        if angle < IK_MIN_ROTATION:
            return False
        if ik.min_angle is not None and angle < ik.min_angle:
            angle = ik.min_angle
        if ik.max_angle is not None and angle > ik.max_angle:
            angle = ik.max_angle

        axis = np.cross(effector_vec, target_vec)
        if np.linalg.norm(axis) < 1e-12:
            return False
        step = quat_from_axis_angle(normalize(axis), angle)
        q = quat_normalize(quat_multiply(bone.quaternion, step))
        if link.has_limits:
            q = clamp_link_rotation(link, q)
        bone.set_quaternion(q)
        sk.update_world_matrices()
        return True
