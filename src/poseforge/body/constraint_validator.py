"""Range-of-motion enforcement on bone rotations.

Each bone's rotation is read relative to its rest reference (the neutral
pose store, a locally captured reference, or, as a last resort, the
bone's current rotation), decomposed through the coordinate engine and
clamped coordinate by coordinate. Only changed bones are written back.
"""

import logging
from typing import Iterable, Mapping, Optional, Sequence

from poseforge.anatomy.definitions import BiomechModel, Joint
from poseforge.body.coordinate_engine import (
    Angles, angles_to_coordinates, compose, compute_deviation, coordinates_to_angles,
    decompose,
)
from poseforge.body.neutral_pose import NeutralPoseStore
from poseforge.constants import AXIS_LETTERS, DEFAULT_BLEND_FACTOR, LIMIT_EPSILON
from poseforge.core.errors import ConstraintReferenceMissing
from poseforge.core.events import EventBus, EventType
from poseforge.core.math_utils import Quat, quat_multiply, quat_normalize, quat_slerp
from poseforge.core.skeleton import Skeleton
from poseforge.core.state import ConstraintSummary, ConstraintViolation, ValidationResult

logger = logging.getLogger(__name__)


def clamp_coordinates(joint: Joint, values: Mapping[str, float]) -> tuple[dict[str, float], bool]:
    """Clamp coordinate values (coordinate sign convention) to the joint's ROM.

    Unclamped coordinates pass through, locked ones are pinned to their
    neutral value. Returns the new values and whether anything changed.
    """
    out: dict[str, float] = {}
    changed = False
    for c in joint.coordinates:
        value = float(values.get(c.id, c.neutral))
        new = value
        if c.locked:
            if abs(value - c.neutral) > LIMIT_EPSILON:
                new = c.neutral
        elif c.clamped:
            if value < c.range_min - LIMIT_EPSILON:
                new = c.range_min
            elif value > c.range_max + LIMIT_EPSILON:
                new = c.range_max
        if new != value:
            changed = True
        out[c.id] = new
    return out, changed


def _format_violation(axis: int, old: float, new: float) -> str:
    return f"{AXIS_LETTERS[axis]}: {old:.3f} -> {new:.3f}"


class ConstraintValidator:
    """Clamp bones to joint limits relative to their rest reference."""

    def __init__(
        self,
        skeleton: Skeleton,
        model: BiomechModel,
        neutral_store: Optional[NeutralPoseStore] = None,
        bus: Optional[EventBus] = None,
    ):
        self.skeleton = skeleton
        self.model = model
        self.neutral_store = neutral_store
        self._bus = bus
        self._references: dict[str, Quat] = {}
        self.fallback_bones: list[str] = []

    @property
    def used_fallback_reference(self) -> bool:
        return bool(self.fallback_bones)

    # ── Rest reference ────────────────────────────────────────────────

    def capture_reference(self, skeleton: Optional[Skeleton] = None) -> int:
        """Store every bone's current local rotation as its rest reference."""
        source = skeleton if skeleton is not None else self.skeleton
        self._references = {bone.name: bone.quaternion.copy() for bone in source}
        return len(self._references)

    def clear_reference(self) -> None:
        self._references.clear()
        self.fallback_bones.clear()

    def rest_reference(self, bone_name: str) -> Quat:
        """Rest rotation of ``bone_name`` or raise ConstraintReferenceMissing."""
        if self.neutral_store is not None:
            q = self.neutral_store.get_rotation(bone_name)
            if q is not None:
                return q
        q = self._references.get(bone_name)
        if q is not None:
            return q.copy()
        raise ConstraintReferenceMissing(f"No rest reference for {bone_name}")

    def _reference(self, bone_name: str) -> Quat:
        try:
            return self.rest_reference(bone_name)
        except ConstraintReferenceMissing:
            bone = self.skeleton.get_bone(bone_name)
            q = bone.quaternion.copy()
            self._references[bone_name] = q
            self.fallback_bones.append(bone_name)
            logger.warning("No rest reference for %s, using its current rotation", bone_name)
            if self._bus is not None:
                self._bus.publish(EventType.FALLBACK_REFERENCE_USED, bone=bone_name)
            return q.copy()

    # ── Relative rotation ─────────────────────────────────────────────

    def _joint_for(self, bone_name: str, joint: Optional[Joint]) -> Optional[Joint]:
        return joint if joint is not None else self.model.get_joint_by_child_bone(bone_name)

    def relative_angles(self, bone_name: str, joint: Optional[Joint] = None) -> Optional[Angles]:
        """Per-axis angles of the bone's rotation away from its rest reference."""
        bone = self.skeleton.get_bone(bone_name)
        joint = self._joint_for(bone_name, joint)
        if bone is None or joint is None:
            return None
        q_rel = compute_deviation(self._reference(bone_name), bone.quaternion)
        return decompose(q_rel, joint.euler_order)

    def set_relative_angles(
        self, bone_name: str, angles: Sequence[float], joint: Optional[Joint] = None,
    ) -> bool:
        bone = self.skeleton.get_bone(bone_name)
        joint = self._joint_for(bone_name, joint)
        if bone is None or joint is None:
            return False
        rest = self._reference(bone_name)
        bone.set_quaternion(quat_normalize(quat_multiply(rest, compose(angles, joint.euler_order))))
        self.skeleton.update_world_matrices()
        return True

    # ── Limits ────────────────────────────────────────────────────────

    def clamp_angles(self, joint: Joint, angles: Sequence[float]) -> tuple[Angles, Angles]:
        """Clamp raw per-axis angles; axes that are not DOFs are pinned at 0.

        Returns (clamped angles, per-axis deltas).
        """
        values, _ = clamp_coordinates(joint, angles_to_coordinates(joint, angles))
        clamped = coordinates_to_angles(joint, values)
        deltas = tuple(clamped[i] - angles[i] for i in range(3))
        return clamped, deltas

    def check_limits(self, joint: Joint, angles: Sequence[float]) -> list[str]:
        """Describe every axis that would change under clamping (no writes)."""
        clamped, deltas = self.clamp_angles(joint, angles)
        return [
            _format_violation(i, angles[i], clamped[i])
            for i in range(3) if abs(deltas[i]) > LIMIT_EPSILON
        ]

    def constraint_utilization(self, joint: Joint, angles: Sequence[float]) -> dict[str, float]:
        """How close each coordinate sits to its limits: 0 at centre, 100 at a limit."""
        values = angles_to_coordinates(joint, angles)
        result = {}
        for c in joint.coordinates:
            span = c.range_max - c.range_min
            if span <= 0:
                result[c.id] = 100.0
                continue
            norm = (values[c.id] - c.range_min) / span
            result[c.id] = min(100.0, abs(norm - 0.5) * 200.0)
        return result

    # ── Validation ────────────────────────────────────────────────────

    def validate(self, bone_name: str, joint: Optional[Joint] = None) -> ValidationResult:
        """Clamp one bone to its joint limits, writing back only on change."""
        joint = self._joint_for(bone_name, joint)
        if joint is None or self.skeleton.get_bone(bone_name) is None:
            return ValidationResult(valid=True)
        angles = self.relative_angles(bone_name, joint)
        clamped, deltas = self.clamp_angles(joint, angles)
        violations = [
            _format_violation(i, angles[i], clamped[i])
            for i in range(3) if abs(deltas[i]) > LIMIT_EPSILON
        ]
        if not violations:
            return ValidationResult(valid=True, joint_id=joint.id)
        self.set_relative_angles(bone_name, clamped, joint)
        logger.debug("Clamped %s: %s", bone_name, ", ".join(violations))
        return ValidationResult(valid=False, clamped=True, violations=violations, joint_id=joint.id)

    def validate_bones(
        self, bone_names: Iterable[str], stop_on_first: bool = False,
    ) -> dict[str, ValidationResult]:
        results = {}
        for name in bone_names:
            result = self.validate(name)
            results[name] = result
            if stop_on_first and not result.valid:
                break
        return results

    def apply_constraints(self, only_enabled: bool = True) -> ConstraintSummary:
        """Validate every bone that is the child of a modelled joint."""
        summary = ConstraintSummary(total_bones=len(self.skeleton))
        for bone in self.skeleton:
            joint = self.model.get_joint_by_child_bone(bone.name)
            if joint is None:
                continue
            if only_enabled and not any(c.clamped or c.locked for c in joint.coordinates):
                continue
            summary.constrained_bones += 1
            result = self.validate(bone.name, joint)
            if not result.valid:
                summary.violations_found += 1
                summary.violations.append(
                    ConstraintViolation(bone=bone.name, joint_id=joint.id, violations=result.violations)
                )
        if summary.violations and self._bus is not None:
            self._bus.publish(EventType.CONSTRAINT_VIOLATION, violations=summary.violations, source="validator")
        return summary

    # ── Resets and blending ───────────────────────────────────────────

    def reset_to_neutral(self, bone_name: str) -> bool:
        """Place each coordinate at the centre of its range."""
        joint = self._joint_for(bone_name, None)
        if joint is None:
            return False
        centre = coordinates_to_angles(joint, {c.id: c.center for c in joint.coordinates})
        return self.set_relative_angles(bone_name, centre, joint)

    def reset_to_rest(self, bone_name: str) -> bool:
        bone = self.skeleton.get_bone(bone_name)
        if bone is None:
            return False
        bone.set_quaternion(self._reference(bone_name))
        self.skeleton.update_world_matrices()
        return True

    def blend_toward(
        self,
        bone_name: str,
        target_angles: Optional[Sequence[float]] = None,
        blend_factor: float = DEFAULT_BLEND_FACTOR,
    ) -> bool:
        """Slerp the bone part of the way toward ``target_angles``.

        Without a target the bone blends toward its own clamped rotation.
        """
        bone = self.skeleton.get_bone(bone_name)
        joint = self._joint_for(bone_name, None)
        if bone is None or joint is None:
            return False
        t = max(0.0, min(1.0, blend_factor))
        rest = self._reference(bone_name)
        q_current = compute_deviation(rest, bone.quaternion)
        if target_angles is None:
            target_angles, _ = self.clamp_angles(joint, decompose(q_current, joint.euler_order))
        q_target = compose(target_angles, joint.euler_order)
        q_new = quat_slerp(q_current, q_target, t)
        bone.set_quaternion(quat_normalize(quat_multiply(rest, q_new)))
        self.skeleton.update_world_matrices()
        return True
