"""Biomechanical state manager: lifecycle, calibration and per-frame reads.

Lifecycle: UNINITIALIZED -> INITIALIZED (skeleton bound) -> CALIBRATED
(neutral relative orientation recorded per joint). Reads never clamp;
range-of-motion violations are reported, not enforced. Writes go through
``apply_coordinates`` which can clamp with the validator's shared rule.
"""

import copy
import logging
import time
from pathlib import Path
from typing import Mapping, Optional, Union

import numpy as np

from poseforge.anatomy.definitions import BiomechModel, Joint
from poseforge.anatomy.model_loader import load_model
from poseforge.body.constraint_validator import ConstraintValidator, clamp_coordinates
from poseforge.body.coordinate_engine import (
    CoordinateInput, apply_coordinates_to_skeleton, calibrate_neutral, compute_joint_state,
)
from poseforge.body.neutral_pose import NeutralPoseResult, NeutralPoseStore
from poseforge.body.segment_registry import SegmentRegistry
from poseforge.constants import MAX_DELTA_TIME
from poseforge.core.errors import CalibrationError
from poseforge.core.events import EventBus, EventType
from poseforge.core.math_utils import Quat
from poseforge.core.skeleton import Skeleton
from poseforge.core.state import (
    ApplyResult, CalibrationResult, CoordinateViolation, Diagnostics, InitResult,
    JointState, LifecycleState, ModelState, UpdateResult, ValidationResult,
)

logger = logging.getLogger(__name__)


class BiomechStateManager:
    """Owns the registry, neutral calibration and current coordinate state."""

    def __init__(
        self,
        model: Optional[BiomechModel] = None,
        neutral_store: Optional[NeutralPoseStore] = None,
        bus: Optional[EventBus] = None,
    ):
        self.model = model if model is not None else load_model()
        self.neutral_store = neutral_store if neutral_store is not None else NeutralPoseStore(bus)
        self.bus = bus

        self.skeleton: Optional[Skeleton] = None
        self.registry: Optional[SegmentRegistry] = None
        self.validator: Optional[ConstraintValidator] = None

        self._state = LifecycleState.UNINITIALIZED
        self._neutral: dict[str, Quat] = {}
        self._current = ModelState()
        self._missing_segments: list[str] = []
        self._skipped_joints: list[str] = []
        self._last_update: Optional[float] = None
        self._capture_on_first_frame = False

    # ── Lifecycle ─────────────────────────────────────────────────────

    @property
    def state(self) -> LifecycleState:
        return self._state

    def is_initialized(self) -> bool:
        return self._state is not LifecycleState.UNINITIALIZED

    def is_calibrated(self) -> bool:
        return self._state is LifecycleState.CALIBRATED

    def initialize(self, skeleton: Skeleton) -> InitResult:
        """Bind to ``skeleton``. Succeeds when it has bones; gaps are recorded."""
        result = InitResult(joint_count=len(self.model.joints))
        if skeleton is None or len(skeleton) == 0:
            result.errors.append("Skeleton has no bones")
            logger.warning("Initialize failed: skeleton has no bones")
            return result

        self.skeleton = skeleton
        self.registry = SegmentRegistry(skeleton, self.model)
        self.validator = ConstraintValidator(skeleton, self.model, self.neutral_store, self.bus)
        self._neutral.clear()
        self._current = ModelState()
        skeleton.update_world_matrices()

        self._missing_segments = self.registry.missing_segments()
        for seg_id in self._missing_segments:
            result.errors.append(f"Segment not found: {seg_id}")
        missing = set(self._missing_segments)
        result.segment_count = len(self.model.segments) - len(missing)
        result.joints_initialized = sum(
            1 for j in self.model.joints.values()
            if j.parent not in missing and j.child not in missing
        )
        result.missing_segments = list(self._missing_segments)
        result.success = True

        self._state = LifecycleState.INITIALIZED
        logger.info(
            "Initialized: %d/%d segments, %d/%d joints",
            result.segment_count, len(self.model.segments),
            result.joints_initialized, result.joint_count,
        )
        if missing:
            logger.warning("Missing segments: %s", ", ".join(sorted(missing)))
        if self.bus is not None:
            self.bus.publish(EventType.INITIALIZED, result=result)
        return result

    def calibrate_neutral(self, label: Optional[str] = None, capture_pose: bool = True) -> CalibrationResult:
        """Record every resolvable joint's current relative orientation as neutral.

        When ``capture_pose`` is set the current pose also seeds the neutral
        pose store, unless it already holds an asset-loaded pose.
        """
        if not self.is_initialized():
            logger.warning("Cannot calibrate before initialize()")
            return CalibrationResult(success=False, error="Not initialized", label=label)

        self.skeleton.update_world_matrices()
        self._neutral.clear()
        skipped = []
        for joint in self.model.joints.values():
            q = calibrate_neutral(joint, self.registry)
            if q is None:
                skipped.append(joint.id)
            else:
                self._neutral[joint.id] = q
        self._skipped_joints = skipped

        if capture_pose:
            self.neutral_store.capture_from_current_pose(self.skeleton, label or "calibration")

        self._state = LifecycleState.CALIBRATED
        result = CalibrationResult(
            success=True,
            calibrated_count=len(self._neutral),
            skipped_joints=skipped,
            timestamp=time.time(),
            label=label,
        )
        logger.info("Calibrated %d joints (%d skipped)", len(self._neutral), len(skipped))
        if self.bus is not None:
            self.bus.publish(EventType.CALIBRATED, result=result)
        self.update(0.0)
        return result

    async def load_neutral_pose(self, source: Optional[Path] = None) -> NeutralPoseResult:
        """Load the neutral pose asset; on failure fall back to a first-frame capture."""
        result = await self.neutral_store.load(source)
        self._capture_on_first_frame = not result.ok
        if not result.ok:
            logger.warning("Neutral pose unavailable, will capture it from the first frame")
        return result

    def reset(self) -> None:
        self.skeleton = None
        self.registry = None
        self.validator = None
        self._state = LifecycleState.UNINITIALIZED
        self._neutral.clear()
        self._current = ModelState()
        self._missing_segments = []
        self._skipped_joints = []
        self._last_update = None
        self._capture_on_first_frame = False
        logger.info("Biomech state reset")
        if self.bus is not None:
            self.bus.publish(EventType.STATE_RESET)

    # ── Per-frame ─────────────────────────────────────────────────────

    def update(self, delta_time: float = 0.0) -> UpdateResult:
        """Recompute every calibrated joint's state. Never clamps."""
        start = time.perf_counter()
        if not self.is_calibrated():
            return UpdateResult()

        delta_time = min(max(delta_time, 0.0), MAX_DELTA_TIME)
        if self._capture_on_first_frame and not self.neutral_store.has_pose:
            self.neutral_store.capture_from_current_pose(self.skeleton, "first-frame")
            self._capture_on_first_frame = False

        self.skeleton.update_world_matrices()
        joints: dict[str, JointState] = {}
        violations: list[CoordinateViolation] = []
        for joint_id, q_neutral in self._neutral.items():
            joint = self.model.joints[joint_id]
            state = compute_joint_state(joint, self.registry, q_neutral)
            if state is None:
                continue
            joints[joint_id] = state
            violations.extend(self._violations(joint, state))

        self._current = ModelState(
            q={cid: c.value for s in joints.values() for cid, c in s.coordinates.items()},
            joints=joints,
            timestamp=time.time(),
        )
        self._last_update = time.perf_counter()
        result = UpdateResult(
            updated_count=len(joints),
            elapsed_ms=(time.perf_counter() - start) * 1000.0,
            violations=violations,
        )
        logger.debug("Updated %d joints (dt=%.4f, %d violations)", len(joints), delta_time, len(violations))
        if self.bus is not None:
            self.bus.publish(EventType.STATE_UPDATED, result=result)
            if violations:
                self.bus.publish(EventType.CONSTRAINT_VIOLATION, violations=violations, source="state")
        return result

    @staticmethod
    def _violations(joint: Joint, state: JointState) -> list[CoordinateViolation]:
        out = []
        for c in joint.coordinates:
            cs = state.coordinates[c.id]
            if cs.out_of_range:
                out.append(CoordinateViolation(
                    joint_id=joint.id, coordinate_id=c.id, index=c.index,
                    value=cs.value, range_min=c.range_min, range_max=c.range_max,
                ))
        return out

    # ── Writes ────────────────────────────────────────────────────────

    def apply_coordinates(
        self, joint_id: str, coords: CoordinateInput, clamp_to_rom: bool = False,
    ) -> ApplyResult:
        """Pose a joint from coordinate values (coordinate sign convention).

        A mapping may name a subset of coordinates; the rest keep their
        current values. A sequence is indexed by axis.
        """
        result = ApplyResult(joint_id=joint_id)
        joint = self.model.get_joint(joint_id)
        if joint is None:
            result.error = f"Unknown joint: {joint_id}"
            return result
        try:
            q_neutral = self._neutral_for(joint_id)
        except CalibrationError as e:
            result.error = str(e)
            return result

        values = self._current_values(joint)
        if isinstance(coords, Mapping):
            unknown = set(coords) - set(values)
            if unknown:
                result.error = f"Unknown coordinates for {joint_id}: {sorted(unknown)}"
                return result
            values.update({k: float(v) for k, v in coords.items()})
        else:
            if len(coords) != 3:
                result.error = "Coordinate vector must have 3 axis entries"
                return result
            values = {c.id: float(coords[c.index]) for c in joint.coordinates}

        if clamp_to_rom:
            values, result.clamped = clamp_coordinates(joint, values)

        if not apply_coordinates_to_skeleton(joint, values, q_neutral, self.registry):
            result.error = f"Segments for {joint_id} did not resolve"
            return result

        result.success = True
        result.applied = values
        self._refresh_joint(joint)
        if self.bus is not None:
            self.bus.publish(EventType.COORDINATES_APPLIED, result=result)
        return result

    def validate_bone(self, bone_name: str) -> ValidationResult:
        """Clamp the joint driven by ``bone_name`` against its calibrated neutral."""
        joint = self.model.get_joint_by_child_bone(bone_name)
        if joint is None:
            return ValidationResult(valid=True)
        try:
            q_neutral = self._neutral_for(joint.id)
        except CalibrationError:
            return ValidationResult(valid=True, joint_id=joint.id)
        state = compute_joint_state(joint, self.registry, q_neutral)
        if state is None:
            return ValidationResult(valid=True, joint_id=joint.id)
        values = state.values()
        clamped, changed = clamp_coordinates(joint, values)
        if not changed:
            self._current.joints[joint.id] = state
            self._current.q.update(values)
            return ValidationResult(valid=True, joint_id=joint.id)
        violations = [
            f"{c.id}: {values[c.id]:.3f} -> {clamped[c.id]:.3f}"
            for c in joint.coordinates if clamped[c.id] != values[c.id]
        ]
        apply_coordinates_to_skeleton(joint, clamped, q_neutral, self.registry)
        self._refresh_joint(joint)
        return ValidationResult(valid=False, clamped=True, violations=violations, joint_id=joint.id)

    def _neutral_for(self, joint_id: str) -> Quat:
        if not self.is_calibrated():
            raise CalibrationError("Not calibrated")
        q = self._neutral.get(joint_id)
        if q is None:
            raise CalibrationError(f"Joint {joint_id} was not calibrated")
        return q

    def _current_values(self, joint: Joint) -> dict[str, float]:
        state = self._current.joints.get(joint.id)
        if state is None:
            state = compute_joint_state(joint, self.registry, self._neutral[joint.id])
        if state is None:
            return {c.id: c.neutral for c in joint.coordinates}
        return state.values()

    def _refresh_joint(self, joint: Joint) -> None:
        state = compute_joint_state(joint, self.registry, self._neutral[joint.id])
        if state is None:
            return
        self._current.joints[joint.id] = state
        self._current.q.update(state.values())

    # ── Queries ───────────────────────────────────────────────────────

    def get_joint_state(self, joint_id: str) -> Optional[JointState]:
        state = self._current.joints.get(joint_id)
        return copy.deepcopy(state) if state is not None else None

    def get_coordinate_value(self, joint_id: str, coordinate: Union[str, int]) -> Optional[float]:
        """Value of a coordinate given by id or by axis index."""
        state = self._current.joints.get(joint_id)
        joint = self.model.get_joint(joint_id)
        if state is None or joint is None:
            return None
        if isinstance(coordinate, int):
            coord = joint.coordinate_by_index(coordinate)
        else:
            coord = joint.get_coordinate(coordinate)
        if coord is None:
            return None
        return state.value(coord.id)

    def get_model_state(self) -> ModelState:
        return self._current.copy()

    def get_neutral_quaternion(self, joint_id: str) -> Optional[Quat]:
        q = self._neutral.get(joint_id)
        return None if q is None else np.array(q, copy=True)

    def time_since_last_update(self) -> Optional[float]:
        """Milliseconds since the last update(), or None if never updated."""
        if self._last_update is None:
            return None
        return (time.perf_counter() - self._last_update) * 1000.0

    def get_diagnostics(self) -> Diagnostics:
        return Diagnostics(
            initialized=self.is_initialized(),
            calibrated=self.is_calibrated(),
            segment_count=len(self.registry.list_segments()) if self.registry else 0,
            joint_count=len(self.model.joints),
            neutral_pose_count=len(self._neutral),
            last_update_age_ms=self.time_since_last_update(),
            missing_segments=list(self._missing_segments),
            lookup_failures=self.registry.lookup_failures if self.registry else 0,
            skipped_joints=list(self._skipped_joints),
            used_fallback_reference=bool(self.validator and self.validator.used_fallback_reference),
            neutral_pose_source=self.neutral_store.source,
        )
