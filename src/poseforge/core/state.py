"""Plain state and result records shared by the body and IK layers."""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from poseforge.core.math_utils import Quat


class LifecycleState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CALIBRATED = "calibrated"


@dataclass
class CoordinateState:
    """Current value of one coordinate (radians, coordinate sign convention)."""
    value: float = 0.0
    locked: bool = False
    out_of_range: bool = False


@dataclass
class JointState:
    """Decomposed state of one joint relative to its neutral calibration."""
    joint_id: str
    coordinates: dict[str, CoordinateState] = field(default_factory=dict)
    q_rel: Quat = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))
    q_delta: Quat = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))
    # Raw per-axis Euler angles of q_delta in the joint's order, indexed x/y/z
    angles: tuple[float, float, float] = (0.0, 0.0, 0.0)

    def values(self) -> dict[str, float]:
        return {cid: c.value for cid, c in self.coordinates.items()}

    def value(self, coordinate_id: str) -> float:
        return self.coordinates[coordinate_id].value


@dataclass
class ModelState:
    """Snapshot of every coordinate and joint at one moment."""
    q: dict[str, float] = field(default_factory=dict)
    joints: dict[str, JointState] = field(default_factory=dict)
    timestamp: float = 0.0

    def copy(self) -> "ModelState":
        return copy.deepcopy(self)


@dataclass
class CoordinateViolation:
    """A coordinate value outside its range (informational, never clamped)."""
    joint_id: str
    coordinate_id: str
    index: int
    value: float
    range_min: float
    range_max: float


@dataclass
class InitResult:
    success: bool = False
    segment_count: int = 0
    joints_initialized: int = 0
    joint_count: int = 0
    missing_segments: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class CalibrationResult:
    success: bool = False
    calibrated_count: int = 0
    skipped_joints: list[str] = field(default_factory=list)
    timestamp: float = 0.0
    label: Optional[str] = None
    error: Optional[str] = None


@dataclass
class UpdateResult:
    updated_count: int = 0
    elapsed_ms: float = 0.0
    violations: list[CoordinateViolation] = field(default_factory=list)


@dataclass
class ApplyResult:
    success: bool = False
    joint_id: str = ""
    applied: dict[str, float] = field(default_factory=dict)
    clamped: bool = False
    error: Optional[str] = None


@dataclass
class ValidationResult:
    """Outcome of validating (and possibly clamping) one bone."""
    valid: bool = True
    clamped: bool = False
    violations: list[str] = field(default_factory=list)
    joint_id: Optional[str] = None


@dataclass
class ConstraintViolation:
    bone: str
    joint_id: str
    violations: list[str] = field(default_factory=list)


@dataclass
class ConstraintSummary:
    total_bones: int = 0
    constrained_bones: int = 0
    violations_found: int = 0
    violations: list[ConstraintViolation] = field(default_factory=list)


@dataclass
class Diagnostics:
    initialized: bool = False
    calibrated: bool = False
    segment_count: int = 0
    joint_count: int = 0
    neutral_pose_count: int = 0
    last_update_age_ms: Optional[float] = None
    missing_segments: list[str] = field(default_factory=list)
    lookup_failures: int = 0
    skipped_joints: list[str] = field(default_factory=list)
    used_fallback_reference: bool = False
    neutral_pose_source: Optional[str] = None
