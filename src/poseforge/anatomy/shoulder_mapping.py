"""Clinical interpretation of shoulder joint coordinates.

GH (glenohumeral) coordinates map as: index 0 -> axial rotation,
index 1 -> plane of elevation, index 2 -> elevation. ST
(scapulothoracic) coordinates map as: index 0 -> tilt, index 1 ->
internal rotation, index 2 -> upward rotation. Inputs are radians,
outputs are degrees. Safety checks are advisory and never clamp.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from poseforge.anatomy.definitions import BiomechModel, Joint
from poseforge.constants import (
    GH_ST_RATIO, PLANE_CLASS_THRESHOLD_DEG, PURE_GH_ELEVATION_DEG,
    RHYTHM_NORMAL_MAX, RHYTHM_NORMAL_MIN,
)
from poseforge.core.math_utils import deg_to_rad, rad_to_deg
from poseforge.core.state import JointState


@dataclass
class ClinicalAngles:
    joint_id: str
    angles: dict[str, float] = field(default_factory=dict)   # degrees
    metrics: dict[str, float] = field(default_factory=dict)


@dataclass
class RhythmResult:
    """Scapulohumeral rhythm (GH:ST ratio, normally about 2:1)."""
    ratio: float
    is_normal: bool
    total_motion: float
    primary_contribution_pct: float
    secondary_contribution_pct: float


@dataclass
class SafetyReport:
    is_safe: bool
    warnings: list[str] = field(default_factory=list)


@dataclass
class ShoulderReport:
    side: str
    gh: ClinicalAngles
    st: Optional[ClinicalAngles]
    rhythm: Optional[RhythmResult]
    safety: SafetyReport
    description: str


# ── Coordinate -> clinical ────────────────────────────────────────────

def classify_plane(angle_deg: float) -> int:
    """-1 adduction, 0 scapular plane, 1 abduction/frontal plane."""
    if angle_deg < -PLANE_CLASS_THRESHOLD_DEG:
        return -1
    if angle_deg < PLANE_CLASS_THRESHOLD_DEG:
        return 0
    return 1


PLANE_LABELS = {-1: "Adduction", 0: "Scapular Plane", 1: "Abduction/Frontal"}


def plane_label(angle_deg: float) -> str:
    return PLANE_LABELS[classify_plane(angle_deg)]


def gh_to_clinical(rotation: float, plane: float, elevation: float) -> ClinicalAngles:
    elevation_deg = rad_to_deg(elevation)
    plane_deg = rad_to_deg(plane)
    return ClinicalAngles(
        joint_id="gh",
        angles={
            "elevation": elevation_deg,
            "plane": plane_deg,
            "rotation": rad_to_deg(rotation),
        },
        metrics={
            "total_elevation": elevation_deg,
            "plane_classification": classify_plane(plane_deg),
        },
    )


def st_to_clinical(tilt: float, rotation: float, upward: float) -> ClinicalAngles:
    return ClinicalAngles(
        joint_id="st",
        angles={
            "tilt": rad_to_deg(tilt),
            "internal_rotation": rad_to_deg(rotation),
            "upward_rotation": rad_to_deg(upward),
        },
        metrics={
            "total_st_motion": rad_to_deg(math.sqrt(tilt * tilt + rotation * rotation + upward * upward)),
        },
    )


def _by_index(joint: Joint, state: JointState) -> list[float]:
    values = [0.0, 0.0, 0.0]
    for c in joint.coordinates:
        values[c.index] = state.value(c.id)
    return values


def joint_to_clinical(joint: Joint, state: JointState) -> ClinicalAngles:
    """Degrees per coordinate display name; shoulders get their clinical names."""
    if joint.id.startswith("gh_"):
        result = gh_to_clinical(*_by_index(joint, state))
    elif joint.id.startswith("st_"):
        result = st_to_clinical(*_by_index(joint, state))
    else:
        result = ClinicalAngles(
            joint_id=joint.id,
            angles={c.name: rad_to_deg(state.value(c.id)) for c in joint.coordinates},
        )
    result.joint_id = joint.id
    return result


# ── Rhythm ────────────────────────────────────────────────────────────

def compute_rhythm(primary: float, secondary: float) -> RhythmResult:
    """Ratio primary:secondary (e.g. GH elevation : ST upward rotation, degrees)."""
    total = primary + secondary
    primary_pct = primary / total * 100.0 if total > 0 else 0.0
    secondary_pct = secondary / total * 100.0 if total > 0 else 0.0
    ratio = primary / secondary if secondary != 0 else 0.0
    return RhythmResult(
        ratio=ratio,
        is_normal=RHYTHM_NORMAL_MIN <= ratio <= RHYTHM_NORMAL_MAX,
        total_motion=total,
        primary_contribution_pct=primary_pct,
        secondary_contribution_pct=secondary_pct,
    )


def split_elevation(total: float) -> tuple[float, float]:
    """Split total arm elevation (radians) into (GH, ST) parts.

    The first 30 degrees are pure glenohumeral; beyond that the motion
    splits 2:1 between GH and ST.
    """
    pure = deg_to_rad(PURE_GH_ELEVATION_DEG)
    if total <= pure:
        return total, 0.0
    above = total - pure
    gh = pure + above * GH_ST_RATIO / (GH_ST_RATIO + 1.0)
    st = above / (GH_ST_RATIO + 1.0)
    return gh, st


def expected_st_upward_rotation(gh_deg: float) -> float:
    return gh_deg / GH_ST_RATIO


# ── Safety (degrees) ──────────────────────────────────────────────────

def excessive_elevation(elevation: float) -> Optional[str]:
    if elevation > 170:
        return "Excessive elevation (>170°)"
    return None


def excessive_extension(elevation: float) -> Optional[str]:
    if elevation < -45:
        return "Excessive extension (<-45°)"
    return None


def impingement_risk(elevation: float, rotation: float) -> Optional[str]:
    if elevation > 60 and rotation < -45:
        return "Internal rotation with elevated arm (impingement risk)"
    return None


def ac_joint_stress(elevation: float, plane: float) -> Optional[str]:
    if elevation >= 90 and plane < -30:
        return "High elevation in adduction (AC joint stress)"
    return None


def assess_shoulder_safety(elevation: float, rotation: float, plane: float) -> SafetyReport:
    warnings = [
        w for w in (
            excessive_elevation(elevation),
            excessive_extension(elevation),
            impingement_risk(elevation, rotation),
            ac_joint_stress(elevation, plane),
        ) if w is not None
    ]
    return SafetyReport(is_safe=not warnings, warnings=warnings)


def describe_shoulder_position(elevation: float, plane: float, rotation: float) -> str:
    """Short clinical phrase for a GH pose given in degrees."""
    if abs(elevation) < 15:
        text = "Arm at side"
    elif 15 <= elevation < 60:
        text = "Low elevation"
    elif 60 <= elevation < 120:
        text = "Mid-range elevation"
    elif elevation >= 120:
        text = "High elevation"
    else:
        text = "Extension"

    if abs(elevation) >= 15:
        if abs(plane) < 30:
            text += " in scapular plane"
        elif plane >= 30:
            text += " in abduction/frontal plane"
        else:
            text += " in adduction"

    if abs(rotation) > 20:
        text += ", externally rotated" if rotation > 0 else ", internally rotated"
    return text


def analyze_shoulder(
    model: BiomechModel, joint_states: dict[str, JointState], side: str,
) -> Optional[ShoulderReport]:
    """Clinical summary for one shoulder; None when the GH joint has no state."""
    gh_joint, st_joint = model.shoulder_joints(side)
    if gh_joint is None or gh_joint.id not in joint_states:
        return None
    gh = joint_to_clinical(gh_joint, joint_states[gh_joint.id])
    st = None
    rhythm = None
    if st_joint is not None and st_joint.id in joint_states:
        st = joint_to_clinical(st_joint, joint_states[st_joint.id])
        rhythm = compute_rhythm(gh.angles["elevation"], st.angles["upward_rotation"])
    elevation = gh.angles["elevation"]
    plane = gh.angles["plane"]
    rotation = gh.angles["rotation"]
    return ShoulderReport(
        side=side,
        gh=gh,
        st=st,
        rhythm=rhythm,
        safety=assess_shoulder_safety(elevation, rotation, plane),
        description=describe_shoulder_position(elevation, plane, rotation),
    )
