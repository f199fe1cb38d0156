"""Range-of-motion report for the procedural humanoid.

Builds the Mixamo-named rig, calibrates its bind pose as neutral, applies
a sample pose (some of it deliberately out of range) and prints each
joint's coordinates, the violations found and a clinical summary of both
shoulders.

Usage::

    python tools/rom_report.py [--z-up]
"""

from __future__ import annotations

import logging
import sys
sys.path.insert(0, "src")
sys.path.insert(0, ".")

from poseforge.anatomy.shoulder_mapping import ShoulderReport, analyze_shoulder
from poseforge.body.biomech_state import BiomechStateManager
from poseforge.body.humanoid import build_humanoid_skeleton
from poseforge.core.math_utils import deg_to_rad, rad_to_deg
from poseforge.core.state import UpdateResult

logger = logging.getLogger(__name__)


# ── Sample pose (degrees, coordinate sign convention) ─────────────────

SAMPLE_POSE: dict[str, dict[str, float]] = {
    "gh_right": {"gh_r_abduction": 85.0, "gh_r_flexion": 20.0, "gh_r_rotation": -50.0},
    "st_right": {"st_r_upward": 40.0},
    "elbow_right": {"elbow_r_flexion": 160.0},      # beyond 145
    "gh_left": {"gh_l_abduction": 10.0},
    "hip_right": {"hip_r_flexion": 45.0},
    "knee_right": {"knee_r_flexion": -60.0},
    "cervical_spine": {"cervical_rotation": 50.0},  # beyond 45
}


def run_rom_report(z_up: bool = False) -> tuple[BiomechStateManager, UpdateResult, list[ShoulderReport]]:
    """Pose the humanoid and collect the state manager's view of it."""
    skeleton = build_humanoid_skeleton(z_up=z_up)
    state = BiomechStateManager()
    state.initialize(skeleton)
    state.calibrate_neutral(label="bind pose")

    for joint_id, coords in SAMPLE_POSE.items():
        result = state.apply_coordinates(
            joint_id, {cid: deg_to_rad(v) for cid, v in coords.items()},
        )
        if not result.success:
            logger.warning("Could not apply %s: %s", joint_id, result.error)

    update = state.update(0.016)
    joints = state.get_model_state().joints
    shoulders = []
    for side in ("right", "left"):
        report = analyze_shoulder(state.model, joints, side)
        if report is not None:
            shoulders.append(report)
    return state, update, shoulders


def format_rom_report(
    state: BiomechStateManager, update: UpdateResult, shoulders: list[ShoulderReport],
) -> str:
    lines = [f"Joints updated: {update.updated_count} ({update.elapsed_ms:.2f} ms)", ""]
    model_state = state.get_model_state()
    for joint_id in SAMPLE_POSE:
        joint = state.model.get_joint(joint_id)
        js = model_state.joints.get(joint_id)
        if joint is None or js is None:
            continue
        lines.append(f"{joint.name} ({joint.kind}, {joint.euler_order})")
        for c in joint.coordinates:
            cs = js.coordinates[c.id]
            flag = "  OUT OF RANGE" if cs.out_of_range else ""
            lines.append(
                f"  {c.id:<24} {rad_to_deg(cs.value):8.2f}  "
                f"[{rad_to_deg(c.range_min):.0f}, {rad_to_deg(c.range_max):.0f}]{flag}"
            )

    lines.append("")
    lines.append(f"Violations: {len(update.violations)}")
    for v in update.violations:
        lines.append(f"  {v.coordinate_id}: {rad_to_deg(v.value):.2f} deg")

    for report in shoulders:
        lines.append("")
        lines.append(f"{report.side.capitalize()} shoulder: {report.description}")
        gh = report.gh.angles
        lines.append(
            f"  GH elevation {gh['elevation']:.1f}, plane {gh['plane']:.1f}, "
            f"rotation {gh['rotation']:.1f}"
        )
        if report.rhythm is not None:
            status = "normal" if report.rhythm.is_normal else "abnormal"
            lines.append(f"  Rhythm {report.rhythm.ratio:.2f}:1 ({status})")
        for warning in report.safety.warnings:
            lines.append(f"  WARNING: {warning}")
    return "\n".join(lines)


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    z_up = "--z-up" in sys.argv[1:]
    print(format_rom_report(*run_rom_report(z_up=z_up)))


if __name__ == "__main__":
    main()
