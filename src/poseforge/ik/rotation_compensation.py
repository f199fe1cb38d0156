"""Solve IK with the armature root frame's rotation temporarily removed.

Exported rigs often carry a rotation on the armature (e.g. +90 deg about X
for Z-up sources). The CCD Euler boxes are authored for an unrotated
frame, so the solver runs with that rotation zeroed; the original
quaternion array is put back afterwards, even if the solve raises.
"""

from contextlib import contextmanager
from typing import Iterator

from poseforge.core.math_utils import quat_identity
from poseforge.core.skeleton import Skeleton
from poseforge.ik.ccd_solver import CCDSolver, IKDefinition, SolveResult


@contextmanager
def neutralized_root_frame(skeleton: Skeleton) -> Iterator[Skeleton]:
    """Zero the root frame rotation for the duration of the block."""
    root = skeleton.root_frame
    saved = root.quaternion.copy()
    root.set_quaternion(quat_identity())
    skeleton.update_world_matrices()
    try:
        yield skeleton
    finally:
        root.set_quaternion(saved)
        skeleton.update_world_matrices()


class RotationCompensatedSolver:
    """CCDSolver wrapper that runs every solve inside neutralized_root_frame."""

    def __init__(self, solver: CCDSolver):
        self.solver = solver

    @property
    def skeleton(self) -> Skeleton:
        return self.solver.skeleton

    @property
    def definitions(self) -> list[IKDefinition]:
        return self.solver.definitions

    def solve(self) -> list[SolveResult]:
        with neutralized_root_frame(self.solver.skeleton):
            return self.solver.solve()

    def solve_chain(self, ik: IKDefinition) -> SolveResult:
        with neutralized_root_frame(self.solver.skeleton):
            return self.solver.solve_chain(ik)
