"""Interactive IK dragging of one chain at a time.

Every drag step starts from the chain's rest snapshot, so the solve does
not accumulate drift across mouse moves. Only the active chain's bones
(effector and links) are restored; manual edits elsewhere in the skeleton
survive. When the drag ends the chain's snapshot is refreshed from the
final pose.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from poseforge.body.biomech_state import BiomechStateManager
from poseforge.core.errors import PoseForgeError
from poseforge.core.events import EventBus, EventType
from poseforge.core.math_utils import Quat, Vec3
from poseforge.core.skeleton import Skeleton
from poseforge.ik.ccd_solver import IKDefinition, SolveResult
from poseforge.ik.rotation_compensation import RotationCompensatedSolver

logger = logging.getLogger(__name__)


def chain_bones(ik: IKDefinition) -> list[int]:
    """Bones a chain may rotate: effector plus links (never the target)."""
    return [ik.effector] + [link.index for link in ik.links if link.index != ik.target]


class ChainRestPose:
    """Per-chain snapshots of local bone rotations."""

    def __init__(self):
        self._chains: dict[str, dict[int, Quat]] = {}

    def capture(self, skeleton: Skeleton, ik: IKDefinition) -> None:
        self._chains[ik.name] = {
            i: skeleton.bones[i].quaternion.copy() for i in chain_bones(ik)
        }

    def capture_all(self, skeleton: Skeleton, definitions: list[IKDefinition]) -> None:
        for ik in definitions:
            self.capture(skeleton, ik)

    def has(self, chain_name: str) -> bool:
        return chain_name in self._chains

    def restore(self, skeleton: Skeleton, chain_name: str) -> bool:
        snapshot = self._chains.get(chain_name)
        if snapshot is None:
            return False
        for i, q in snapshot.items():
            skeleton.bones[i].set_quaternion(q)
        skeleton.update_world_matrices()
        return True

    def clear(self) -> None:
        self._chains.clear()


@dataclass
class DragStepResult:
    chain: str
    solve: Optional[SolveResult] = None
    clamped_bones: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class IKDragSession:
    """Drive one chain's target from pointer input."""

    def __init__(
        self,
        skeleton: Skeleton,
        solver: RotationCompensatedSolver,
        state: Optional[BiomechStateManager] = None,
        bus: Optional[EventBus] = None,
    ):
        self.skeleton = skeleton
        self.solver = solver
        self.state = state
        self.bus = bus
        self.rest = ChainRestPose()
        self.rest.capture_all(skeleton, solver.definitions)
        self._active: Optional[IKDefinition] = None

    @property
    def active_chain(self) -> Optional[str]:
        return self._active.name if self._active else None

    def _definition(self, chain_name: str) -> Optional[IKDefinition]:
        for ik in self.solver.definitions:
            if ik.name == chain_name:
                return ik
        return None

    def begin(self, chain_name: str) -> bool:
        ik = self._definition(chain_name)
        if ik is None:
            logger.warning("No IK chain named %s", chain_name)
            return False
        if not self.rest.has(chain_name):
            self.rest.capture(self.skeleton, ik)
        self._active = ik
        return True

    def drag_to(self, world_point: Vec3, clamp: bool = True) -> DragStepResult:
        """Move the active target to ``world_point`` and re-solve from rest."""
        if self._active is None:
            return DragStepResult(chain="", error="No active chain")
        ik = self._active
        result = DragStepResult(chain=ik.name)

        self.rest.restore(self.skeleton, ik.name)
        self.skeleton.set_bone_world_position(ik.target, np.asarray(world_point, dtype=np.float64))
        try:
            result.solve = self.solver.solve_chain(ik)
        except (PoseForgeError, ValueError, ArithmeticError) as e:
            logger.error("IK solve for %s failed: %s", ik.name, e)
            result.error = str(e)
            return result

        if clamp and self.state is not None and self.state.is_calibrated():
            for i in chain_bones(ik):
                name = self.skeleton.bones[i].name
                if self.state.validate_bone(name).clamped:
                    result.clamped_bones.append(name)

        if self.bus is not None:
            self.bus.publish(EventType.IK_SOLVED, result=result)
        return result

    def end(self) -> None:
        """Finish the drag and make the final pose the chain's new rest."""
        if self._active is not None:
            self.rest.capture(self.skeleton, self._active)
        self._active = None

    def cancel(self) -> None:
        """Abort the drag, returning the chain and its target to rest."""
        if self._active is None:
            return
        ik = self._active
        self.rest.restore(self.skeleton, ik.name)
        self.skeleton.set_bone_world_position(ik.target, self.skeleton.world_position(ik.effector))
        self._active = None
