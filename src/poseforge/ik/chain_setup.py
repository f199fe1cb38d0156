"""Build CCD chain definitions and their target bones from the model table.

A chain is dropped (not fatal) when its target or effector bone is
missing; individual missing link bones are skipped with a warning. When
the state manager is calibrated each link gets an Euler box of
``neutral + coordinate range`` in its joint's order; otherwise the
chain's authored coarse bounds are used, if any.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from poseforge.anatomy.definitions import BiomechModel, IKChainConfig
from poseforge.body.biomech_state import BiomechStateManager
from poseforge.core.errors import IKConfigError
from poseforge.core.events import EventBus, EventType
from poseforge.core.math_utils import Vec3, euler_from_quat
from poseforge.core.skeleton import Skeleton
from poseforge.ik.ccd_solver import IKDefinition, IKLink

logger = logging.getLogger(__name__)


@dataclass
class IKSetupResult:
    definitions: list[IKDefinition] = field(default_factory=list)
    targets: dict[str, int] = field(default_factory=dict)   # chain name -> target bone index
    dropped: dict[str, str] = field(default_factory=dict)   # chain name -> reason


def _anatomical_bounds(
    bone_name: str, model: BiomechModel, state: BiomechStateManager,
) -> Optional[tuple[Vec3, Vec3, str]]:
    joint = model.get_joint_by_child_bone(bone_name)
    if joint is None:
        return None
    q_neutral = state.get_neutral_quaternion(joint.id)
    if q_neutral is None:
        return None
    neutral = euler_from_quat(q_neutral, joint.euler_order)
    lo = np.full(3, -math.pi)
    hi = np.full(3, math.pi)
    for c in joint.coordinates:
        if not c.clamped:
            continue
        # Box is in raw angle space; inverted coordinates flip their range
        c_lo, c_hi = (-c.range_max, -c.range_min) if c.invert else (c.range_min, c.range_max)
        lo[c.index] = neutral[c.index] + c_lo
        hi[c.index] = neutral[c.index] + c_hi
    return lo, hi, joint.euler_order


def build_ik_definition(
    config: IKChainConfig,
    skeleton: Skeleton,
    model: BiomechModel,
    state: Optional[BiomechStateManager] = None,
) -> IKDefinition:
    """Resolve a chain config against ``skeleton``.

    Raises
    ------
    IKConfigError
        If the target or effector bone is missing, or no link bone resolves.
    """
    target = skeleton.bone_index(config.target)
    if target is None:
        raise IKConfigError(f"{config.name}: target bone {config.target} not found")
    effector = skeleton.bone_index(config.effector)
    if effector is None:
        raise IKConfigError(f"{config.name}: effector bone {config.effector} not found")

    use_anatomy = state is not None and state.is_calibrated()
    links = []
    for name in config.links:
        index = skeleton.bone_index(name)
        if index is None:
            logger.warning("IK chain %s: link bone %s not found, skipping", config.name, name)
            continue
        link = IKLink(index)
        bounds = _anatomical_bounds(name, model, state) if use_anatomy else None
        if bounds is not None:
            link.rotation_min, link.rotation_max, link.order = bounds
        elif name in config.link_bounds:
            lo, hi = config.link_bounds[name]
            link.rotation_min = np.array(lo, dtype=np.float64)
            link.rotation_max = np.array(hi, dtype=np.float64)
        links.append(link)
    if not links:
        raise IKConfigError(f"{config.name}: none of the link bones were found")

    return IKDefinition(
        name=config.name,
        target=target,
        effector=effector,
        links=links,
        iteration=config.iteration,
        min_angle=config.min_angle,
        max_angle=config.max_angle,
    )


# ── Target bones ──────────────────────────────────────────────────────

def create_ik_target(skeleton: Skeleton, name: str, effector: int) -> int:
    """Add (or reuse) a target bone under the root frame, placed on the effector."""
    index = skeleton.bone_index(name)
    if index is None:
        index = skeleton.add_bone(name).index
    skeleton.set_bone_world_position(index, skeleton.world_position(effector))
    return index


def update_ik_target(skeleton: Skeleton, target_name: str, world_point: Vec3) -> bool:
    index = skeleton.bone_index(target_name)
    if index is None:
        return False
    skeleton.set_bone_world_position(index, np.asarray(world_point, dtype=np.float64))
    return True


def reset_ik_target(skeleton: Skeleton, config: IKChainConfig) -> bool:
    """Snap a chain's target back onto its effector."""
    effector = skeleton.bone_index(config.effector)
    if effector is None or skeleton.bone_index(config.target) is None:
        return False
    return update_ik_target(skeleton, config.target, skeleton.world_position(effector))


def initialize_ik_targets(
    skeleton: Skeleton, model: BiomechModel, include_disabled: bool = False,
) -> dict[str, int]:
    """Create target bones for every chain whose effector exists."""
    targets = {}
    for config in model.ik_chains:
        if not (config.enabled or include_disabled):
            continue
        effector = skeleton.bone_index(config.effector)
        if effector is None:
            continue
        targets[config.name] = create_ik_target(skeleton, config.target, effector)
    return targets


def build_ik_configuration(
    skeleton: Skeleton,
    model: BiomechModel,
    state: Optional[BiomechStateManager] = None,
    bus: Optional[EventBus] = None,
    include_disabled: bool = False,
) -> IKSetupResult:
    """Create targets and definitions for the model's chains, dropping broken ones."""
    result = IKSetupResult(targets=initialize_ik_targets(skeleton, model, include_disabled))
    for config in model.ik_chains:
        if not (config.enabled or include_disabled):
            continue
        try:
            result.definitions.append(build_ik_definition(config, skeleton, model, state))
        except IKConfigError as e:
            result.dropped[config.name] = str(e)
            logger.warning("Dropping IK chain: %s", e)
            if bus is not None:
                bus.publish(EventType.IK_CHAIN_DROPPED, chain=config.name, reason=str(e))
    logger.info(
        "IK configured: %d chain(s), %d dropped", len(result.definitions), len(result.dropped),
    )
    return result
