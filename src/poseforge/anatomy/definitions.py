"""Static biomechanical model: segments, joints, coordinates and IK chains.

Joints come in three variants distinguished by how many coordinates
(degrees of freedom) they carry: hinge (1), saddle (2) and ball (3).
All angles are stored in radians.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Optional

from poseforge.constants import AXIS_LETTERS, EULER_ORDERS, LIMIT_EPSILON
from poseforge.core.errors import ModelConfigError


@dataclass(frozen=True)
class Segment:
    """A rigid body part, backed by a skeleton bone or a virtual frame."""
    id: str
    name: str
    source: str = "bone"  # "bone" | "virtual"
    bone_name: Optional[str] = None

    @property
    def is_virtual(self) -> bool:
        return self.source == "virtual"


@dataclass(frozen=True)
class Coordinate:
    """One scalar degree of freedom of a joint (radians)."""
    id: str
    joint_id: str
    name: str
    axis: str
    index: int
    range_min: float
    range_max: float
    neutral: float = 0.0
    clamped: bool = True
    locked: bool = False
    invert: bool = False

    @property
    def center(self) -> float:
        return 0.5 * (self.range_min + self.range_max)

    def contains(self, value: float) -> bool:
        return self.range_min - LIMIT_EPSILON <= value <= self.range_max + LIMIT_EPSILON

    def clamp(self, value: float) -> float:
        return max(self.range_min, min(self.range_max, value))


@dataclass(frozen=True)
class Joint:
    """Articulation between a parent and a child segment.

    ``euler_order`` decides how the joint's deviation quaternion is split
    into per-axis angles. Coordinates map those angles (by axis index) to
    named degrees of freedom.
    """
    id: str
    name: str
    parent: str
    child: str
    euler_order: str
    coordinates: tuple[Coordinate, ...] = ()
    side: Optional[str] = None

    kind: ClassVar[str] = ""
    dof: ClassVar[int] = 0

    def __post_init__(self):
        if self.euler_order not in EULER_ORDERS:
            raise ModelConfigError(
                f"Joint {self.id}: unsupported Euler order {self.euler_order!r}"
            )
        if len(self.coordinates) != self.dof:
            raise ModelConfigError(
                f"Joint {self.id}: {self.kind} joint needs {self.dof} coordinate(s), "
                f"got {len(self.coordinates)}"
            )
        seen: set[int] = set()
        for c in self.coordinates:
            if c.index not in (0, 1, 2):
                raise ModelConfigError(f"Coordinate {c.id}: axis index {c.index} not in 0..2")
            if c.index in seen:
                raise ModelConfigError(f"Joint {self.id}: duplicate axis index {c.index}")
            seen.add(c.index)
            if c.axis != AXIS_LETTERS[c.index]:
                raise ModelConfigError(
                    f"Coordinate {c.id}: axis {c.axis!r} does not match index {c.index}"
                )
            if c.range_min > c.range_max:
                raise ModelConfigError(f"Coordinate {c.id}: range min > max")
            if c.joint_id != self.id:
                raise ModelConfigError(f"Coordinate {c.id} belongs to {c.joint_id}, not {self.id}")

    @property
    def axis_indices(self) -> tuple[int, ...]:
        return tuple(c.index for c in self.coordinates)

    def coordinate_by_index(self, index: int) -> Optional[Coordinate]:
        for c in self.coordinates:
            if c.index == index:
                return c
        return None

    def get_coordinate(self, coordinate_id: str) -> Optional[Coordinate]:
        for c in self.coordinates:
            if c.id == coordinate_id:
                return c
        return None


@dataclass(frozen=True)
class HingeJoint(Joint):
    kind: ClassVar[str] = "hinge"
    dof: ClassVar[int] = 1


@dataclass(frozen=True)
class SaddleJoint(Joint):
    kind: ClassVar[str] = "saddle"
    dof: ClassVar[int] = 2


@dataclass(frozen=True)
class BallJoint(Joint):
    kind: ClassVar[str] = "ball"
    dof: ClassVar[int] = 3


JOINT_VARIANTS: dict[int, type[Joint]] = {1: HingeJoint, 2: SaddleJoint, 3: BallJoint}


def make_joint(
    id: str,
    name: str,
    parent: str,
    child: str,
    euler_order: str,
    coordinates: tuple[Coordinate, ...],
    side: Optional[str] = None,
) -> Joint:
    """Build the joint variant matching the number of declared coordinates."""
    cls = JOINT_VARIANTS.get(len(coordinates))
    if cls is None:
        raise ModelConfigError(
            f"Joint {id}: expected 1-3 coordinates, got {len(coordinates)}"
        )
    return cls(id, name, parent, child, euler_order, tuple(coordinates), side)


@dataclass(frozen=True)
class IKChainConfig:
    """Declarative description of one CCD chain (bone names, radians)."""
    name: str
    target: str
    effector: str
    links: tuple[str, ...]  # effector-adjacent first, root-most last
    iteration: int = 10
    min_angle: float = 0.01
    max_angle: float = 0.5
    enabled: bool = True
    # Optional hand-authored per-link Euler boxes: bone -> (min xyz, max xyz)
    link_bounds: dict[str, tuple[tuple[float, float, float], tuple[float, float, float]]] = field(
        default_factory=dict
    )


class BiomechModel:
    """Lookup tables over the static segment/joint/IK definitions."""

    def __init__(
        self,
        segments: list[Segment],
        joints: list[Joint],
        ik_chains: Optional[list[IKChainConfig]] = None,
        root_segment: Optional[str] = None,
    ):
        self.segments: dict[str, Segment] = {s.id: s for s in segments}
        self.joints: dict[str, Joint] = {j.id: j for j in joints}
        self.ik_chains: list[IKChainConfig] = list(ik_chains or [])
        self.root_segment = root_segment

        self._segment_by_bone = {
            s.bone_name: s for s in segments if s.bone_name is not None
        }
        self._joint_by_child = {j.child: j for j in joints}
        self._coordinates = {c.id: c for j in joints for c in j.coordinates}

    # Segments

    def get_segment(self, segment_id: str) -> Optional[Segment]:
        return self.segments.get(segment_id)

    def get_segment_by_bone_name(self, bone_name: str) -> Optional[Segment]:
        return self._segment_by_bone.get(bone_name)

    # Joints

    def get_joint(self, joint_id: str) -> Optional[Joint]:
        return self.joints.get(joint_id)

    def get_parent_joint(self, segment_id: str) -> Optional[Joint]:
        """Joint whose child is ``segment_id``."""
        return self._joint_by_child.get(segment_id)

    def get_child_joints(self, segment_id: str) -> list[Joint]:
        return [j for j in self.joints.values() if j.parent == segment_id]

    def get_joint_by_child_bone(self, bone_name: str) -> Optional[Joint]:
        seg = self._segment_by_bone.get(bone_name)
        if seg is None:
            return None
        return self._joint_by_child.get(seg.id)

    def joints_by_side(self, side: str) -> list[Joint]:
        return [j for j in self.joints.values() if j.side == side]

    def shoulder_joints(self, side: str) -> tuple[Optional[Joint], Optional[Joint]]:
        """(glenohumeral, scapulothoracic) joints for ``side``."""
        return self.joints.get(f"gh_{side}"), self.joints.get(f"st_{side}")

    def get_coordinate(self, coordinate_id: str) -> Optional[Coordinate]:
        return self._coordinates.get(coordinate_id)

    # IK chains

    def get_ik_chain(self, name: str) -> Optional[IKChainConfig]:
        for chain in self.ik_chains:
            if chain.name == name:
                return chain
        return None

    def get_ik_chain_by_effector(self, bone_name: str) -> Optional[IKChainConfig]:
        for chain in self.ik_chains:
            if chain.effector == bone_name:
                return chain
        return None

    def get_ik_chain_by_link(self, bone_name: str) -> Optional[IKChainConfig]:
        for chain in self.ik_chains:
            if bone_name in chain.links:
                return chain
        return None
