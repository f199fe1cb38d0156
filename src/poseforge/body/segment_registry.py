"""Resolve anatomical segment ids to skeleton bones or virtual frames.

The registry borrows bone indices from the skeleton it was built with;
it never copies bone transforms. Virtual segments (no bone) carry a frame
that the caller sets explicitly.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from poseforge.anatomy.definitions import BiomechModel, Segment
from poseforge.core.errors import SegmentLookupError
from poseforge.core.math_utils import Quat, Vec3, quat_identity, vec3
from poseforge.core.skeleton import Bone, Skeleton

logger = logging.getLogger(__name__)


@dataclass
class VirtualFrame:
    """World-space frame of a segment that has no bone."""
    position: Vec3 = field(default_factory=vec3)
    quaternion: Quat = field(default_factory=quat_identity)


@dataclass
class ResolvedSegment:
    """A segment bound to its runtime frame.

    ``kind == "bone"`` carries ``bone_index``; ``kind == "virtual"`` carries
    ``frame``.
    """
    segment: Segment
    kind: str
    bone_index: Optional[int] = None
    frame: Optional[VirtualFrame] = None


class SegmentRegistry:
    """Map segment ids onto a live skeleton."""

    def __init__(self, skeleton: Skeleton, model: BiomechModel):
        self.skeleton = skeleton
        self.model = model
        self._virtual: dict[str, VirtualFrame] = {}
        self.lookup_failures = 0

    def resolve(self, segment_id: str) -> ResolvedSegment:
        """Resolve ``segment_id`` or raise SegmentLookupError."""
        try:
            return self._resolve(segment_id)
        except SegmentLookupError:
            self.lookup_failures += 1
            raise

    def _resolve(self, segment_id: str) -> ResolvedSegment:
        seg = self.model.get_segment(segment_id)
        if seg is None:
            raise SegmentLookupError(f"Unknown segment: {segment_id}")
        if seg.is_virtual:
            frame = self._virtual.get(segment_id)
            if frame is None:
                raise SegmentLookupError(f"Virtual segment {segment_id} has no frame set")
            return ResolvedSegment(seg, "virtual", frame=frame)
        index = self.skeleton.bone_index(seg.bone_name)
        if index is None:
            raise SegmentLookupError(
                f"Bone {seg.bone_name} for segment {segment_id} not in skeleton"
            )
        return ResolvedSegment(seg, "bone", bone_index=index)

    def try_resolve(self, segment_id: str) -> Optional[ResolvedSegment]:
        try:
            return self.resolve(segment_id)
        except SegmentLookupError as e:
            logger.debug("%s", e)
            return None

    def has(self, segment_id: str) -> bool:
        try:
            self._resolve(segment_id)
        except SegmentLookupError:
            return False
        return True

    def get_bone(self, segment_id: str) -> Optional[Bone]:
        """Bone backing ``segment_id``; None for virtual or missing segments."""
        resolved = self.try_resolve(segment_id)
        if resolved is None or resolved.kind != "bone":
            return None
        return self.skeleton.bones[resolved.bone_index]

    def get_world_quaternion(self, segment_id: str) -> Quat:
        resolved = self.resolve(segment_id)
        if resolved.kind == "virtual":
            return resolved.frame.quaternion.copy()
        return self.skeleton.world_quaternion(resolved.bone_index)

    def get_world_position(self, segment_id: str) -> Vec3:
        resolved = self.resolve(segment_id)
        if resolved.kind == "virtual":
            return resolved.frame.position.copy()
        return self.skeleton.world_position(resolved.bone_index)

    def set_virtual_frame(
        self, segment_id: str, position: Optional[Vec3] = None, quaternion: Optional[Quat] = None,
    ) -> None:
        seg = self.model.get_segment(segment_id)
        if seg is None or not seg.is_virtual:
            raise SegmentLookupError(f"{segment_id} is not a virtual segment")
        frame = self._virtual.setdefault(segment_id, VirtualFrame())
        if position is not None:
            frame.position = np.array(position, dtype=np.float64)
        if quaternion is not None:
            frame.quaternion = np.array(quaternion, dtype=np.float64)

    def list_segments(self) -> list[str]:
        """Ids of every segment that currently resolves."""
        return [sid for sid in self.model.segments if self.has(sid)]

    def missing_segments(self) -> list[str]:
        return [sid for sid in self.model.segments if not self.has(sid)]


def get_bone_chain(skeleton: Skeleton, start: str, end: Optional[str] = None) -> list[int]:
    """Bone indices from ``end`` (or the skeleton root) down to ``start``.

    Returns an empty list when ``start`` is missing or ``end`` is not one
    of its ancestors.
    """
    index = skeleton.bone_index(start)
    if index is None:
        return []
    stop = skeleton.bone_index(end) if end is not None else None
    if end is not None and stop is None:
        return []
    chain = []
    while index >= 0:
        chain.append(index)
        if index == stop:
            break
        index = skeleton.bones[index].parent
    else:
        if stop is not None:
            return []
    chain.reverse()
    return chain
