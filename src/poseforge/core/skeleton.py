"""Bone arena with hierarchical transforms, mirroring a Three.js skeleton.

Bones live in a flat list and refer to their parent by integer index
(``-1`` for bones that hang directly off the armature root frame). Parents
always precede their children, so world matrices can be propagated in a
single forward pass.
"""

from typing import Iterator, Optional, Sequence

import numpy as np

from poseforge.constants import ROOT_FRAME_NAME
from poseforge.core.math_utils import (
    Mat4, Vec3, Quat,
    mat4_identity, mat4_compose, mat4_inverse, quat_identity, quat_multiply,
    quat_normalize, transform_point, vec3,
)


class Bone:
    """A single joint transform: position, quaternion, scale -> local matrix.

    World matrix = parent.world_matrix @ local_matrix, with the skeleton's
    root frame standing in as the parent of top-level bones.
    """

    def __init__(self, name: str, parent: int = -1, index: int = -1):
        self.name = name
        self.parent = parent
        self.index = index

        # Transform
        self.position: Vec3 = vec3()
        self.quaternion: Quat = quat_identity()
        self.scale: Vec3 = vec3(1, 1, 1)

        # Matrices
        self.local_matrix: Mat4 = mat4_identity()
        self.world_matrix: Mat4 = mat4_identity()
        self.world_quaternion: Quat = quat_identity()

        self._matrix_dirty: bool = True

    def __repr__(self) -> str:
        return f"Bone({self.name!r}, index={self.index}, parent={self.parent})"

    def set_position(self, x: float, y: float, z: float) -> "Bone":
        self.position = vec3(x, y, z)
        self._matrix_dirty = True
        return self

    def set_quaternion(self, q: Quat) -> "Bone":
        self.quaternion = np.array(q, dtype=np.float64)
        self._matrix_dirty = True
        return self

    def set_scale(self, x: float, y: float, z: float) -> "Bone":
        self.scale = vec3(x, y, z)
        self._matrix_dirty = True
        return self

    def update_local_matrix(self) -> None:
        """Recompute local matrix from position, quaternion, scale."""
        self.local_matrix = mat4_compose(self.position, self.quaternion, self.scale)
        self._matrix_dirty = False

    def copy(self) -> "Bone":
        other = Bone(self.name, self.parent, self.index)
        other.position = self.position.copy()
        other.quaternion = self.quaternion.copy()
        other.scale = self.scale.copy()
        other.local_matrix = self.local_matrix.copy()
        other.world_matrix = self.world_matrix.copy()
        other.world_quaternion = self.world_quaternion.copy()
        other._matrix_dirty = self._matrix_dirty
        return other


class Skeleton:
    """Ordered bone arena plus the armature root frame above it."""

    def __init__(self, root_frame_name: str = ROOT_FRAME_NAME):
        self.bones: list[Bone] = []
        self.root_frame = Bone(root_frame_name)
        self._by_name: dict[str, int] = {}

    # ── Construction ──────────────────────────────────────────────────

    def add_bone(
        self,
        name: str,
        parent: Optional[int | str] = None,
        position: Optional[Sequence[float]] = None,
        quaternion: Optional[Sequence[float]] = None,
        scale: Optional[Sequence[float]] = None,
    ) -> Bone:
        """Append a bone. ``parent`` is a bone name, an index, or None for the root frame."""
        if name in self._by_name:
            raise ValueError(f"Duplicate bone name: {name}")
        if parent is None:
            parent_index = -1
        elif isinstance(parent, str):
            if parent not in self._by_name:
                raise ValueError(f"Parent bone {parent!r} must be added before {name!r}")
            parent_index = self._by_name[parent]
        else:
            parent_index = int(parent)
            if not -1 <= parent_index < len(self.bones):
                raise ValueError(f"Parent index {parent_index} out of range for {name!r}")

        bone = Bone(name, parent_index, len(self.bones))
        if position is not None:
            bone.position = np.array(position, dtype=np.float64)
        if quaternion is not None:
            bone.quaternion = np.array(quaternion, dtype=np.float64)
        if scale is not None:
            bone.scale = np.array(scale, dtype=np.float64)
        self.bones.append(bone)
        self._by_name[name] = bone.index
        return bone

    def copy(self) -> "Skeleton":
        other = Skeleton(self.root_frame.name)
        other.root_frame = self.root_frame.copy()
        other.bones = [b.copy() for b in self.bones]
        other._by_name = dict(self._by_name)
        return other

    # ── Lookup ────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.bones)

    def __iter__(self) -> Iterator[Bone]:
        return iter(self.bones)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def bone_index(self, name: str) -> Optional[int]:
        return self._by_name.get(name)

    def get_bone(self, name: str) -> Optional[Bone]:
        i = self._by_name.get(name)
        return None if i is None else self.bones[i]

    def bone_names(self) -> list[str]:
        return [b.name for b in self.bones]

    def children_of(self, index: int) -> list[int]:
        return [b.index for b in self.bones if b.parent == index]

    # ── Writes ────────────────────────────────────────────────────────

    def set_local_quaternion(self, index: int, q: Quat) -> None:
        """Overwrite a bone's local rotation. Call update_world_matrices() after."""
        self.bones[index].set_quaternion(q)

    def set_bone_world_position(self, index: int, point: Vec3) -> None:
        """Move a bone so its world-space origin lands on ``point``."""
        bone = self.bones[index]
        local = self.world_to_local(bone.parent, point)
        bone.position = local
        bone._matrix_dirty = True
        self.update_world_matrices()

    # ── Propagation ───────────────────────────────────────────────────

    def is_dirty(self) -> bool:
        return self.root_frame._matrix_dirty or any(b._matrix_dirty for b in self.bones)

    def update_world_matrices(self, force: bool = False) -> None:
        """Recompute every world matrix (and world quaternion) in index order."""
        root = self.root_frame
        if root._matrix_dirty or force:
            root.update_local_matrix()
        root.world_matrix = root.local_matrix.copy()
        root.world_quaternion = quat_normalize(root.quaternion)

        for bone in self.bones:
            if bone._matrix_dirty or force:
                bone.update_local_matrix()
            parent = root if bone.parent < 0 else self.bones[bone.parent]
            bone.world_matrix = parent.world_matrix @ bone.local_matrix
            bone.world_quaternion = quat_normalize(
                quat_multiply(parent.world_quaternion, bone.quaternion)
            )

    def _ensure_updated(self) -> None:
        if self.is_dirty():
            self.update_world_matrices()

    # ── World-space queries ───────────────────────────────────────────

    def _node(self, index: int) -> Bone:
        return self.root_frame if index < 0 else self.bones[index]

    def world_matrix(self, index: int) -> Mat4:
        self._ensure_updated()
        return self._node(index).world_matrix.copy()

    def world_quaternion(self, index: int) -> Quat:
        """World rotation of a bone (``-1`` for the root frame)."""
        self._ensure_updated()
        return self._node(index).world_quaternion.copy()

    def world_position(self, index: int) -> Vec3:
        """Extract world position from world matrix."""
        self._ensure_updated()
        return self._node(index).world_matrix[:3, 3].copy()

    def world_to_local(self, parent_index: int, point: Vec3) -> Vec3:
        """Express a world-space point in the frame of ``parent_index``."""
        self._ensure_updated()
        inv = mat4_inverse(self._node(parent_index).world_matrix)
        return transform_point(inv, np.asarray(point, dtype=np.float64))
