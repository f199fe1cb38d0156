"""Neutral (anatomical reference) pose: one local quaternion per bone.

The neutral position has the arms at the sides, elbows extended, palms
facing the body and hips, knees and ankles at zero. An asset-loaded pose
is canonical: a runtime capture never replaces it unless explicitly asked.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

from poseforge.constants import DEFAULT_NEUTRAL_POSE_PATH
from poseforge.core.events import EventBus, EventType
from poseforge.core.math_utils import Quat
from poseforge.core.skeleton import Skeleton
from poseforge.loaders.pose_asset_loader import load_pose_asset

logger = logging.getLogger(__name__)

PoseLoader = Callable[[Path], Awaitable[dict[str, Quat]]]


@dataclass
class NeutralPoseResult:
    ok: bool
    pose: dict[str, Quat] = field(default_factory=dict)
    error: Optional[str] = None
    source: Optional[str] = None


class NeutralPoseStore:
    """Cache of the neutral pose, loaded once and shared by its users."""

    def __init__(self, bus: Optional[EventBus] = None, loader: PoseLoader = load_pose_asset):
        self._bus = bus
        self._loader = loader
        self._pose: Optional[dict[str, Quat]] = None
        self._source: Optional[str] = None  # "asset" | "capture"
        self._label: Optional[str] = None
        self._inflight: Optional[asyncio.Task] = None

    # ── Loading ───────────────────────────────────────────────────────

    async def load(self, source: Optional[Path] = None) -> NeutralPoseResult:
        """Load the neutral pose asset, sharing one in-flight read.

        A successful load is cached; later calls return it without touching
        the file. A failure is returned, not raised, and is not cached.
        """
        if self._pose is not None and self._source == "asset":
            return self._result()

        path = Path(source) if source is not None else DEFAULT_NEUTRAL_POSE_PATH
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._load(path))
        task = self._inflight
        try:
            await task
        except (OSError, ValueError) as e:
            logger.warning("Neutral pose load failed for %s: %s", path, e)
            return NeutralPoseResult(False, error=str(e))
        return self._result()

    async def _load(self, path: Path) -> dict[str, Quat]:
        try:
            pose = await self._loader(path)
        finally:
            self._inflight = None
        self._pose = {name: q.copy() for name, q in pose.items()}
        self._source = "asset"
        self._label = path.name
        logger.info("Loaded neutral pose from %s (%d bones)", path, len(pose))
        if self._bus is not None:
            self._bus.publish(EventType.NEUTRAL_POSE_LOADED, source=str(path), bone_count=len(pose))
        return pose

    def _result(self) -> NeutralPoseResult:
        return NeutralPoseResult(True, pose=self.get_pose(), source=self._source)

    def set_pose(self, pose: dict[str, Quat], label: str = "asset") -> None:
        """Install an already-parsed canonical pose."""
        self._pose = {name: q.copy() for name, q in pose.items()}
        self._source = "asset"
        self._label = label

    # ── Runtime capture ───────────────────────────────────────────────

    def capture_from_current_pose(
        self, skeleton: Skeleton, label: str = "capture", canonical: bool = False,
    ) -> bool:
        """Record every bone's current local rotation as the neutral pose.

        Refuses to replace an asset-loaded pose unless ``canonical`` is set.
        """
        if self._source == "asset" and not canonical:
            logger.info("Keeping asset neutral pose; ignoring capture %r", label)
            return False
        self._pose = {bone.name: bone.quaternion.copy() for bone in skeleton}
        self._source = "asset" if canonical else "capture"
        self._label = label
        logger.info("Captured neutral pose %r (%d bones)", label, len(self._pose))
        if self._bus is not None:
            self._bus.publish(EventType.NEUTRAL_POSE_CAPTURED, label=label, bone_count=len(self._pose))
        return True

    # ── Queries ───────────────────────────────────────────────────────

    def get_rotation(self, bone_name: str) -> Optional[Quat]:
        if self._pose is None:
            return None
        q = self._pose.get(bone_name)
        return None if q is None else q.copy()

    def get_pose(self) -> dict[str, Quat]:
        if self._pose is None:
            return {}
        return {name: q.copy() for name, q in self._pose.items()}

    @property
    def has_pose(self) -> bool:
        return self._pose is not None

    @property
    def source(self) -> Optional[str]:
        return self._source

    @property
    def label(self) -> Optional[str]:
        return self._label

    @property
    def bone_count(self) -> int:
        return 0 if self._pose is None else len(self._pose)

    def reset(self) -> None:
        self._pose = None
        self._source = None
        self._label = None
