"""Load the biomechanical model table from JSON.

Angles are authored in degrees and converted to radians here. Bone names
are authored without the rig prefix (``bone_prefix`` in the file), except
IK target names which are created at runtime and used verbatim.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from poseforge.anatomy.definitions import (
    BiomechModel, Coordinate, IKChainConfig, Joint, Segment, make_joint,
)
from poseforge.constants import (
    DEFAULT_IK_ITERATIONS, DEFAULT_IK_MAX_ANGLE, DEFAULT_IK_MIN_ANGLE,
    DEFAULT_MODEL_CONFIG,
)
from poseforge.core.config_loader import load_json
from poseforge.core.errors import ModelConfigError
from poseforge.core.math_utils import deg_to_rad

logger = logging.getLogger(__name__)

SUPPORTED_VERSION = 1


def _require(entry: dict, key: str, where: str) -> Any:
    if key not in entry:
        raise ModelConfigError(f"{where}: missing required field {key!r}")
    return entry[key]


def _parse_segment(entry: dict, prefix: str) -> Segment:
    seg_id = _require(entry, "id", "segment")
    source = entry.get("source", "virtual" if "bone" not in entry else "bone")
    if source not in ("bone", "virtual"):
        raise ModelConfigError(f"Segment {seg_id}: unknown source {source!r}")
    bone = entry.get("bone")
    if source == "bone" and not bone:
        raise ModelConfigError(f"Segment {seg_id}: bone-backed segment needs a bone name")
    return Segment(
        id=seg_id,
        name=entry.get("name", seg_id),
        source=source,
        bone_name=prefix + bone if bone else None,
    )


def _parse_coordinate(entry: dict, joint_id: str) -> Coordinate:
    coord_id = _require(entry, "id", f"joint {joint_id} coordinate")
    try:
        lo = deg_to_rad(float(_require(entry, "min", coord_id)))
        hi = deg_to_rad(float(_require(entry, "max", coord_id)))
        neutral = deg_to_rad(float(entry.get("neutral", 0.0)))
        index = int(_require(entry, "index", coord_id))
    except (TypeError, ValueError) as e:
        raise ModelConfigError(f"Coordinate {coord_id}: {e}") from e
    return Coordinate(
        id=coord_id,
        joint_id=joint_id,
        name=entry.get("name", coord_id),
        axis=_require(entry, "axis", coord_id),
        index=index,
        range_min=lo,
        range_max=hi,
        neutral=neutral,
        clamped=bool(entry.get("clamped", True)),
        locked=bool(entry.get("locked", False)),
        invert=bool(entry.get("invert", False)),
    )


def _parse_joint(entry: dict) -> Joint:
    joint_id = _require(entry, "id", "joint")
    coords = tuple(_parse_coordinate(c, joint_id) for c in entry.get("coordinates", []))
    return make_joint(
        id=joint_id,
        name=entry.get("name", joint_id),
        parent=_require(entry, "parent", joint_id),
        child=_require(entry, "child", joint_id),
        euler_order=entry.get("order", "XYZ"),
        coordinates=coords,
        side=entry.get("side"),
    )


def _parse_bounds(raw: dict, prefix: str, chain: str) -> dict:
    bounds = {}
    for bone, box in raw.items():
        lo = box.get("min")
        hi = box.get("max")
        if lo is None or hi is None or len(lo) != 3 or len(hi) != 3:
            raise ModelConfigError(f"IK chain {chain}: bounds for {bone} need 3-element min/max")
        bounds[prefix + bone] = (
            tuple(deg_to_rad(float(v)) for v in lo),
            tuple(deg_to_rad(float(v)) for v in hi),
        )
    return bounds


def _parse_chain(entry: dict, prefix: str) -> IKChainConfig:
    name = _require(entry, "name", "ik chain")
    links = entry.get("links", [])
    if not links:
        raise ModelConfigError(f"IK chain {name}: needs at least one link")
    return IKChainConfig(
        name=name,
        target=_require(entry, "target", name),
        effector=prefix + _require(entry, "effector", name),
        links=tuple(prefix + b for b in links),
        iteration=int(entry.get("iteration", DEFAULT_IK_ITERATIONS)),
        min_angle=float(entry.get("min_angle", DEFAULT_IK_MIN_ANGLE)),
        max_angle=float(entry.get("max_angle", DEFAULT_IK_MAX_ANGLE)),
        enabled=bool(entry.get("enabled", True)),
        link_bounds=_parse_bounds(entry.get("link_bounds", {}), prefix, name),
    )


def build_model(data: dict) -> BiomechModel:
    """Validate a parsed model table and build the lookup object.

    Raises
    ------
    ModelConfigError
        On missing fields, duplicate ids, dangling segment references or
        joints whose coordinates do not match their degrees of freedom.
    """
    version = data.get("version", SUPPORTED_VERSION)
    if version != SUPPORTED_VERSION:
        raise ModelConfigError(f"Unsupported model version: {version}")
    prefix = data.get("bone_prefix", "")

    segments = [_parse_segment(e, prefix) for e in data.get("segments", [])]
    seg_ids = [s.id for s in segments]
    dupes = {s for s in seg_ids if seg_ids.count(s) > 1}
    if dupes:
        raise ModelConfigError(f"Duplicate segment ids: {sorted(dupes)}")

    joints = [_parse_joint(e) for e in data.get("joints", [])]
    joint_ids = [j.id for j in joints]
    dupes = {j for j in joint_ids if joint_ids.count(j) > 1}
    if dupes:
        raise ModelConfigError(f"Duplicate joint ids: {sorted(dupes)}")

    coord_ids = [c.id for j in joints for c in j.coordinates]
    dupes = {c for c in coord_ids if coord_ids.count(c) > 1}
    if dupes:
        raise ModelConfigError(f"Duplicate coordinate ids: {sorted(dupes)}")

    known = set(seg_ids)
    children: set[str] = set()
    for j in joints:
        for ref in (j.parent, j.child):
            if ref not in known:
                raise ModelConfigError(f"Joint {j.id}: unknown segment {ref!r}")
        if j.child in children:
            raise ModelConfigError(f"Segment {j.child} is the child of more than one joint")
        children.add(j.child)

    chains = [_parse_chain(e, prefix) for e in data.get("ik_chains", [])]

    root = data.get("root_segment")
    if root is not None and root not in known:
        raise ModelConfigError(f"Unknown root segment {root!r}")

    model = BiomechModel(segments, joints, chains, root)
    logger.debug(
        "Built model: %d segments, %d joints, %d IK chains",
        len(segments), len(joints), len(chains),
    )
    return model


@lru_cache(maxsize=None)
def _load_default() -> BiomechModel:
    return build_model(load_json(DEFAULT_MODEL_CONFIG))


def load_model(path: Optional[Path] = None) -> BiomechModel:
    """Load the model table at ``path`` (default: the bundled humanoid model)."""
    if path is None:
        return _load_default()
    try:
        data = load_json(Path(path))
    except ValueError as e:
        raise ModelConfigError(f"Invalid JSON in {path}: {e}") from e
    return build_model(data)
