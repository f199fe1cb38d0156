"""Read reference poses (bone name -> local quaternion) from disk.

Two formats are understood:

- Binary glTF (``.glb``): 12-byte header | JSON chunk | optional BIN chunk.
  The first skin's joint nodes are the skeleton; each node's ``rotation``
  is already ``[x, y, z, w]`` (identity when absent).
- Plain JSON: ``{"bones": {"mixamorig1Hips": [x, y, z, w], ...}}``.
"""

import asyncio
import json
import logging
import re
import struct
from pathlib import Path

import numpy as np

from poseforge.core.errors import NeutralPoseLoadError
from poseforge.core.math_utils import Quat, quat_normalize

logger = logging.getLogger(__name__)

GLB_MAGIC = 0x46546C67  # "glTF"
GLB_CHUNK_JSON = 0x4E4F534A
GLB_CHUNK_BIN = 0x004E4942

# Characters three.js strips from node names when binding animations
_RESERVED_NAME_CHARS = re.compile(r"[\[\]\.:/]")


def sanitize_node_name(name: str) -> str:
    """Normalize a glTF node name the way the runtime rig names its bones."""
    return _RESERVED_NAME_CHARS.sub("", re.sub(r"\s", "_", name))


def _as_quat(values, where: str) -> Quat:
    try:
        q = np.array([float(v) for v in values], dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise NeutralPoseLoadError(f"{where}: rotation is not numeric") from e
    if q.shape != (4,):
        raise NeutralPoseLoadError(f"{where}: rotation needs 4 components, got {q.shape[0]}")
    return quat_normalize(q)


def parse_glb(data: bytes, name: str = "<bytes>") -> dict[str, Quat]:
    """Parse a binary glTF container and return its skeleton's local rotations."""
    if len(data) < 20:
        raise NeutralPoseLoadError(f"{name}: too short for a GLB file")
    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLB_MAGIC:
        raise NeutralPoseLoadError(f"{name}: not a GLB file (bad magic)")
    if version != 2:
        raise NeutralPoseLoadError(f"{name}: unsupported glTF version {version}")
    if total_length > len(data):
        raise NeutralPoseLoadError(f"{name}: truncated ({len(data)} of {total_length} bytes)")

    chunk_length, chunk_type = struct.unpack_from("<II", data, 12)
    if chunk_type != GLB_CHUNK_JSON:
        raise NeutralPoseLoadError(f"{name}: first chunk is not JSON")
    raw = data[20:20 + chunk_length]
    try:
        doc = json.loads(raw.decode("utf-8").rstrip(" \x00"))
    except (UnicodeDecodeError, ValueError) as e:
        raise NeutralPoseLoadError(f"{name}: invalid JSON chunk: {e}") from e
    return parse_gltf_document(doc, name)


def parse_gltf_document(doc: dict, name: str = "<gltf>") -> dict[str, Quat]:
    """Extract skinned joint rotations from a parsed glTF JSON document."""
    if not isinstance(doc, dict):
        raise NeutralPoseLoadError(f"{name}: glTF document is not an object")
    nodes = doc.get("nodes", [])
    skins = doc.get("skins", [])
    if not isinstance(nodes, list) or not isinstance(skins, list):
        raise NeutralPoseLoadError(f"{name}: 'nodes' and 'skins' must be arrays")
    if not skins or not isinstance(skins[0], dict) or not skins[0].get("joints"):
        raise NeutralPoseLoadError(f"No skeleton found in {name}")
    joints = skins[0]["joints"]
    if not isinstance(joints, list):
        raise NeutralPoseLoadError(f"{name}: skin joints must be an array")

    pose: dict[str, Quat] = {}
    for node_index in joints:
        if isinstance(node_index, bool) or not isinstance(node_index, int):
            raise NeutralPoseLoadError(f"{name}: skin joint {node_index!r} is not a node index")
        if not 0 <= node_index < len(nodes):
            raise NeutralPoseLoadError(f"{name}: skin joint {node_index} out of range")
        node = nodes[node_index]
        if not isinstance(node, dict):
            raise NeutralPoseLoadError(f"{name}: node {node_index} is not an object")
        node_name = node.get("name", f"node_{node_index}")
        if not isinstance(node_name, str):
            raise NeutralPoseLoadError(f"{name}: node {node_index} has a non-string name")
        bone = sanitize_node_name(node_name)
        pose[bone] = _as_quat(node.get("rotation", [0.0, 0.0, 0.0, 1.0]), f"{name}:{bone}")
    return pose


def parse_pose_json(doc: dict, name: str = "<json>") -> dict[str, Quat]:
    """Parse ``{"bones": {name: [x, y, z, w]}}``."""
    bones = doc.get("bones") if isinstance(doc, dict) else None
    if not isinstance(bones, dict) or not bones:
        raise NeutralPoseLoadError(f"{name}: expected a non-empty 'bones' mapping")
    return {bone: _as_quat(q, f"{name}:{bone}") for bone, q in bones.items()}


def load_pose_file(path: Path) -> dict[str, Quat]:
    """Read a pose file, choosing the parser from the file contents."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise NeutralPoseLoadError(f"Cannot read {path}: {e}") from e

    if data[:4] == b"glTF":
        pose = parse_glb(data, path.name)
    else:
        try:
            doc = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise NeutralPoseLoadError(f"{path.name}: neither GLB nor JSON: {e}") from e
        if isinstance(doc, dict) and "skins" in doc:
            pose = parse_gltf_document(doc, path.name)
        else:
            pose = parse_pose_json(doc, path.name)

    logger.debug("Parsed %d bone rotations from %s", len(pose), path)
    return pose


async def load_pose_asset(path: Path) -> dict[str, Quat]:
    """Async wrapper: parse ``path`` on a worker thread."""
    return await asyncio.to_thread(load_pose_file, path)


def write_pose_json(path: Path, pose: dict[str, Quat]) -> None:
    """Persist a pose in the plain JSON format (e.g. a captured neutral)."""
    doc = {"bones": {bone: [float(v) for v in q] for bone, q in pose.items()}}
    with open(path, "w") as f:
        json.dump(doc, f, indent=2)
