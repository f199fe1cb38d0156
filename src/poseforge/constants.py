"""Shared constants and paths for PoseForge."""

from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
ASSETS_DIR = PROJECT_ROOT / "assets"
CONFIG_DIR = ASSETS_DIR / "config"
POSES_DIR = ASSETS_DIR / "poses"
DEFAULT_MODEL_CONFIG = CONFIG_DIR / "biomech_model.json"
DEFAULT_NEUTRAL_POSE_PATH = POSES_DIR / "neutral_pose.glb"

# Skeleton naming (Mixamo export prefix)
BONE_PREFIX = "mixamorig1"
ROOT_FRAME_NAME = "Armature"

# Coordinate engine
ROUND_TRIP_TOLERANCE = 1e-4  # radians
# Values within this distance of a limit count as inside it
LIMIT_EPSILON = 1e-9
EULER_ORDERS = ("XYZ", "YZX", "ZXY", "XZY", "YXZ", "ZYX")
AXIS_LETTERS = ("X", "Y", "Z")

# IK defaults (CCD)
DEFAULT_IK_ITERATIONS = 10
DEFAULT_IK_MIN_ANGLE = 0.01
DEFAULT_IK_MAX_ANGLE = 0.5
IK_MIN_ROTATION = 1e-5  # below this a link is considered aligned
IK_TARGET_PREFIX = "IKTarget_"

# Clinical shoulder mapping (degrees)
PLANE_CLASS_THRESHOLD_DEG = 30.0
RHYTHM_NORMAL_MIN = 1.5
RHYTHM_NORMAL_MAX = 2.5
PURE_GH_ELEVATION_DEG = 30.0
GH_ST_RATIO = 2.0

# Validator
DEFAULT_BLEND_FACTOR = 0.3

# Pose diagnostics
DEFAULT_SNAPSHOT_TOLERANCE = 1e-4

# Frame timing
MAX_DELTA_TIME = 0.1  # seconds, clamp to prevent spiral of death
