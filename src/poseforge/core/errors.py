"""Exception types raised by PoseForge internals.

Public operations on the state manager, validator, neutral pose store and
IK layer catch these and report them in their result objects; only model
loading lets ``ModelConfigError`` reach the caller.
"""


class PoseForgeError(Exception):
    """Base class for all PoseForge errors."""


class SegmentLookupError(PoseForgeError, LookupError):
    """A segment id could not be resolved to a bone or virtual frame."""


class CalibrationError(PoseForgeError):
    """An operation needed a neutral calibration that is not available."""


class ConstraintReferenceMissing(PoseForgeError):
    """No rest reference rotation exists for a bone being validated."""


class IKConfigError(PoseForgeError):
    """An IK chain references a target or effector that does not exist."""


class ModelConfigError(PoseForgeError, ValueError):
    """The static segment/joint/coordinate table is malformed."""


class NeutralPoseLoadError(PoseForgeError, OSError):
    """A neutral pose asset could not be read or parsed."""
