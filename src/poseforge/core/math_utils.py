"""NumPy-backed math utilities: Vec3, Quaternion, Mat4 operations.

Vectors are plain numpy arrays; quaternions are [x, y, z, w] arrays.
Matrices are 4x4 numpy arrays acting on column vectors (p' = M @ p).

Euler angles follow the intrinsic convention: order "XYZ" means the
rotation matrix is Rx @ Ry @ Rz. Decomposed angles are always returned
indexed by axis (x, y, z), whatever the order.
"""

import numpy as np
from numpy.typing import NDArray

# Type aliases
Vec3 = NDArray[np.float64]
Mat3 = NDArray[np.float64]
Mat4 = NDArray[np.float64]
Quat = NDArray[np.float64]  # [x, y, z, w]

EULER_ORDERS = ("XYZ", "YZX", "ZXY", "XZY", "YXZ", "ZYX")

# Threshold on the middle-axis matrix element beyond which the
# decomposition is treated as gimbal locked.
_GIMBAL_EPS = 0.9999999


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> Vec3:
    return np.array([x, y, z], dtype=np.float64)


def mat4_identity() -> Mat4:
    return np.eye(4, dtype=np.float64)


def mat3_from_quaternion(q: Quat) -> Mat3:
    """Convert quaternion [x,y,z,w] to a 3x3 rotation matrix."""
    x, y, z, w = q
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ], dtype=np.float64)


def mat4_from_quaternion(q: Quat) -> Mat4:
    """Convert quaternion [x,y,z,w] to 4x4 rotation matrix."""
    m = np.eye(4, dtype=np.float64)
    m[:3, :3] = mat3_from_quaternion(q)
    return m


def mat4_compose(position: Vec3, quaternion: Quat, scale: Vec3) -> Mat4:
    """Compose TRS matrix from position, quaternion rotation, and scale."""
    m = mat4_from_quaternion(quaternion)
    m[:3, 0] *= scale[0]
    m[:3, 1] *= scale[1]
    m[:3, 2] *= scale[2]
    m[:3, 3] = position
    return m


def mat4_decompose(m: Mat4) -> tuple[Vec3, Quat, Vec3]:
    """Split a TRS matrix into (position, quaternion, scale).

    A negative determinant is folded into the X scale, as three.js does.
    """
    position = m[:3, 3].copy()
    sx = np.linalg.norm(m[:3, 0])
    sy = np.linalg.norm(m[:3, 1])
    sz = np.linalg.norm(m[:3, 2])
    if np.linalg.det(m[:3, :3]) < 0:
        sx = -sx
    scale = vec3(sx, sy, sz)
    rot = m[:3, :3].copy()
    for i, s in enumerate(scale):
        if abs(s) > 1e-12:
            rot[:, i] /= s
    return position, quat_from_mat3(rot), scale


def mat4_inverse(m: Mat4) -> Mat4:
    return np.linalg.inv(m)


# Quaternion operations

def quat_identity() -> Quat:
    return np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)


def quat_from_euler(x: float, y: float, z: float, order: str = "XYZ") -> Quat:
    """Create quaternion from intrinsic Euler angles (radians)."""
    cx, sx = np.cos(x / 2), np.sin(x / 2)
    cy, sy = np.cos(y / 2), np.sin(y / 2)
    cz, sz = np.cos(z / 2), np.sin(z / 2)

    if order == "XYZ":
        return np.array([
            sx * cy * cz + cx * sy * sz,
            cx * sy * cz - sx * cy * sz,
            cx * cy * sz + sx * sy * cz,
            cx * cy * cz - sx * sy * sz,
        ], dtype=np.float64)
    elif order == "YXZ":
        return np.array([
            sx * cy * cz + cx * sy * sz,
            cx * sy * cz - sx * cy * sz,
            cx * cy * sz - sx * sy * cz,
            cx * cy * cz + sx * sy * sz,
        ], dtype=np.float64)
    elif order == "ZXY":
        return np.array([
            sx * cy * cz - cx * sy * sz,
            cx * sy * cz + sx * cy * sz,
            cx * cy * sz + sx * sy * cz,
            cx * cy * cz - sx * sy * sz,
        ], dtype=np.float64)
    elif order == "ZYX":
        return np.array([
            sx * cy * cz - cx * sy * sz,
            cx * sy * cz + sx * cy * sz,
            cx * cy * sz - sx * sy * cz,
            cx * cy * cz + sx * sy * sz,
        ], dtype=np.float64)
    elif order == "YZX":
        return np.array([
            sx * cy * cz + cx * sy * sz,
            cx * sy * cz + sx * cy * sz,
            cx * cy * sz - sx * sy * cz,
            cx * cy * cz - sx * sy * sz,
        ], dtype=np.float64)
    elif order == "XZY":
        return np.array([
            sx * cy * cz - cx * sy * sz,
            cx * sy * cz - sx * cy * sz,
            cx * cy * sz + sx * sy * cz,
            cx * cy * cz + sx * sy * sz,
        ], dtype=np.float64)
    else:
        raise ValueError(f"Unsupported Euler order: {order}")


def euler_from_mat3(m: Mat3, order: str = "XYZ") -> tuple[float, float, float]:
    """Decompose a rotation matrix into intrinsic Euler angles (x, y, z).

    The middle angle of the order lies in [-pi/2, pi/2]. At gimbal lock
    the last angle of the order is set to zero.
    """
    m11, m12, m13 = m[0]
    m21, m22, m23 = m[1]
    m31, m32, m33 = m[2]

    if order == "XYZ":
        y = np.arcsin(np.clip(m13, -1.0, 1.0))
        if abs(m13) < _GIMBAL_EPS:
            x = np.arctan2(-m23, m33)
            z = np.arctan2(-m12, m11)
        else:
            x = np.arctan2(m32, m22)
            z = 0.0
    elif order == "YXZ":
        x = np.arcsin(-np.clip(m23, -1.0, 1.0))
        if abs(m23) < _GIMBAL_EPS:
            y = np.arctan2(m13, m33)
            z = np.arctan2(m21, m22)
        else:
            y = np.arctan2(-m31, m11)
            z = 0.0
    elif order == "ZXY":
        x = np.arcsin(np.clip(m32, -1.0, 1.0))
        if abs(m32) < _GIMBAL_EPS:
            y = np.arctan2(-m31, m33)
            z = np.arctan2(-m12, m22)
        else:
            y = 0.0
            z = np.arctan2(m21, m11)
    elif order == "ZYX":
        y = np.arcsin(-np.clip(m31, -1.0, 1.0))
        if abs(m31) < _GIMBAL_EPS:
            x = np.arctan2(m32, m33)
            z = np.arctan2(m21, m11)
        else:
            x = 0.0
            z = np.arctan2(-m12, m22)
    elif order == "YZX":
        z = np.arcsin(np.clip(m21, -1.0, 1.0))
        if abs(m21) < _GIMBAL_EPS:
            x = np.arctan2(-m23, m22)
            y = np.arctan2(-m31, m11)
        else:
            x = 0.0
            y = np.arctan2(m13, m33)
    elif order == "XZY":
        z = np.arcsin(-np.clip(m12, -1.0, 1.0))
        if abs(m12) < _GIMBAL_EPS:
            x = np.arctan2(m32, m22)
            y = np.arctan2(m13, m11)
        else:
            x = np.arctan2(-m23, m33)
            y = 0.0
    else:
        raise ValueError(f"Unsupported Euler order: {order}")

    return float(x), float(y), float(z)


def euler_from_quat(q: Quat, order: str = "XYZ") -> tuple[float, float, float]:
    """Decompose a quaternion into intrinsic Euler angles (x, y, z)."""
    return euler_from_mat3(mat3_from_quaternion(quat_normalize(q)), order)


def quat_from_mat3(m: Mat3) -> Quat:
    """Convert a pure rotation matrix to a quaternion [x, y, z, w]."""
    m11, m12, m13 = m[0]
    m21, m22, m23 = m[1]
    m31, m32, m33 = m[2]
    trace = m11 + m22 + m33

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        q = [(m32 - m23) * s, (m13 - m31) * s, (m21 - m12) * s, 0.25 / s]
    elif m11 > m22 and m11 > m33:
        s = 2.0 * np.sqrt(1.0 + m11 - m22 - m33)
        q = [0.25 * s, (m12 + m21) / s, (m13 + m31) / s, (m32 - m23) / s]
    elif m22 > m33:
        s = 2.0 * np.sqrt(1.0 + m22 - m11 - m33)
        q = [(m12 + m21) / s, 0.25 * s, (m23 + m32) / s, (m13 - m31) / s]
    else:
        s = 2.0 * np.sqrt(1.0 + m33 - m11 - m22)
        q = [(m13 + m31) / s, (m23 + m32) / s, 0.25 * s, (m21 - m12) / s]
    return quat_normalize(np.array(q, dtype=np.float64))


def quat_from_axis_angle(axis: Vec3, angle: float) -> Quat:
    """Create quaternion from axis-angle."""
    half = angle / 2
    s = np.sin(half)
    a = normalize(np.asarray(axis, dtype=np.float64))
    return np.array([a[0] * s, a[1] * s, a[2] * s, np.cos(half)], dtype=np.float64)


def quat_multiply(a: Quat, b: Quat) -> Quat:
    """Multiply two quaternions (a * b)."""
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return np.array([
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
        aw * bw - ax * bx - ay * by - az * bz,
    ], dtype=np.float64)


def quat_conjugate(q: Quat) -> Quat:
    return np.array([-q[0], -q[1], -q[2], q[3]], dtype=np.float64)


def quat_inverse(q: Quat) -> Quat:
    """Inverse of a (possibly non-unit) quaternion."""
    n2 = float(np.dot(q, q))
    if n2 < 1e-20:
        return quat_identity()
    return quat_conjugate(q) / n2


def quat_normalize(q: Quat) -> Quat:
    n = np.linalg.norm(q)
    if n < 1e-10:
        return quat_identity()
    return q / n


def quat_angle_to(a: Quat, b: Quat) -> float:
    """Angle in radians of the rotation taking ``a`` to ``b``."""
    d = quat_multiply(quat_conjugate(quat_normalize(a)), quat_normalize(b))
    return 2.0 * float(np.arctan2(np.linalg.norm(d[:3]), abs(d[3])))


def quat_equal(a: Quat, b: Quat, atol: float = 1e-9) -> bool:
    """True when both quaternions describe the same rotation."""
    return quat_angle_to(a, b) <= atol


def quat_slerp(a: Quat, b: Quat, t: float) -> Quat:
    """Spherical linear interpolation between two quaternions."""
    dot = np.dot(a, b)
    if dot < 0:
        b = -b
        dot = -dot
    if dot > 0.9995:
        result = a + t * (b - a)
        return quat_normalize(result)
    theta = np.arccos(np.clip(dot, -1.0, 1.0))
    sin_theta = np.sin(theta)
    if sin_theta < 1e-10:
        return a.copy()
    wa = np.sin((1 - t) * theta) / sin_theta
    wb = np.sin(t * theta) / sin_theta
    return quat_normalize(wa * a + wb * b)


def quat_rotate_vec3(q: Quat, v: Vec3) -> Vec3:
    """Rotate a vector by a quaternion."""
    qv = q[:3]
    w = q[3]
    t = 2.0 * np.cross(qv, v)
    return v + w * t + np.cross(qv, t)


# Vector operations

def normalize(v: Vec3) -> Vec3:
    n = np.linalg.norm(v)
    if n < 1e-10:
        return np.zeros_like(v)
    return v / n


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def deg_to_rad(degrees: float) -> float:
    return degrees * np.pi / 180.0


def rad_to_deg(radians: float) -> float:
    return radians * 180.0 / np.pi


def transform_point(m: Mat4, p: Vec3) -> Vec3:
    """Transform a point by a 4x4 matrix."""
    v = np.array([p[0], p[1], p[2], 1.0], dtype=np.float64)
    r = m @ v
    return r[:3]


def transform_direction(m: Mat4, d: Vec3) -> Vec3:
    """Transform a direction by a 4x4 matrix (ignores translation)."""
    return (m[:3, :3] @ d)
