"""SE(3) transformation utilities for fiducial pose handling.

Quaternions are stored in (x, y, z, w) order throughout the package.

Malformed quaternions are renormalized, never rejected, with two exceptions:
an all-zero quaternion is replaced by the identity rotation, and a quaternion
with non-finite components raises ``ValueError``.

Roll-pitch-yaw follows the fixed-axis X-Y-Z convention used by ROS odometry
consumers: R = Rz(yaw) @ Ry(pitch) @ Rx(roll).
"""

from __future__ import annotations

import math
from typing import Tuple

import cv2
import numpy as np

from .odom_types import Pose, RigidTransform

IDENTITY_QUATERNION = np.array([0.0, 0.0, 0.0, 1.0])
GIMBAL_EPS = 1e-12


def normalize_quaternion(q) -> np.ndarray:
    """
    Return a unit quaternion (x, y, z, w) built from raw input.

    Raises:
        ValueError: if the input is not four finite numbers
    """
    q = np.asarray(q, dtype=np.float64).reshape(-1)
    if q.shape != (4,):
        raise ValueError(f"Quaternion must have 4 components, got {q.shape}")
    if not np.all(np.isfinite(q)):
        raise ValueError(f"Quaternion has non-finite components: {q.tolist()}")

    norm = float(np.linalg.norm(q))
    if norm == 0.0:
        return IDENTITY_QUATERNION.copy()
    return q / norm


def is_zero_quaternion(q) -> bool:
    return bool(np.all(np.asarray(q, dtype=np.float64) == 0.0))


def quaternion_to_matrix(q) -> np.ndarray:
    """
    Convert a quaternion (x, y, z, w) to a 3x3 rotation matrix.
    """
    x, y, z, w = normalize_quaternion(q)
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ],
        dtype=np.float64,
    )


def matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """
    Convert a 3x3 rotation matrix to a unit quaternion (x, y, z, w).

    Uses Shepperd's method, picking the largest diagonal term for stability.
    The returned quaternion always has w >= 0.
    """
    R = np.asarray(R, dtype=np.float64)
    trace = R[0, 0] + R[1, 1] + R[2, 2]

    if trace > 0.0:
        s = 2.0 * math.sqrt(trace + 1.0)
        w = 0.25 * s
        x = (R[2, 1] - R[1, 2]) / s
        y = (R[0, 2] - R[2, 0]) / s
        z = (R[1, 0] - R[0, 1]) / s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * math.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * math.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * math.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    q = normalize_quaternion([x, y, z, w])
    if q[3] < 0.0:
        q = -q
    return q


def rvec_tvec_to_matrix(rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    """
    Convert rotation vector and translation vector to 4x4 transformation matrix.

    Args:
        rvec: Rotation vector (3,) or (3,1)
        tvec: Translation vector (3,) or (3,1)

    Returns:
        4x4 homogeneous transformation matrix
    """
    rvec = np.array(rvec, dtype=np.float64).reshape(3)
    tvec = np.array(tvec, dtype=np.float64).reshape(3)

    R, _ = cv2.Rodrigues(rvec)

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = tvec

    return T


def matrix_to_rvec_tvec(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert 4x4 transformation matrix to rotation vector and translation vector.

    Returns:
        (rvec, tvec) where rvec is (3,1) and tvec is (3,1)
    """
    R = np.asarray(T[:3, :3], dtype=np.float64)
    tvec = np.asarray(T[:3, 3], dtype=np.float64).reshape(3, 1)

    rvec, _ = cv2.Rodrigues(R)

    return rvec, tvec


def rvec_tvec_to_transform(rvec: np.ndarray, tvec: np.ndarray) -> RigidTransform:
    """Build a RigidTransform from an OpenCV Rodrigues vector and translation."""
    return matrix_to_transform(rvec_tvec_to_matrix(rvec, tvec))


def transform_to_matrix(t: RigidTransform) -> np.ndarray:
    T = np.eye(4)
    T[:3, :3] = quaternion_to_matrix(t.rotation)
    T[:3, 3] = t.translation
    return T


def matrix_to_transform(T: np.ndarray) -> RigidTransform:
    T = np.asarray(T, dtype=np.float64)
    return RigidTransform(T[:3, 3].copy(), matrix_to_quaternion(T[:3, :3]))


def invert_transform(T: np.ndarray) -> np.ndarray:
    """
    Invert a 4x4 homogeneous transformation matrix.

    For SE(3): T^-1 = [R^T, -R^T * t; 0, 1]

    Args:
        T: 4x4 transformation matrix

    Returns:
        4x4 inverted transformation matrix
    """
    T_inv = np.eye(4)
    R = T[:3, :3]
    t = T[:3, 3]

    R_T = R.T
    T_inv[:3, :3] = R_T
    T_inv[:3, 3] = -R_T @ t

    return T_inv


def compose(a: RigidTransform, b: RigidTransform) -> RigidTransform:
    """
    Rotate and translate ``b`` by ``a``: the result maps b's child frame into
    a's parent frame. Associative, not commutative.
    """
    return matrix_to_transform(transform_to_matrix(a) @ transform_to_matrix(b))


def invert(a: RigidTransform) -> RigidTransform:
    """Return the transform whose composition with ``a`` is the identity."""
    return matrix_to_transform(invert_transform(transform_to_matrix(a)))


def difference(a: RigidTransform, b: RigidTransform) -> RigidTransform:
    """
    Express ``b`` relative to ``a``'s frame.

        D = inv(A) @ B
    """
    return compose(invert(a), b)


def to_roll_pitch_yaw(q) -> Tuple[float, float, float]:
    """
    Extract (roll, pitch, yaw) in radians from a quaternion (x, y, z, w).

    Fixed-axis X-Y-Z: R = Rz(yaw) @ Ry(pitch) @ Rx(roll). At gimbal lock
    (|pitch| == pi/2) yaw is pinned to zero and the full in-plane rotation
    is reported as roll.
    """
    R = quaternion_to_matrix(q)
    sin_pitch = -R[2, 0]

    if abs(sin_pitch) >= 1.0 - GIMBAL_EPS:
        pitch = math.copysign(math.pi / 2.0, sin_pitch)
        yaw = 0.0
        if sin_pitch > 0:
            roll = math.atan2(R[0, 1], R[0, 2])
        else:
            roll = math.atan2(-R[0, 1], -R[0, 2])
        return roll, pitch, yaw

    roll = math.atan2(R[2, 1], R[2, 2])
    pitch = math.asin(sin_pitch)
    yaw = math.atan2(R[1, 0], R[0, 0])
    return roll, pitch, yaw


def from_roll_pitch_yaw(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Quaternion (x, y, z, w) for the fixed-axis X-Y-Z angles."""
    cr, sr = math.cos(roll / 2.0), math.sin(roll / 2.0)
    cp, sp = math.cos(pitch / 2.0), math.sin(pitch / 2.0)
    cy, sy = math.cos(yaw / 2.0), math.sin(yaw / 2.0)
    return normalize_quaternion(
        [
            sr * cp * cy - cr * sp * sy,
            cr * sp * cy + sr * cp * sy,
            cr * cp * sy - sr * sp * cy,
            cr * cp * cy + sr * sp * sy,
        ]
    )


def rotation_log(q) -> np.ndarray:
    """Rotation vector (axis * angle) of a quaternion, via Rodrigues."""
    rvec, _ = cv2.Rodrigues(quaternion_to_matrix(q))
    return rvec.reshape(3)


def pose_to_transform(pose: Pose) -> RigidTransform:
    return RigidTransform(pose.position.copy(), pose.orientation.copy())


def transform_to_pose(t: RigidTransform) -> Pose:
    return Pose(t.translation.copy(), t.rotation.copy())


def is_identity(t: RigidTransform, atol: float = 1e-9) -> bool:
    """True when ``t`` has zero translation and an identity rotation (either sign)."""
    if not np.allclose(t.translation, 0.0, atol=atol):
        return False
    return bool(
        np.allclose(t.rotation, IDENTITY_QUATERNION, atol=atol)
        or np.allclose(t.rotation, -IDENTITY_QUATERNION, atol=atol)
    )
