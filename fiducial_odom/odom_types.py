from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

COVARIANCE_DIAGONAL = 0.1


def _vec3(value) -> np.ndarray:
    v = np.asarray(value, dtype=np.float64).reshape(-1)
    if v.shape != (3,):
        raise ValueError(f"Expected a 3-vector, got shape {v.shape}")
    return v


def _unit_quaternion(value) -> np.ndarray:
    # Deferred import: transforms depends on this module for its value types.
    from .transforms import normalize_quaternion

    return normalize_quaternion(value)


def fixed_covariance(value: float = COVARIANCE_DIAGONAL) -> np.ndarray:
    """6x6 diagonal covariance with ``value`` on every diagonal entry."""
    return np.eye(6) * value


@dataclass
class Pose:
    position: Any = field(default_factory=lambda: np.zeros(3))
    orientation: Any = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self) -> None:
        self.position = _vec3(self.position)
        self.orientation = _unit_quaternion(self.orientation)

    def copy(self) -> "Pose":
        return Pose(self.position.copy(), self.orientation.copy())


@dataclass
class StampedPose:
    pose: Pose = field(default_factory=Pose)
    frame_id: str = ""
    stamp: Optional[float] = None  # seconds; None means never valid

    def copy(self) -> "StampedPose":
        return StampedPose(self.pose.copy(), self.frame_id, self.stamp)


@dataclass
class RigidTransform:
    translation: Any = field(default_factory=lambda: np.zeros(3))
    rotation: Any = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self) -> None:
        self.translation = _vec3(self.translation)
        self.rotation = _unit_quaternion(self.rotation)

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls()


@dataclass
class CameraIntrinsics:
    camera_matrix: Any  # (3,3) ndarray
    dist_coeffs: Any  # (N,1) ndarray
    width: int = 0
    height: int = 0


@dataclass
class CameraImage:
    image: Any  # numpy array (BGR or gray)
    intrinsics: CameraIntrinsics
    stamp: float
    frame_id: str
    source_name: str = ""


@dataclass
class DetectionResult:
    """Markers found in one image; ``pose`` is only meaningful when number_found > 0."""

    number_found: int = 0
    pose: StampedPose = field(default_factory=StampedPose)
    marker_id: Optional[int] = None
    source_name: str = ""

    @classmethod
    def empty(cls, source_name: str = "") -> "DetectionResult":
        return cls(0, StampedPose(), None, source_name)


@dataclass
class Twist:
    linear: Any = field(default_factory=lambda: np.zeros(3))
    angular: Any = field(default_factory=lambda: np.zeros(3))  # roll/pitch/yaw rates

    def __post_init__(self) -> None:
        self.linear = _vec3(self.linear)
        self.angular = _vec3(self.angular)


@dataclass
class OdometryEstimate:
    frame_id: str
    child_frame_id: str
    stamp: float
    pose: Pose
    twist: Twist
    pose_covariance: Any = field(default_factory=fixed_covariance)
    twist_covariance: Any = field(default_factory=fixed_covariance)


@dataclass
class CycleReport:
    emitted: bool
    reason: str = "ok"
    source_name: Optional[str] = None
    number_found: int = 0
    latency_sec: float = 0.0
