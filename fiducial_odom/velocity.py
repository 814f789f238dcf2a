"""Twist estimation from two consecutive stamped poses."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from .odom_types import Pose, StampedPose, Twist
from .transforms import (
    difference,
    is_zero_quaternion,
    pose_to_transform,
    rotation_log,
    to_roll_pitch_yaw,
)

log = logging.getLogger("fiducial_odom.velocity")


def elapsed(previous: StampedPose, current: StampedPose) -> Optional[float]:
    """Seconds between the two stamps, or None when no usable interval exists."""
    if previous.stamp is None or current.stamp is None:
        return None
    dt = float(current.stamp) - float(previous.stamp)
    if not math.isfinite(dt) or dt <= 0.0:
        return None
    return dt


def _sanitized(pose: Pose) -> Pose:
    if is_zero_quaternion(pose.orientation):
        return Pose(pose.position, np.array([0.0, 0.0, 0.0, 1.0]))
    return pose


class VelocityEstimator(ABC):
    """
    Differentiates consecutive poses into a twist.

    Returns a zero twist when the interval is unusable (first cycle,
    duplicate or backwards stamps).
    """

    def estimate(self, previous: StampedPose, current: StampedPose) -> Twist:
        dt = elapsed(previous, current)
        if dt is None:
            log.warning(
                "unusable interval between stamps %s and %s, reporting zero twist",
                previous.stamp,
                current.stamp,
            )
            return Twist()

        delta = difference(
            pose_to_transform(_sanitized(previous.pose)),
            pose_to_transform(_sanitized(current.pose)),
        )
        log.debug(
            "deltas %s %s", np.round(delta.translation, 6).tolist(), np.round(delta.rotation, 6).tolist()
        )
        return Twist(delta.translation / dt, self.angular_delta(delta.rotation) / dt)

    @abstractmethod
    def angular_delta(self, rotation) -> np.ndarray: ...


class FirstOrderVelocity(VelocityEstimator):
    """
    Angular rate as (roll, pitch, yaw) of the rotation delta over dt.

    Only a first-order approximation of the body rate; it degrades as the
    per-cycle rotation grows.
    """

    def angular_delta(self, rotation) -> np.ndarray:
        return np.array(to_roll_pitch_yaw(rotation))


class LogMapVelocity(VelocityEstimator):
    """Angular rate from the rotation vector (log map) of the rotation delta."""

    def angular_delta(self, rotation) -> np.ndarray:
        return rotation_log(rotation)


def build_velocity_estimator(method: str) -> VelocityEstimator:
    key = (method or "rpy").strip().lower()
    if key in {"rpy", "first_order"}:
        return FirstOrderVelocity()
    if key in {"logmap", "log_map"}:
        return LogMapVelocity()
    raise ValueError(f"Unknown velocity method: {method!r}")
