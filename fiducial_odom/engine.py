"""Odometry fusion engine: one fiducial detection in, one odometry estimate out."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from .errors import CollaboratorTimeout, SourceUnavailable, TransformUnavailable
from .guard import CallGuard
from .interfaces import ImageSource, MarkerDetector, OdometrySink, TransformProvider
from .odom_types import (
    CycleReport,
    DetectionResult,
    OdometryEstimate,
    Pose,
    RigidTransform,
    StampedPose,
    fixed_covariance,
)
from .transforms import compose, difference, pose_to_transform
from .velocity import FirstOrderVelocity, VelocityEstimator

# Camera-optical and footprint axes disagree in handedness on Y and Z.
AXIS_FIXUP = np.array([1.0, -1.0, -1.0])


@dataclass
class EngineFrames:
    camera_frame: str = "camera_link"
    footprint_frame: str = "footprint"
    landmark_frame: str = "bin_footprint"
    odometry_frame: str = "odom"


@dataclass
class EngineStats:
    cycles: int = 0
    emitted: int = 0
    skipped: Counter = field(default_factory=Counter)

    def as_dict(self) -> dict:
        return {"cycles": self.cycles, "emitted": self.emitted, "skipped": dict(self.skipped)}


class _CycleSkipped(Exception):
    def __init__(self, reason: str, detection: Optional[DetectionResult] = None):
        super().__init__(reason)
        self.reason = reason
        self.detection = detection


def _fmt(pose: Pose) -> str:
    p, q = pose.position, pose.orientation
    return "%f %f %f %f %f %f %f" % (p[0], p[1], p[2], q[0], q[1], q[2], q[3])


def _fmt_transform(t: RigidTransform) -> str:
    return _fmt(Pose(t.translation, t.rotation))


class FusionEngine:
    """
    Turns fiducial detections from a primary/secondary camera pair into
    odometry estimates.

    The only persistent state is the previous estimated pose. It starts at
    the origin with no valid stamp and is replaced only after an estimate has
    been handed to the sink; skipped cycles leave it untouched, so the next
    velocity is computed over the longer interval.
    """

    def __init__(
        self,
        primary: ImageSource,
        secondary: ImageSource,
        detector: MarkerDetector,
        transforms: TransformProvider,
        sink: OdometrySink,
        frames: Optional[EngineFrames] = None,
        velocity: Optional[VelocityEstimator] = None,
        guard: Optional[CallGuard] = None,
        logger: Optional[logging.Logger] = None,
        debug: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.primary = primary
        self.secondary = secondary
        self.detector = detector
        self.transforms = transforms
        self.sink = sink
        self.frames = frames or EngineFrames()
        self.velocity = velocity or FirstOrderVelocity()
        self.guard = guard or CallGuard(timeout_sec=None)
        self.logger = logger or logging.getLogger("fiducial_odom.engine")
        self.debug = debug
        self._clock = clock

        self._previous = StampedPose(Pose(), self.frames.camera_frame, None)
        self.stats = EngineStats()
        self.last_report: Optional[CycleReport] = None

    @property
    def previous_pose(self) -> StampedPose:
        return self._previous

    def run_cycle(self) -> Optional[OdometryEstimate]:
        t0 = self._clock()
        self.stats.cycles += 1

        try:
            detection = self._select_detection()
            current = self._anchor(detection)
            estimate = self._package(current)
        except _CycleSkipped as skip:
            self.stats.skipped[skip.reason] += 1
            det = skip.detection
            self.last_report = CycleReport(
                False,
                skip.reason,
                det.source_name if det is not None else None,
                det.number_found if det is not None else 0,
                self._clock() - t0,
            )
            self.logger.debug("cycle skipped: %s", skip.reason)
            return None

        try:
            self.sink.emit(estimate)
        except Exception as e:
            self.stats.skipped["emit_failed"] += 1
            self.last_report = CycleReport(
                False, "emit_failed", detection.source_name, detection.number_found, self._clock() - t0
            )
            self.logger.warning("Odometry emit failed: %s", e)
            return None

        self._previous = current
        self.stats.emitted += 1
        self.last_report = CycleReport(
            True, "ok", detection.source_name, detection.number_found, self._clock() - t0
        )
        return estimate

    # -- step 1 -----------------------------------------------------------

    def _select_detection(self) -> DetectionResult:
        reason = "no_detection"
        for source in (self.primary, self.secondary):
            try:
                result = self._detect_from(source)
            except CollaboratorTimeout:
                reason = "timeout"
                continue
            except SourceUnavailable as e:
                self.logger.warning("image source %s unavailable: %s", source.name, e)
                reason = "source_unavailable"
                if source is self.secondary:
                    break
                continue
            except ValueError as e:
                self.logger.warning("detector on %s returned an invalid pose: %s", source.name, e)
                reason = "invalid_pose"
                continue
            except Exception as e:
                self.logger.warning("detection on %s failed: %r", source.name, e)
                reason = "collaborator_error"
                continue

            if result.number_found > 0:
                return result
            reason = "no_detection"
        raise _CycleSkipped(reason)

    def _detect_from(self, source: ImageSource) -> DetectionResult:
        image = self.guard.call(f"{source.name}.get_image", source.get_image)
        result = self.guard.call(
            "detector.detect", self.detector.detect, image, image.intrinsics
        )
        if not result.source_name:
            result.source_name = source.name
        if result.number_found > 0 and not result.pose.frame_id:
            result.pose.frame_id = image.frame_id
        return result

    # -- steps 2-4 --------------------------------------------------------

    def _lookup(self, target: str, source: str, reason: str, detection: DetectionResult) -> RigidTransform:
        try:
            return self.guard.call(
                f"lookup_transform({target}<-{source})",
                self.transforms.lookup_transform,
                target,
                source,
            )
        except TransformUnavailable as e:
            self.logger.warning("%s", e)
            raise _CycleSkipped(reason, detection) from None
        except CollaboratorTimeout:
            raise _CycleSkipped("timeout", detection) from None
        except Exception as e:
            self.logger.warning("lookup_transform(%s<-%s) failed: %r", target, source, e)
            raise _CycleSkipped("collaborator_error", detection) from None

    def _anchor(self, detection: DetectionResult) -> StampedPose:
        observed = detection.pose
        if self.debug:
            self.logger.info("unprocessed data %s %s", observed.frame_id, _fmt(observed.pose))

        footprint_from_camera = self._lookup(
            self.frames.footprint_frame, observed.frame_id, "footprint_transform_unavailable", detection
        )
        processed = compose(footprint_from_camera, pose_to_transform(observed.pose))
        processed = RigidTransform(processed.translation * AXIS_FIXUP, processed.rotation)
        if self.debug:
            self.logger.info("processed data %s %s", self.frames.footprint_frame, _fmt_transform(processed))

        odom_from_landmark = self._lookup(
            self.frames.odometry_frame, self.frames.landmark_frame, "landmark_transform_unavailable", detection
        )
        if self.debug:
            self.logger.info("relative transform %s", _fmt_transform(odom_from_landmark))

        relative = difference(odom_from_landmark, processed)
        position = -relative.translation
        if not np.all(np.isfinite(position)):
            raise _CycleSkipped("invalid_pose", detection)

        current = StampedPose(Pose(position, relative.rotation), self.frames.camera_frame, observed.stamp)
        if self.debug:
            self.logger.info("relative data %s %s", current.frame_id, _fmt(current.pose))
        return current

    # -- steps 5-6 --------------------------------------------------------

    def _package(self, current: StampedPose) -> OdometryEstimate:
        twist = self.velocity.estimate(self._previous, current)
        if not (np.all(np.isfinite(twist.linear)) and np.all(np.isfinite(twist.angular))):
            raise _CycleSkipped("invalid_pose")

        return OdometryEstimate(
            frame_id=self.frames.odometry_frame,
            child_frame_id=self.frames.footprint_frame,
            stamp=current.stamp,
            pose=current.pose.copy(),
            twist=twist,
            pose_covariance=fixed_covariance(),
            twist_covariance=fixed_covariance(),
        )
