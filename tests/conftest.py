import logging

import numpy as np
import pytest

from fiducial_odom.engine import EngineFrames, FusionEngine
from fiducial_odom.errors import SourceUnavailable
from fiducial_odom.frames import StaticTransformProvider
from fiducial_odom.interfaces import ImageSource, MarkerDetector, OdometrySink
from fiducial_odom.odom_types import (
    CameraImage,
    CameraIntrinsics,
    DetectionResult,
    Pose,
    RigidTransform,
    StampedPose,
)

FRAMES = EngineFrames(
    camera_frame="camera_link",
    footprint_frame="footprint",
    landmark_frame="bin_footprint",
    odometry_frame="odom",
)


def make_intrinsics():
    K = np.array([[600.0, 0.0, 320.0], [0.0, 600.0, 240.0], [0.0, 0.0, 1.0]])
    return CameraIntrinsics(K, np.zeros((5, 1)), 640, 480)


class FakeSource(ImageSource):
    def __init__(self, name, frame_id, stamps=None, fail=False):
        """Hand out blank images stamped from a queue of times."""
        self.name = name
        self.frame_id = frame_id
        self.stamps = list(stamps or [])
        self.fail = fail
        self.calls = 0
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def get_image(self):
        self.calls += 1
        if self.fail:
            raise SourceUnavailable(f"{self.name} offline")
        stamp = self.stamps.pop(0) if self.stamps else float(self.calls)
        return CameraImage(np.zeros((4, 4, 3), dtype=np.uint8), make_intrinsics(), stamp, self.frame_id, self.name)

    def stop(self):
        self.stopped = True


class FakeDetector(MarkerDetector):
    def __init__(self, per_source=None, default=None):
        """
        per_source maps a source name to a queue of marker translations
        (None meaning nothing found). ``default`` is used once a queue runs dry.
        """
        self.per_source = {k: list(v) for k, v in (per_source or {}).items()}
        self.default = default
        self.calls = []

    def detect(self, image, intrinsics):
        self.calls.append(image.source_name)
        queue = self.per_source.get(image.source_name, [])
        translation = queue.pop(0) if queue else self.default
        if translation is None:
            return DetectionResult.empty(image.source_name)
        if isinstance(translation, Pose):
            pose = translation
        else:
            pose = Pose(translation)
        return DetectionResult(1, StampedPose(pose, image.frame_id, image.stamp), 7, image.source_name)


class RecordingSink(OdometrySink):
    def __init__(self):
        """Collect emitted estimates for assertions."""
        self.estimates = []
        self.opened = None
        self.closed = False

    def open(self, session_dir):
        self.opened = session_dir

    def emit(self, estimate):
        self.estimates.append(estimate)

    def close(self):
        self.closed = True


def identity_provider(landmark=None):
    """Identity camera mounts and an odom<-landmark transform (identity unless given)."""
    provider = StaticTransformProvider()
    provider.set_transform("footprint", "rear_cam_optical", RigidTransform())
    provider.set_transform("footprint", "kinect_optical", RigidTransform())
    provider.set_transform("odom", "bin_footprint", landmark or RigidTransform())
    return provider


@pytest.fixture
def quiet_logger():
    logger = logging.Logger("fiducial-odom-test")
    logger.addHandler(logging.NullHandler())
    return logger


@pytest.fixture
def make_engine(quiet_logger):
    def _make(detector, provider=None, primary=None, secondary=None, sink=None, **kwargs):
        primary = primary or FakeSource("rear_cam", "rear_cam_optical")
        secondary = secondary or FakeSource("kinect", "kinect_optical")
        sink = sink if sink is not None else RecordingSink()
        engine = FusionEngine(
            primary,
            secondary,
            detector,
            provider or identity_provider(),
            sink,
            frames=FRAMES,
            logger=quiet_logger,
            **kwargs,
        )
        return engine, sink

    return _make
