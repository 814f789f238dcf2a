import threading
import time

import numpy as np

from fiducial_odom.guard import CallGuard
from fiducial_odom.odom_types import Pose, RigidTransform
from fiducial_odom.transforms import compose, from_roll_pitch_yaw, invert

from conftest import FakeDetector, FakeSource, RecordingSink, identity_provider


def _snapshot(stamped):
    return (
        stamped.pose.position.tobytes(),
        stamped.pose.orientation.tobytes(),
        stamped.frame_id,
        stamped.stamp,
    )


def test_initial_previous_pose_is_origin_without_stamp(make_engine):
    engine, _ = make_engine(FakeDetector())
    prev = engine.previous_pose
    assert np.array_equal(prev.pose.position, np.zeros(3))
    assert np.array_equal(prev.pose.orientation, [0, 0, 0, 1])
    assert prev.stamp is None


def test_no_detection_on_either_source_skips_cycle(make_engine):
    engine, sink = make_engine(FakeDetector(default=None))
    before = _snapshot(engine.previous_pose)

    assert engine.run_cycle() is None

    assert sink.estimates == []
    assert _snapshot(engine.previous_pose) == before
    assert engine.last_report.emitted is False
    assert engine.last_report.reason == "no_detection"
    assert engine.stats.skipped["no_detection"] == 1


def test_secondary_only_queried_when_primary_finds_nothing(make_engine):
    detector = FakeDetector(per_source={"rear_cam": [[1, 2, 3]]})
    primary = FakeSource("rear_cam", "rear_cam_optical")
    secondary = FakeSource("kinect", "kinect_optical")
    engine, sink = make_engine(detector, primary=primary, secondary=secondary)

    assert engine.run_cycle() is not None
    assert detector.calls == ["rear_cam"]
    assert secondary.calls == 0
    assert engine.last_report.source_name == "rear_cam"


def test_axis_fixup_applied_once_on_primary_and_fallback(make_engine):
    primary_hit = FakeDetector(per_source={"rear_cam": [[1, 2, 3]]})
    fallback_hit = FakeDetector(per_source={"rear_cam": [None], "kinect": [[1, 2, 3]]})

    engine_a, _ = make_engine(primary_hit)
    engine_b, _ = make_engine(fallback_hit)
    a = engine_a.run_cycle()
    b = engine_b.run_cycle()

    # footprint (1, -2, -3) after the fix-up, then the translation is negated
    assert np.allclose(a.pose.position, [-1.0, 2.0, 3.0])
    assert np.allclose(b.pose.position, [-1.0, 2.0, 3.0])
    assert fallback_hit.calls == ["rear_cam", "kinect"]
    assert engine_b.last_report.source_name == "kinect"


def test_landmark_lookup_failure_leaves_state_unchanged(make_engine):
    provider = identity_provider()
    provider.remove_transform("odom", "bin_footprint")
    engine, sink = make_engine(FakeDetector(default=[1, 0, 0]), provider=provider)
    before = _snapshot(engine.previous_pose)

    assert engine.run_cycle() is None

    assert sink.estimates == []
    assert _snapshot(engine.previous_pose) == before
    assert engine.last_report.reason == "landmark_transform_unavailable"
    assert engine.last_report.number_found == 1


def test_footprint_lookup_failure_skips_cycle(make_engine):
    provider = identity_provider()
    provider.remove_transform("footprint", "rear_cam_optical")
    engine, sink = make_engine(FakeDetector(default=[1, 0, 0]), provider=provider)

    assert engine.run_cycle() is None
    assert engine.last_report.reason == "footprint_transform_unavailable"
    assert engine.previous_pose.stamp is None


def test_derived_pose_matches_landmark_round_trip(make_engine):
    t_lo = RigidTransform([5.0, 1.0, 0.0])
    t_cl = RigidTransform([2.0, 0.5, 0.3])
    # the detector reports the camera-to-landmark offset before the Y/Z fix-up
    observed = [t_cl.translation[0], -t_cl.translation[1], -t_cl.translation[2]]
    engine, _ = make_engine(FakeDetector(default=observed), provider=identity_provider(t_lo))

    estimate = engine.run_cycle()
    expected = compose(t_lo, invert(t_cl))

    assert np.allclose(estimate.pose.position, expected.translation, atol=1e-9)
    assert np.allclose(estimate.pose.orientation, expected.rotation, atol=1e-9)


def test_estimate_metadata_and_covariances(make_engine):
    observed = Pose([0.4, -0.1, 1.2], from_roll_pitch_yaw(0.2, -0.1, 0.7))
    primary = FakeSource("rear_cam", "rear_cam_optical", stamps=[42.5])
    engine, sink = make_engine(FakeDetector(default=observed), primary=primary)

    estimate = engine.run_cycle()

    assert sink.estimates == [estimate]
    assert estimate.frame_id == "odom"
    assert estimate.child_frame_id == "footprint"
    assert estimate.stamp == 42.5
    for cov in (estimate.pose_covariance, estimate.twist_covariance):
        assert cov.shape == (6, 6)
        assert np.array_equal(np.diag(cov), np.full(6, 0.1))
        assert np.count_nonzero(cov - np.diag(np.diag(cov))) == 0
    assert engine.previous_pose.stamp == 42.5
    assert engine.previous_pose.frame_id == "camera_link"


def test_first_estimate_has_zero_twist_then_velocity_follows(make_engine):
    detector = FakeDetector(per_source={"rear_cam": [[1, 0, 0], [0, 0, 0]]})
    primary = FakeSource("rear_cam", "rear_cam_optical", stamps=[10.0, 11.0])
    engine, sink = make_engine(detector, primary=primary)

    first = engine.run_cycle()
    second = engine.run_cycle()

    assert np.array_equal(first.twist.linear, np.zeros(3))
    assert np.allclose(second.pose.position, [0.0, 0.0, 0.0])
    assert np.allclose(second.twist.linear, [1.0, 0.0, 0.0])
    assert np.allclose(second.twist.angular, [0.0, 0.0, 0.0])
    assert engine.stats.emitted == 2


def test_skipped_cycle_widens_velocity_interval(make_engine):
    detector = FakeDetector(
        per_source={"rear_cam": [[2, 0, 0], None, [0, 0, 0]], "kinect": [None]}
    )
    primary = FakeSource("rear_cam", "rear_cam_optical", stamps=[1.0, 2.0, 3.0])
    engine, sink = make_engine(detector, primary=primary)

    engine.run_cycle()
    assert engine.run_cycle() is None
    third = engine.run_cycle()

    # moved 2 units between t=1 and t=3, the skipped cycle at t=2 is ignored
    assert np.allclose(third.twist.linear, [1.0, 0.0, 0.0])


def test_unavailable_primary_falls_back_to_secondary(make_engine):
    primary = FakeSource("rear_cam", "rear_cam_optical", fail=True)
    engine, _ = make_engine(FakeDetector(default=[1, 0, 0]), primary=primary)

    assert engine.run_cycle() is not None
    assert engine.last_report.source_name == "kinect"


def test_unavailable_secondary_reports_reason(make_engine):
    secondary = FakeSource("kinect", "kinect_optical", fail=True)
    engine, sink = make_engine(FakeDetector(default=None), secondary=secondary)

    assert engine.run_cycle() is None
    assert engine.last_report.reason == "source_unavailable"


def test_emit_failure_does_not_commit(make_engine):
    class BrokenSink(RecordingSink):
        def emit(self, estimate):
            raise OSError("disk full")

    engine, _ = make_engine(FakeDetector(default=[1, 0, 0]), sink=BrokenSink())

    assert engine.run_cycle() is None
    assert engine.previous_pose.stamp is None
    assert engine.last_report.reason == "emit_failed"


def test_hung_primary_times_out_and_falls_back(make_engine):
    release = threading.Event()

    class HangingSource(FakeSource):
        def get_image(self):
            release.wait(5.0)
            return super().get_image()

    guard = CallGuard(timeout_sec=0.05)
    engine, _ = make_engine(
        FakeDetector(default=[1, 0, 0]),
        primary=HangingSource("rear_cam", "rear_cam_optical"),
        guard=guard,
    )
    try:
        t0 = time.monotonic()
        estimate = engine.run_cycle()
        assert time.monotonic() - t0 < 2.0
        assert estimate is not None
        assert engine.last_report.source_name == "kinect"
    finally:
        release.set()
        guard.close()


def test_engines_do_not_share_state(make_engine):
    engine_a, _ = make_engine(FakeDetector(default=[1, 0, 0]))
    engine_b, _ = make_engine(FakeDetector(default=None))

    engine_a.run_cycle()
    engine_b.run_cycle()

    assert engine_a.previous_pose.stamp is not None
    assert engine_b.previous_pose.stamp is None


def test_detector_error_on_primary_falls_back_to_secondary(make_engine):
    class FlakyDetector(FakeDetector):
        def detect(self, image, intrinsics):
            if image.source_name == "rear_cam":
                self.calls.append(image.source_name)
                raise RuntimeError("cv2.error: (-215:Assertion failed) solvePnP")
            return super().detect(image, intrinsics)

    detector = FlakyDetector(default=[1, 0, 0])
    engine, sink = make_engine(detector)

    estimate = engine.run_cycle()

    assert estimate is not None
    assert detector.calls == ["rear_cam", "kinect"]
    assert engine.last_report.source_name == "kinect"
    assert sink.estimates == [estimate]


def test_collaborator_errors_skip_cycle_without_state_change(make_engine):
    class BrokenSource(FakeSource):
        def get_image(self):
            raise OSError("device vanished")

    class BrokenProvider:
        def lookup_transform(self, target, source):
            raise KeyError(source)

    engine_a, sink_a = make_engine(
        FakeDetector(default=[1, 0, 0]),
        primary=BrokenSource("rear_cam", "rear_cam_optical"),
        secondary=BrokenSource("kinect", "kinect_optical"),
    )
    engine_b, sink_b = make_engine(FakeDetector(default=[1, 0, 0]), provider=BrokenProvider())
    before = _snapshot(engine_a.previous_pose)

    assert engine_a.run_cycle() is None
    assert engine_b.run_cycle() is None

    assert engine_a.last_report.reason == "collaborator_error"
    assert engine_b.last_report.reason == "collaborator_error"
    assert engine_b.last_report.number_found == 1
    assert _snapshot(engine_a.previous_pose) == before
    assert engine_b.previous_pose.stamp is None
    assert sink_a.estimates == [] and sink_b.estimates == []


def test_rotated_landmark_keeps_difference_then_negate_formula(make_engine):
    yaw_90 = from_roll_pitch_yaw(0.0, 0.0, np.pi / 2)
    t_lo = RigidTransform([4.0, 0.0, 0.0], yaw_90)
    engine, _ = make_engine(FakeDetector(default=[1, 2, 3]), provider=identity_provider(t_lo))

    estimate = engine.run_cycle()

    # footprint pose is (1, -2, -3); inv(T_LO) maps it to (-2, 3, -3), then negated
    assert np.allclose(estimate.pose.position, [2.0, -3.0, 3.0], atol=1e-9)
    assert np.allclose(estimate.pose.orientation, [0.0, 0.0, -np.sqrt(0.5), np.sqrt(0.5)], atol=1e-9)
    assert not np.allclose(estimate.pose.position, compose(t_lo, invert(RigidTransform([1, -2, -3]))).translation)
