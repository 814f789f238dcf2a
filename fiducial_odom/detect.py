from __future__ import annotations

from typing import Any, Optional

import cv2
import numpy as np

from .interfaces import MarkerDetector
from .odom_types import CameraImage, CameraIntrinsics, DetectionResult, Pose, StampedPose
from .transforms import rvec_tvec_to_transform


def get_dict(name: str):
    """
    ArUco-only dictionary resolver (no AprilTag).
    Falls back to 4x4_50 if name not recognized.
    Works on OpenCV 4.12 (getPredefinedDictionary) and older (Dictionary_get).
    """
    key = (name or "").strip().lower()
    if key.startswith("dict_"):
        key = key[5:]
    table = {
        "4x4_50": cv2.aruco.DICT_4X4_50,
        "4x4_100": cv2.aruco.DICT_4X4_100,
        "4x4_250": cv2.aruco.DICT_4X4_250,
        "5x5_50": cv2.aruco.DICT_5X5_50,
        "5x5_100": cv2.aruco.DICT_5X5_100,
        "5x5_250": cv2.aruco.DICT_5X5_250,
        "6x6_50": cv2.aruco.DICT_6X6_50,
        "6x6_100": cv2.aruco.DICT_6X6_100,
        "6x6_250": cv2.aruco.DICT_6X6_250,
        "7x7_50": cv2.aruco.DICT_7X7_50,
        "7x7_100": cv2.aruco.DICT_7X7_100,
        "7x7_250": cv2.aruco.DICT_7X7_250,
    }
    code = table.get(key, cv2.aruco.DICT_4X4_50)

    if hasattr(cv2.aruco, "getPredefinedDictionary"):  # OpenCV >= 4.7
        return cv2.aruco.getPredefinedDictionary(code)
    return cv2.aruco.Dictionary_get(code)


def _make_params():
    """Create detector parameters across OpenCV versions."""
    if hasattr(cv2.aruco, "DetectorParameters_create"):
        return cv2.aruco.DetectorParameters_create()
    return cv2.aruco.DetectorParameters()


def marker_object_points(marker_length_m: float) -> np.ndarray:
    """Marker corners in the marker frame, in ArUco corner order (TL, TR, BR, BL)."""
    h = marker_length_m / 2.0
    return np.array(
        [[-h, h, 0.0], [h, h, 0.0], [h, -h, 0.0], [-h, -h, 0.0]],
        dtype=np.float64,
    )


class ArucoMarkerDetector(MarkerDetector):
    """
    Detect ArUco markers and estimate the pose of the best one.

    The best marker is ``marker_id`` when configured (other ids are ignored
    entirely), otherwise the marker closest to the camera. The returned pose
    is the marker in the camera's optical frame, stamped with the image time.
    """

    def __init__(self, dict_name: str = "4x4_50", marker_length_m: float = 0.035, marker_id: Optional[int] = None):
        self.dictionary = get_dict(dict_name)
        self.params = _make_params()
        self.marker_length_m = marker_length_m
        self.marker_id = marker_id
        self._detector: Any = None
        if hasattr(cv2.aruco, "ArucoDetector"):
            self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)

    def _detect_corners(self, image):
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if self._detector is not None:
            corners, ids, _rej = self._detector.detectMarkers(image)
        else:
            corners, ids, _rej = cv2.aruco.detectMarkers(image, self.dictionary, parameters=self.params)
        if ids is None or len(ids) == 0:
            return []
        return [(int(mid), corners[i]) for i, mid in enumerate(ids.flatten())]

    def _solve(self, corners, intrinsics: CameraIntrinsics):
        img_pts = np.asarray(corners, dtype=np.float64).reshape(4, 2)
        ok, rvec, tvec = cv2.solvePnP(
            marker_object_points(self.marker_length_m),
            img_pts,
            np.asarray(intrinsics.camera_matrix, dtype=np.float64),
            np.asarray(intrinsics.dist_coeffs, dtype=np.float64),
            flags=cv2.SOLVEPNP_IPPE_SQUARE,
        )
        if not ok:
            return None
        return rvec, tvec

    def detect(self, image: CameraImage, intrinsics: CameraIntrinsics) -> DetectionResult:
        found = self._detect_corners(image.image)
        if self.marker_id is not None:
            found = [(mid, c) for mid, c in found if mid == self.marker_id]
        if not found or self.marker_length_m <= 0:
            return DetectionResult.empty(image.source_name)

        best = None
        for mid, corners in found:
            solved = self._solve(corners, intrinsics)
            if solved is None:
                continue
            rvec, tvec = solved
            distance = float(np.linalg.norm(tvec))
            if best is None or distance < best[0]:
                best = (distance, mid, rvec, tvec)

        if best is None:
            return DetectionResult.empty(image.source_name)

        _, mid, rvec, tvec = best
        t = rvec_tvec_to_transform(rvec, tvec)
        pose = StampedPose(Pose(t.translation, t.rotation), image.frame_id, image.stamp)
        return DetectionResult(len(found), pose, mid, image.source_name)
