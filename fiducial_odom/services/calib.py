import cv2, numpy as np
from pathlib import Path
from typing import Tuple

from ..odom_types import CameraIntrinsics


def load_calib(path: str) -> Tuple[np.ndarray, np.ndarray, tuple[int, int]]:
    if not Path(path).exists():
        raise FileNotFoundError(f"Calibration not found: {path}")
    fs = cv2.FileStorage(path, cv2.FILE_STORAGE_READ)
    K = fs.getNode("camera_matrix").mat()
    dist = fs.getNode("dist_coeffs").mat()
    w = int(fs.getNode("image_width").real()); h = int(fs.getNode("image_height").real())
    fs.release()
    return K, dist, (w, h)


def load_intrinsics(path: str) -> CameraIntrinsics:
    K, dist, (w, h) = load_calib(path)
    return CameraIntrinsics(np.asarray(K, dtype=np.float64), np.asarray(dist, dtype=np.float64), w, h)


def default_intrinsics(width: int, height: int, fov_scale: float = 1.0) -> CameraIntrinsics:
    """Pinhole guess (focal length ~ image width, centered principal point), no distortion."""
    f = float(width) * fov_scale
    K = np.array([[f, 0.0, width / 2.0], [0.0, f, height / 2.0], [0.0, 0.0, 1.0]])
    return CameraIntrinsics(K, np.zeros((5, 1)), int(width), int(height))
