"""Image sources for the fusion engine.

- Device cameras (USB via V4L2, or any path/URL cv2.VideoCapture accepts)
- Synthetic blank frames for dry runs
"""

from __future__ import annotations

import re
import time
from typing import Any, Callable, Optional

import cv2
import numpy as np

from .errors import SourceUnavailable
from .interfaces import ImageSource
from .odom_types import CameraImage, CameraIntrinsics


class OpenCVImageSource(ImageSource):
    """Camera read through cv2.VideoCapture; each get_image() grabs the newest frame."""

    def __init__(
        self,
        name: str,
        device: int | str,
        intrinsics: CameraIntrinsics,
        frame_id: str,
        fps: int = 15,
        width: int = 1920,
        height: int = 1080,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.device = device
        self.intrinsics = intrinsics
        self.frame_id = frame_id
        self.fps = fps
        self.width = width
        self.height = height
        self.cap: Any = None
        self._clock = clock

    def start(self) -> None:
        if self.cap is not None and self.cap.isOpened():
            return
        if isinstance(self.device, int):
            self.cap = cv2.VideoCapture(self.device, cv2.CAP_V4L2)
        else:
            dev_str = str(self.device)
            match = re.match(r"^/dev/video(\d+)$", dev_str)
            if match:
                self.cap = cv2.VideoCapture(int(match.group(1)), cv2.CAP_V4L2)
            else:
                self.cap = cv2.VideoCapture(dev_str)

        self.cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*"MJPG"))
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)
        # Keep only the newest frame so each cycle sees a fresh image.
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        if not self.cap.isOpened():
            self.cap.release()
            self.cap = None
            raise SourceUnavailable(f"Failed to open camera {self.name}: {self.device}")

    def get_image(self) -> CameraImage:
        if self.cap is None:
            raise SourceUnavailable(f"camera {self.name} not started")
        ok, img = self.cap.read()
        if not ok or img is None:
            raise SourceUnavailable(f"camera {self.name} returned no frame")
        return CameraImage(img, self.intrinsics, self._clock(), self.frame_id, self.name)

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class SyntheticImageSource(ImageSource):
    """Blank frames at a fixed size; never sees a marker unless an image is injected."""

    def __init__(
        self,
        name: str,
        intrinsics: CameraIntrinsics,
        frame_id: str,
        width: int = 640,
        height: int = 480,
        image: Optional[np.ndarray] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.intrinsics = intrinsics
        self.frame_id = frame_id
        self.width = width
        self.height = height
        self.image = image
        self._clock = clock
        self.started = False

    def start(self) -> None:
        self.started = True

    def get_image(self) -> CameraImage:
        if not self.started:
            raise SourceUnavailable(f"synthetic source {self.name} not started")
        img = self.image
        if img is None:
            img = np.full((self.height, self.width, 3), 255, dtype=np.uint8)
        return CameraImage(img, self.intrinsics, self._clock(), self.frame_id, self.name)

    def stop(self) -> None:
        self.started = False
