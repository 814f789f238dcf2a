"""Collaborator contracts consumed by the fusion engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from .odom_types import CameraImage, CameraIntrinsics, DetectionResult, OdometryEstimate, RigidTransform


class ImageSource(ABC):
    """A named camera that hands out its latest image on demand."""

    name: str = "camera"

    def start(self) -> None:
        return None

    @abstractmethod
    def get_image(self) -> CameraImage:
        """Return the latest frame; raise SourceUnavailable when there is none."""
        ...

    def stop(self) -> None:
        return None


class MarkerDetector(ABC):
    @abstractmethod
    def detect(self, image: CameraImage, intrinsics: CameraIntrinsics) -> DetectionResult: ...


class TransformProvider(ABC):
    @abstractmethod
    def lookup_transform(self, target_frame: str, source_frame: str) -> RigidTransform:
        """
        Return the transform that maps coordinates in ``source_frame`` into
        ``target_frame``. Raise TransformUnavailable when it is unknown.
        """
        ...


class OdometrySink(ABC):
    @abstractmethod
    def open(self, session_dir: Path) -> None: ...

    @abstractmethod
    def emit(self, estimate: OdometryEstimate) -> None: ...

    @abstractmethod
    def close(self) -> None: ...
