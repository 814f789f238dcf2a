"""Odometry from fiducial landmark detections on a primary/secondary camera pair."""

from .config import OdometryConfig
from .engine import EngineFrames, FusionEngine
from .worker import OdometryWorker

__all__ = ["EngineFrames", "FusionEngine", "OdometryConfig", "OdometryWorker"]
