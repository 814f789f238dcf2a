from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .capture import OpenCVImageSource, SyntheticImageSource
from .config import OdometryConfig, SourceConfig
from .detect import ArucoMarkerDetector
from .engine import EngineFrames, FusionEngine
from .errors import SourceNotReady, SourceUnavailable, StartupCancelled
from .frames import StaticTransformProvider
from .guard import CallGuard
from .interfaces import ImageSource, MarkerDetector, OdometrySink, TransformProvider
from .logging_utils import attach_session_log, detach_handler, setup_logger
from .odom_types import RigidTransform
from .output import CsvOutput, FanOutSink, build_outputs
from .services.calib import default_intrinsics, load_intrinsics
from .services.storage import SessionStorage
from .velocity import build_velocity_estimator


@dataclass
class RunSummary:
    session_path: str
    cycles: int
    emitted: int
    skipped: dict = field(default_factory=dict)
    avg_hz: float = 0.0
    csv_path: str = ""
    log_path: str = ""


def build_source(cfg: SourceConfig) -> ImageSource:
    if cfg.calibration_path:
        intrinsics = load_intrinsics(cfg.calibration_path)
    else:
        intrinsics = default_intrinsics(cfg.width, cfg.height)

    kind = cfg.type.strip().lower()
    if kind == "synthetic":
        return SyntheticImageSource(cfg.name, intrinsics, cfg.frame_id, cfg.width, cfg.height)
    if kind == "v4l2":
        return OpenCVImageSource(cfg.name, cfg.device, intrinsics, cfg.frame_id, cfg.fps, cfg.width, cfg.height)
    raise ValueError(f"Unknown source type: {cfg.type!r}")


def build_transform_provider(config: OdometryConfig) -> StaticTransformProvider:
    return StaticTransformProvider(
        (st.target, st.source, RigidTransform(st.translation, st.rotation))
        for st in config.static_transforms
    )


def wait_until_ready(
    source: ImageSource,
    attempts: int,
    base_delay: float,
    max_delay: float,
    logger: logging.Logger,
    stop_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Start ``source`` and pull one frame, retrying with exponential backoff.

    Raises:
        SourceNotReady: once ``attempts`` tries have failed
        StartupCancelled: ``stop_event`` was set before the source answered
    """
    delay = base_delay
    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        if stop_event is not None and stop_event.is_set():
            raise StartupCancelled(f"stop requested while waiting for image source {source.name}")
        try:
            source.start()
            source.get_image()
            logger.info("image source %s ready (attempt %d)", source.name, attempt)
            return
        except SourceUnavailable as e:
            last_error = e
            logger.warning("image source %s not ready (attempt %d/%d): %s", source.name, attempt, attempts, e)
        if attempt < attempts:
            sleep(delay)
            delay = min(max_delay, delay * 2.0)
    raise SourceNotReady(f"image source {source.name} not ready after {attempts} attempts: {last_error}")


class OdometryWorker:
    def __init__(
        self,
        config: OdometryConfig,
        logger=None,
        outputs: Optional[list[OdometrySink]] = None,
        primary: Optional[ImageSource] = None,
        secondary: Optional[ImageSource] = None,
        detector: Optional[MarkerDetector] = None,
        transforms: Optional[TransformProvider] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config
        level = logging.DEBUG if config.debug else logging.INFO
        self.logger = logger or setup_logger(config.node_name, level)
        self.outputs = outputs if outputs is not None else build_outputs(config.output)
        self.primary = primary
        self.secondary = secondary
        self.detector = detector
        self.transforms = transforms
        self.ready = False
        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait

    def stop(self) -> None:
        self._stop_event.set()

    def _build(self) -> FusionEngine:
        cfg = self.config
        self.primary = self.primary or build_source(cfg.primary)
        self.secondary = self.secondary or build_source(cfg.secondary)
        self.detector = self.detector or ArucoMarkerDetector(
            cfg.detector.aruco_dict, cfg.detector.marker_length_m, cfg.detector.marker_id
        )
        self.transforms = self.transforms or build_transform_provider(cfg)

        frames = EngineFrames(cfg.camera_frame, cfg.footprint_frame, cfg.landmark_frame, cfg.odometry_frame)
        guard = CallGuard(cfg.call_timeout_sec, logger=self.logger)
        return FusionEngine(
            self.primary,
            self.secondary,
            self.detector,
            self.transforms,
            FanOutSink(self.outputs),
            frames=frames,
            velocity=build_velocity_estimator(cfg.velocity_method),
            guard=guard,
            logger=self.logger,
            debug=cfg.debug,
        )

    def _startup(self) -> None:
        cfg = self.config
        for source in (self.primary, self.secondary):
            wait_until_ready(
                source,
                cfg.startup_attempts,
                cfg.startup_backoff_sec,
                cfg.startup_backoff_max_sec,
                self.logger,
                self._stop_event,
                self._sleep,
            )
        self.ready = True

    def _loop(self, engine: FusionEngine, t0: float) -> None:
        period = 1.0 / self.config.rate_hz
        while not self._stop_event.is_set():
            if self.config.duration_sec and (time.time() - t0) >= self.config.duration_sec:
                break
            if self.config.max_cycles and engine.stats.cycles >= self.config.max_cycles:
                break

            started = time.time()
            try:
                estimate = engine.run_cycle()
            except Exception as e:
                self.logger.warning("cycle %d failed: %r", engine.stats.cycles, e)
                engine.stats.skipped["cycle_error"] += 1
                estimate = None
            if estimate is not None:
                report = engine.last_report
                self.logger.debug(
                    "cycle=%d source=%s markers=%d",
                    engine.stats.cycles,
                    report.source_name,
                    report.number_found,
                )

            remaining = period - (time.time() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)

    def _shutdown(self, engine: Optional[FusionEngine]) -> None:
        if engine is not None:
            engine.guard.close()
        for source in (self.primary, self.secondary):
            if source is None:
                continue
            try:
                source.stop()
            except Exception as e:
                self.logger.warning("stopping source %s failed: %s", source.name, e)

        for out in self.outputs:
            try:
                out.close()
            except Exception as e:
                self.logger.warning("closing output failed: %s", e)

    def run(self) -> RunSummary:
        storage = SessionStorage(self.config.session_root, name=f"{self.config.node_name}_session")
        session_path = storage.begin()
        storage.write_manifest(self.config.as_dict())
        file_handler = attach_session_log(self.logger, self.config.node_name, storage)
        try:
            return self._run_session(storage, session_path)
        finally:
            detach_handler(self.logger, file_handler)

    def _run_session(self, storage: SessionStorage, session_path: str) -> RunSummary:
        engine: Optional[FusionEngine] = None
        t0 = time.time()
        try:
            self.logger.info("session started: %s", session_path)
            self.logger.info("config: %s", self.config.as_dict())

            engine = self._build()
            for out in self.outputs:
                out.open(Path(storage.session_dir))

            try:
                self._startup()
            except StartupCancelled as e:
                self.logger.info("%s", e)
            else:
                self.logger.info("Fiducial odometry connected to image sources")
                self._loop(engine, t0)
        finally:
            self._shutdown(engine)

        elapsed = max(1e-6, time.time() - t0)
        stats = engine.stats
        csv_path = storage.csv_path if any(isinstance(o, CsvOutput) for o in self.outputs) else ""
        summary = RunSummary(
            str(session_path),
            stats.cycles,
            stats.emitted,
            dict(stats.skipped),
            stats.cycles / elapsed,
            str(csv_path),
            str(storage.log_path),
        )
        self.logger.info(
            "summary cycles=%d emitted=%d skipped=%s avg_hz=%.2f",
            summary.cycles,
            summary.emitted,
            summary.skipped,
            summary.avg_hz,
        )
        storage.write_summary(asdict(summary))
        return summary
