from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional


@dataclass
class SourceConfig:
    """Configuration for one image source (primary or secondary camera)."""

    name: str = "camera"
    type: str = "v4l2"  # "v4l2", "synthetic"
    device: int | str = 0
    fps: int = 15
    width: int = 1280
    height: int = 720
    calibration_path: Optional[str] = None  # None -> pinhole guess from width/height
    frame_id: str = "camera_optical"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DetectorConfig:
    aruco_dict: str = "4x4_50"
    marker_length_m: float = 0.2
    marker_id: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StaticTransformConfig:
    target: str
    source: str
    translation: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    rotation: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0, 1.0])  # x, y, z, w

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OdometryConfig:
    node_name: str = "fiducial_odom"
    camera_frame: str = "camera_link"
    footprint_frame: str = "footprint"
    landmark_frame: str = "bin_footprint"
    odometry_frame: str = "odom"
    rate_hz: float = 5.0
    debug: bool = False
    call_timeout_sec: float = 1.0
    startup_attempts: int = 5
    startup_backoff_sec: float = 0.5
    startup_backoff_max_sec: float = 8.0
    velocity_method: str = "rpy"  # "rpy", "logmap"
    session_root: str = "data/sessions"
    duration_sec: Optional[float] = None
    max_cycles: Optional[int] = None
    output: str = "csv"  # "csv", "null"
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    primary: SourceConfig = field(
        default_factory=lambda: SourceConfig(name="rear_cam", device=0, frame_id="rear_cam_optical")
    )
    secondary: SourceConfig = field(
        default_factory=lambda: SourceConfig(name="kinect", device=1, frame_id="kinect_optical")
    )
    static_transforms: list[StaticTransformConfig] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "OdometryConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def validate(self) -> "OdometryConfig":
        if self.rate_hz <= 0:
            raise ValueError("rate_hz must be positive")
        if self.startup_attempts < 1:
            raise ValueError("startup_attempts must be at least 1")
        if self.detector.marker_length_m <= 0:
            raise ValueError("detector.marker_length_m must be positive")
        for frame in (self.camera_frame, self.footprint_frame, self.landmark_frame, self.odometry_frame):
            if not frame:
                raise ValueError("frame ids must be non-empty")
        return self


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def _device(value: Any) -> int | str:
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        key = value.strip().lower()
        if key in {"1", "true", "yes", "on"}:
            return True
        if key in {"0", "false", "no", "off", ""}:
            return False
    raise ValueError(f"expected a boolean, got {value!r}")


def _source_from(raw: Any, base: SourceConfig) -> SourceConfig:
    if raw is None:
        return base
    if not isinstance(raw, dict):
        raise ValueError("source config must be a mapping")
    src = SourceConfig(**base.as_dict())
    src.name = str(raw.get("name", src.name))
    src.type = str(raw.get("type", src.type))
    src.device = _device(raw.get("device", src.device))
    src.fps = int(raw.get("fps", src.fps))
    src.width = int(raw.get("width", src.width))
    src.height = int(raw.get("height", src.height))
    calib = raw.get("calibration_path", src.calibration_path)
    src.calibration_path = str(calib) if calib is not None else None
    src.frame_id = str(raw.get("frame_id", src.frame_id))
    return src


def _static_transforms_from(raw: Any) -> list[StaticTransformConfig]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("static_transforms must be a list")
    out = []
    for entry in raw:
        if not isinstance(entry, dict) or "target" not in entry or "source" not in entry:
            raise ValueError("each static transform needs 'target' and 'source'")
        translation = [float(v) for v in entry.get("translation", [0.0, 0.0, 0.0])]
        rotation = [float(v) for v in entry.get("rotation", [0.0, 0.0, 0.0, 1.0])]
        if len(translation) != 3 or len(rotation) != 4:
            raise ValueError("static transform needs 3 translation and 4 rotation values")
        out.append(StaticTransformConfig(str(entry["target"]), str(entry["source"]), translation, rotation))
    return out


def config_from_dict(raw: dict[str, Any]) -> OdometryConfig:
    cfg = OdometryConfig()
    cfg.node_name = str(raw.get("node_name", cfg.node_name))
    cfg.camera_frame = str(raw.get("camera_frame", cfg.camera_frame))
    cfg.footprint_frame = str(raw.get("footprint_frame", cfg.footprint_frame))
    cfg.landmark_frame = str(raw.get("landmark_frame", raw.get("bin_frame", cfg.landmark_frame)))
    cfg.odometry_frame = str(raw.get("odometry_frame", cfg.odometry_frame))
    cfg.rate_hz = float(raw.get("rate_hz", raw.get("rate", cfg.rate_hz)))
    cfg.debug = _flag(raw.get("debug", cfg.debug))
    cfg.call_timeout_sec = float(raw.get("call_timeout_sec", cfg.call_timeout_sec))
    cfg.startup_attempts = int(raw.get("startup_attempts", cfg.startup_attempts))
    cfg.startup_backoff_sec = float(raw.get("startup_backoff_sec", cfg.startup_backoff_sec))
    cfg.startup_backoff_max_sec = float(raw.get("startup_backoff_max_sec", cfg.startup_backoff_max_sec))
    cfg.velocity_method = str(raw.get("velocity_method", cfg.velocity_method))
    cfg.session_root = str(raw.get("session_root", cfg.session_root))
    cfg.duration_sec = raw.get("duration_sec", cfg.duration_sec)
    if cfg.duration_sec is not None:
        cfg.duration_sec = float(cfg.duration_sec)
    cfg.max_cycles = raw.get("max_cycles", cfg.max_cycles)
    if cfg.max_cycles is not None:
        cfg.max_cycles = int(cfg.max_cycles)
    cfg.output = str(raw.get("output", cfg.output))

    det_raw = raw.get("detector")
    if det_raw is not None:
        if not isinstance(det_raw, dict):
            raise ValueError("detector config must be a mapping")
        det = DetectorConfig()
        det.aruco_dict = str(det_raw.get("aruco_dict", det.aruco_dict))
        det.marker_length_m = float(det_raw.get("marker_length_m", det.marker_length_m))
        marker_id = det_raw.get("marker_id", det.marker_id)
        det.marker_id = int(marker_id) if marker_id is not None else None
        cfg.detector = det

    cfg.primary = _source_from(raw.get("primary"), cfg.primary)
    cfg.secondary = _source_from(raw.get("secondary"), cfg.secondary)
    cfg.static_transforms = _static_transforms_from(raw.get("static_transforms"))
    return cfg.validate()


def load_config(path: str | Path) -> OdometryConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    return config_from_dict(raw)
