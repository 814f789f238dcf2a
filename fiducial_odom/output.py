from __future__ import annotations

from pathlib import Path
from typing import Optional

from .interfaces import OdometrySink
from .odom_types import OdometryEstimate
from .services.csv_writer import CsvWriter
from .services.storage import ODOMETRY_CSV


class CsvOutput(OdometrySink):
    def __init__(self, filename: str = ODOMETRY_CSV):
        self.filename = filename
        self._writer: Optional[CsvWriter] = None

    def open(self, session_dir: Path) -> None:
        path = Path(session_dir) / self.filename
        self._writer = CsvWriter(str(path))
        self._writer.open()

    def emit(self, estimate: OdometryEstimate) -> None:
        if self._writer is None:
            return
        self._writer.append(estimate)

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None


class NullOutput(OdometrySink):
    def open(self, session_dir: Path) -> None:
        return None

    def emit(self, estimate: OdometryEstimate) -> None:
        return None

    def close(self) -> None:
        return None


class FanOutSink(OdometrySink):
    """Forwards every estimate to each wrapped sink in order."""

    def __init__(self, sinks: list[OdometrySink]):
        self.sinks = list(sinks)

    def open(self, session_dir: Path) -> None:
        for sink in self.sinks:
            sink.open(session_dir)

    def emit(self, estimate: OdometryEstimate) -> None:
        for sink in self.sinks:
            sink.emit(estimate)

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()


def build_outputs(kind: str) -> list[OdometrySink]:
    key = (kind or "csv").strip().lower()
    if key == "csv":
        return [CsvOutput()]
    if key in {"null", "none"}:
        return [NullOutput()]
    raise ValueError(f"Unknown output kind: {kind!r}")
