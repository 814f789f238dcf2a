from pathlib import Path
from typing import Optional
import json

ODOMETRY_CSV = "odometry.csv"
SESSION_LOG = "session.log"


class SessionStorage:
    """
    One directory per run: ``<root>/<name>_<timestamp>/`` holding the config
    manifest, the odometry CSV, ``logs/session.log`` and a closing
    ``summary.json``.
    """

    def __init__(self, root: str, name: str = "session"):
        self.root = Path(root)
        self.name = name
        self.session_dir: Optional[Path] = None
        self.logs_dir: Optional[Path] = None

    def begin(self) -> str:
        from time import strftime
        sid = f"{self.name}_{strftime('%Y%m%d_%H%M%S')}"
        self.session_dir = self.root / sid
        self.logs_dir = self.session_dir / "logs"
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        return str(self.session_dir)

    def _require(self) -> Path:
        if self.session_dir is None:
            raise RuntimeError("session not started; call begin() first")
        return self.session_dir

    @property
    def csv_path(self) -> Path:
        return self._require() / ODOMETRY_CSV

    @property
    def log_path(self) -> Path:
        self._require()
        return self.logs_dir / SESSION_LOG

    def write_manifest(self, meta: dict):
        with open(self._require() / "config.json", "w") as fp:
            json.dump(meta, fp, indent=2)

    def write_summary(self, summary: dict):
        with open(self._require() / "summary.json", "w") as fp:
            json.dump(summary, fp, indent=2)
