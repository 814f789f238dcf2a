import csv
import io

import numpy as np


class CsvWriter:
    HEADER = [
        "stamp",
        "frame_id", "child_frame_id",
        "x", "y", "z",
        "qx", "qy", "qz", "qw",
        "vx", "vy", "vz",
        "wx", "wy", "wz",
        "pose_cov_diag", "twist_cov_diag",
    ]

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        self._opened = False
        self._fh = None
        self._w = None

    def open(self):
        self._fh = open(self.csv_path, "w", newline="")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)
        self._opened = True

    @staticmethod
    def _vec(vec, n):
        if vec is None:
            return [float("nan")] * n
        a = np.array(vec, dtype=np.float64).reshape(-1).tolist()
        if len(a) < n:
            a += [float("nan")] * (n - len(a))
        return a[:n]

    @staticmethod
    def _diag(cov):
        return " ".join(f"{v:g}" for v in np.diag(np.asarray(cov)).tolist())

    @classmethod
    def _row(cls, estimate):
        return [
            f"{estimate.stamp:.6f}",
            estimate.frame_id, estimate.child_frame_id,
            *cls._vec(estimate.pose.position, 3),
            *cls._vec(estimate.pose.orientation, 4),
            *cls._vec(estimate.twist.linear, 3),
            *cls._vec(estimate.twist.angular, 3),
            cls._diag(estimate.pose_covariance),
            cls._diag(estimate.twist_covariance),
        ]

    def append(self, estimate):
        self._w.writerow(self._row(estimate))
        self._fh.flush()

    @classmethod
    def to_csv_line(cls, estimate):
        buf = io.StringIO()
        w = csv.writer(buf)
        w.writerow(cls._row(estimate))
        return buf.getvalue().strip()

    def close(self):
        if self._opened and self._fh:
            self._fh.close()
            self._opened = False
            self._fh = None
            self._w = None
