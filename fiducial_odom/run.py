import argparse
import signal
import sys

from .config import OdometryConfig, load_config
from .errors import SourceNotReady
from .worker import OdometryWorker


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Publish odometry from fiducial landmark detections")
    ap.add_argument("--config", required=True, help="Path to JSON/YAML config")

    ap.add_argument("--node-name")
    ap.add_argument("--camera-frame")
    ap.add_argument("--footprint-frame")
    ap.add_argument("--landmark-frame")
    ap.add_argument("--odometry-frame")
    ap.add_argument("--rate", type=float, help="Cycle rate in Hz")
    ap.add_argument("--debug", action="store_true")
    ap.add_argument("--timeout", type=float, help="Per-call collaborator timeout (sec)")
    ap.add_argument("--velocity", choices=["rpy", "logmap"])
    ap.add_argument("--out")
    ap.add_argument("--output", choices=["csv", "null"])
    ap.add_argument("--duration", type=float)
    ap.add_argument("--max-cycles", type=int)

    return ap


def _apply_args(cfg: OdometryConfig, args: argparse.Namespace) -> OdometryConfig:
    cfg.apply_overrides(
        node_name=args.node_name,
        camera_frame=args.camera_frame,
        footprint_frame=args.footprint_frame,
        landmark_frame=args.landmark_frame,
        odometry_frame=args.odometry_frame,
        rate_hz=args.rate,
        debug=args.debug if args.debug else None,
        call_timeout_sec=args.timeout,
        velocity_method=args.velocity,
        session_root=args.out,
        output=args.output,
        duration_sec=args.duration,
        max_cycles=args.max_cycles,
    )
    return cfg.validate()


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    cfg = _apply_args(cfg, args)

    worker = OdometryWorker(cfg)

    def _handle_signal(_sig, _frame):
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        summary = worker.run()
    except SourceNotReady as e:
        worker.logger.error("%s", e)
        return 2
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
