import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(node)s] %(message)s"


class NodeNameFilter(logging.Filter):
    def __init__(self, node_name: str):
        super().__init__()
        self.node_name = node_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.node = self.node_name
        return True


def _tag(handler: logging.Handler, node_name: str) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(NodeNameFilter(node_name))
    return handler


def setup_logger(node_name: str, level: int = logging.INFO) -> logging.Logger:
    """Console logger ``fiducial_odom.<node_name>``; repeated calls only adjust the level."""
    logger = logging.getLogger(f"fiducial_odom.{node_name}")
    logger.setLevel(level)
    if not logger.handlers:
        logger.addHandler(_tag(logging.StreamHandler(), node_name))
    return logger


def attach_session_log(logger: logging.Logger, node_name: str, storage) -> logging.Handler:
    """Mirror ``logger`` into the session's ``logs/session.log``."""
    handler = _tag(logging.FileHandler(str(storage.log_path), encoding="utf-8"), node_name)
    logger.addHandler(handler)
    return handler


def detach_handler(logger: logging.Logger, handler: logging.Handler) -> None:
    logger.removeHandler(handler)
    handler.close()
