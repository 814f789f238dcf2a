class FiducialOdomError(Exception):
    """Base class for errors raised by fiducial_odom collaborators."""


class SourceUnavailable(FiducialOdomError):
    """An image source could not deliver a frame."""


class TransformUnavailable(FiducialOdomError):
    """No transform is known between the requested frames."""

    def __init__(self, target_frame: str, source_frame: str, detail: str = ""):
        msg = f"no transform {target_frame} <- {source_frame}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.target_frame = target_frame
        self.source_frame = source_frame


class CollaboratorTimeout(FiducialOdomError):
    """A blocking collaborator call did not return within its time budget."""

    def __init__(self, call_name: str, timeout_sec: float):
        super().__init__(f"{call_name} timed out after {timeout_sec:.3f}s")
        self.call_name = call_name
        self.timeout_sec = timeout_sec


class SourceNotReady(FiducialOdomError):
    """Startup gave up waiting for an image source."""


class StartupCancelled(FiducialOdomError):
    """Stop was requested while waiting for an image source."""
