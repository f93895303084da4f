"""
Exception types for checkpointed builds.

None of these are retried: each one fails the build step that raised it.
"""


class CheckpointBuildError(Exception):
    """Base class for all checkpoint build failures."""
    pass


class CaptureError(CheckpointBuildError):
    """Raised when a snapshot copy fails during capture."""
    pass


class DiffComputationError(CheckpointBuildError):
    """Raised when the source difference cannot be computed or parsed."""
    pass


class ReconciliationError(CheckpointBuildError):
    """Raised when the outputs snapshot cannot be restored into the tree."""
    pass


class PatchConflictError(CheckpointBuildError):
    """Raised when a source difference does not match the tree it is applied to."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class BuildCommandError(CheckpointBuildError):
    """Raised when an external build step exits with a failure status."""

    def __init__(self, phase: str, returncode: int, command: str = ""):
        super().__init__(f"{phase} step failed with exit status {returncode}: {command}")
        self.phase = phase
        self.returncode = returncode
        self.command = command
