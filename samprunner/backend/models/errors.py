"""
Error types raised by the runner backend.

Configuration writes are the one exception to "errors propagate": a
``ConfigWriteError`` is produced by the registry handler, logged there and
never raised to callers.
"""

from pathlib import Path
from typing import Iterable, List, Optional


class RunnerError(Exception):
    """Base class for all runner errors."""


class SetupError(RunnerError):
    """Prefix bootstrap failed."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class ConfigWriteError(RunnerError):
    """A single configuration entry could not be written or deleted."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class LaunchError(RunnerError):
    """The supervised process could not be started."""


class AlreadyRunningError(LaunchError):
    """A session is already launching or running."""


class SpawnFailedError(LaunchError):
    pass


class ExecutableNotFoundError(LaunchError):
    def __init__(self, path: Path):
        super().__init__(f"Executable not found: {path}")
        self.path = path


class DownloadError(RunnerError):
    """Network failure while fetching a file."""


class DownloadTooSmallError(DownloadError):
    """Downloaded payload is below the minimum size and treated as corrupt."""

    def __init__(self, size: int, minimum: int):
        super().__init__(f"Downloaded file is too small ({size} bytes, expected at least {minimum})")
        self.size = size
        self.minimum = minimum


class VerificationError(RunnerError):
    """Required files are missing after an installation step."""

    def __init__(self, message: str, missing: Iterable[str] = ()):
        super().__init__(message)
        self.missing: List[str] = list(missing)


class PipelineError(RunnerError):
    """
    A pipeline stage failed.

    ``reached`` distinguishes a stage that could not run (retry it) from one
    that ran but whose result failed verification (re-check the source files).
    """

    def __init__(self, stage, reason: str, reached: bool = False, cause: Optional[BaseException] = None):
        super().__init__(reason)
        self.stage = stage
        self.reason = reason
        self.reached = reached
        self.cause = cause

    @property
    def stage_name(self) -> str:
        return getattr(self.stage, "label", str(self.stage))

    @property
    def user_message(self) -> str:
        if self.reached:
            return (f"{self.stage_name} finished but verification failed: {self.reason}. "
                    f"Check the source files and try again.")
        return f"Could not complete {self.stage_name}: {self.reason}. Please retry."

    def __str__(self) -> str:
        return self.user_message
