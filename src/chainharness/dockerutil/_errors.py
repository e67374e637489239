"""Error taxonomy for container jobs.

Everything raised by the job engine derives from :class:`JobError` so callers
can catch engine failures as a group. A non-zero exit code is *not* an error
at this layer; :class:`NonZeroExitError` exists for callers that decide it is.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chainharness.types import JobResult


class JobError(Exception):
    """Base class for container job failures."""


class PullError(JobError):
    """The image could not be made present locally."""


class InvalidSpecError(JobError, ValueError):
    """A run request failed validation; no spec was produced."""


class CreateError(JobError):
    """The engine refused to create the container. Nothing exists to clean up."""


class StartError(JobError):
    """The container was created but could not be started."""


class StartRaceError(StartError):
    """The container was auto-removed before start could observe it.

    Distinct from a genuine start failure: the container is already gone and
    retrying the start is pointless.
    """


class WaitError(JobError):
    """The engine failed while reporting the container's terminal state."""


class CanceledError(JobError):
    """The job's deadline expired before the container reached a terminal state."""


class OutputTruncatedError(JobError):
    """Captured output exceeded ``docker.max_output_size``; ``result`` holds what was kept."""

    def __init__(self, message: str, result: JobResult) -> None:
        super().__init__(message)
        self.result = result


class NonZeroExitError(JobError):
    """Raised (or attached to a result) by callers that treat non-zero exit as failure."""

    def __init__(self, message: str, exit_code: int, stderr: bytes = b"") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class CleanupWarning(UserWarning):
    """Category of non-fatal cleanup failures. Logged, never raised."""
