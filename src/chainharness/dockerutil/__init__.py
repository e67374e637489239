"""Ephemeral container jobs — run one command in one throwaway container.

This package is split into focused submodules:
  _labels   — cleanup label and naming conventions
  _strings  — container name / hostname / port helpers
  _errors   — error taxonomy (JobError and subclasses)
  _engine   — ContainerEngine protocol and engine errors
  _docker   — DockerEngine, the docker CLI implementation
  _images   — ImageResolver, the per-process image presence cache
  _spec     — ContainerOptions and build_container_spec
  _waiter   — completion waiter (wait vs. auto-removal race)
  _cleanup  — best-effort container removal
  _runner   — JobRunner, the create/start/wait/cleanup sequence
  _image    — Image, a runner bound to one image and test scope
  _files    — FileRetriever / FileWriter for volume contents
  _volume   — set_volume_owner
  _sweep    — docker_setup and the label-based sweep
"""

# Re-export public API so that `from chainharness.dockerutil import X` works.
# Private helpers (_xxx) should be imported from their submodules directly.

from chainharness.dockerutil._cleanup import cleanup_container, run_uncancelled
from chainharness.dockerutil._docker import DockerEngine, run_docker
from chainharness.dockerutil._engine import ContainerEngine, EngineError, EngineNotFoundError
from chainharness.dockerutil._errors import (
    CanceledError,
    CleanupWarning,
    CreateError,
    InvalidSpecError,
    JobError,
    NonZeroExitError,
    OutputTruncatedError,
    PullError,
    StartError,
    StartRaceError,
    WaitError,
)
from chainharness.dockerutil._files import FileRetriever, FileWriter
from chainharness.dockerutil._image import Image
from chainharness.dockerutil._images import ImageResolver
from chainharness.dockerutil._labels import CLEANUP_LABEL, DOCKER_PREFIX, MANAGED_LABEL
from chainharness.dockerutil._runner import JobRunner
from chainharness.dockerutil._spec import ContainerOptions, build_container_spec
from chainharness.dockerutil._strings import (
    condense_host_name,
    get_host_port,
    rand_lower_case_letter_string,
    root_user,
    sanitize_container_name,
)
from chainharness.dockerutil._sweep import SweepReport, docker_setup, sweep
from chainharness.dockerutil._volume import set_volume_owner
from chainharness.dockerutil._waiter import WaitOutcome, wait_for_completion

__all__ = [
    "CLEANUP_LABEL",
    "DOCKER_PREFIX",
    "MANAGED_LABEL",
    "CanceledError",
    "CleanupWarning",
    "ContainerEngine",
    "ContainerOptions",
    "CreateError",
    "DockerEngine",
    "EngineError",
    "EngineNotFoundError",
    "FileRetriever",
    "FileWriter",
    "Image",
    "ImageResolver",
    "InvalidSpecError",
    "JobError",
    "JobRunner",
    "NonZeroExitError",
    "OutputTruncatedError",
    "PullError",
    "StartError",
    "StartRaceError",
    "SweepReport",
    "WaitError",
    "WaitOutcome",
    "build_container_spec",
    "cleanup_container",
    "condense_host_name",
    "docker_setup",
    "get_host_port",
    "rand_lower_case_letter_string",
    "root_user",
    "run_docker",
    "run_uncancelled",
    "sanitize_container_name",
    "set_volume_owner",
    "sweep",
    "wait_for_completion",
]
