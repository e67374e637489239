"""Data models for chainharness."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType


def _frozen_mapping(values: Mapping[str, str] | None = None) -> Mapping[str, str]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True)
class ImageRef:
    """A container image: repository plus tag (or digest)."""

    repository: str
    version: str = "latest"

    @classmethod
    def parse(cls, ref: str) -> ImageRef:
        """Split ``repo:tag`` / ``repo@sha256:...`` into an ImageRef.

        A colon before the last ``/`` belongs to a registry port
        (``localhost:5000/busybox``), not to the tag.
        """
        if "@" in ref:
            repository, digest = ref.split("@", 1)
            return cls(repository, digest)
        slash = ref.rfind("/")
        colon = ref.rfind(":")
        if colon > slash:
            return cls(ref[:colon], ref[colon + 1 :])
        return cls(ref)

    @property
    def is_digest(self) -> bool:
        return ":" in self.version

    def __str__(self) -> str:
        sep = "@" if self.is_digest else ":"
        return f"{self.repository}{sep}{self.version}"


@dataclass(frozen=True)
class Bind:
    """One volume binding, rendered as ``source:target[:mode]`` for the engine."""

    source: str  # volume name or absolute host path
    target: str  # path inside the container
    mode: str = ""  # e.g. "ro", "rw", "z"

    @classmethod
    def parse(cls, raw: str) -> Bind:
        source, _, rest = raw.partition(":")
        target, _, mode = rest.partition(":")
        return cls(source, target, mode)

    def __str__(self) -> str:
        bind = f"{self.source}:{self.target}"
        return f"{bind}:{self.mode}" if self.mode else bind


@dataclass(frozen=True)
class ContainerSpec:
    """Launch descriptor for one job container. Built by ``build_container_spec``."""

    image: ImageRef
    name: str
    args: tuple[str, ...] = ()
    entrypoint: tuple[str, ...] | None = None  # None keeps the image entrypoint; () clears it
    env: Mapping[str, str] = field(default_factory=_frozen_mapping)
    binds: tuple[Bind, ...] = ()
    user: str = ""  # "uid[:gid]"; empty means the image default
    labels: Mapping[str, str] = field(default_factory=_frozen_mapping)
    network_id: str | None = None
    hostname: str = ""
    auto_remove: bool = False

    def __post_init__(self) -> None:
        # Freeze mappings handed in by callers so a ContainerSpec stays immutable.
        object.__setattr__(self, "env", _frozen_mapping(self.env))
        object.__setattr__(self, "labels", _frozen_mapping(self.labels))


@dataclass
class RunningContainer:
    """A created container owned by exactly one ``JobRunner.run`` call."""

    id: str
    spec: ContainerSpec
    started_at: datetime


@dataclass(frozen=True)
class JobResult:
    container_id: str
    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""
    container_error: Exception | None = None
    auto_removed: bool = False  # exit observed through auto-removal, code assumed 0
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.container_error is None

    def raise_for_status(self) -> None:
        if self.container_error is not None:
            raise self.container_error
