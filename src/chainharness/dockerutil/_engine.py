"""Container engine contract consumed by the job runner.

The runner only talks to an engine through this protocol. The built-in
implementation is :class:`chainharness.dockerutil._docker.DockerEngine`;
tests substitute an in-memory engine.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from datetime import datetime
from typing import Any, Literal, Protocol, runtime_checkable

from chainharness.types import ContainerSpec, ImageRef

ResourceKind = Literal["container", "network", "volume"]
StreamName = Literal["stdout", "stderr"]


class EngineError(Exception):
    """An engine call failed. ``stderr`` holds the engine's own message."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class EngineNotFoundError(EngineError):
    """The referenced container/image/network/volume does not exist."""


@runtime_checkable
class ContainerEngine(Protocol):
    """Engine operations the job runner depends on.

    Implementations must be safe to share between concurrent runs.
    """

    async def image_exists(self, ref: ImageRef) -> bool: ...

    async def pull(self, ref: ImageRef) -> None: ...

    async def create(self, spec: ContainerSpec) -> str: ...

    async def start(self, container_id: str) -> None: ...

    async def wait(self, container_id: str) -> int:
        """Block until the container is no longer running; return its exit code."""
        ...

    async def wait_removed(self, container_id: str, since: datetime | None = None) -> None:
        """Block until the engine reports the container destroyed (events after *since*)."""
        ...

    def stream_output(self, container_id: str) -> AsyncIterator[tuple[StreamName, bytes]]:
        """Follow the container's output as ``(stream, chunk)`` pairs until it exits."""
        ...

    async def remove(self, container_id: str, *, force: bool = True) -> None: ...

    async def inspect(self, container_id: str) -> dict[str, Any]: ...

    async def copy_from(self, container_id: str, path: str) -> bytes:
        """Return *path* from the container's filesystem as a tar archive."""
        ...

    async def copy_to(self, container_id: str, path: str, archive: bytes) -> None:
        """Extract the tar *archive* into *path* inside the container."""
        ...

    async def create_network(self, name: str, labels: Mapping[str, str]) -> str: ...

    async def list_resources(self, kind: ResourceKind, labels: Mapping[str, str]) -> list[str]: ...

    async def remove_resource(self, kind: ResourceKind, resource_id: str) -> None: ...
