"""Read and write single files inside Docker volumes.

Both directions go through a helper container that is created with the
volume mounted but never started: the engine can copy tar archives in and
out of a stopped container's filesystem, mounts included. The helper is
force-removed on every path.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import posixpath
import tarfile
import time
from collections.abc import AsyncIterator

import structlog

from chainharness.config import get_settings
from chainharness.dockerutil._cleanup import cleanup_container, run_uncancelled
from chainharness.dockerutil._engine import EngineError, EngineNotFoundError
from chainharness.dockerutil._errors import CreateError
from chainharness.dockerutil._labels import DOCKER_PREFIX
from chainharness.dockerutil._runner import JobRunner
from chainharness.dockerutil._spec import ContainerOptions, build_container_spec
from chainharness.dockerutil._strings import rand_lower_case_letter_string, root_user
from chainharness.types import ImageRef

MOUNT_PATH = "/mnt/dockervolume"


def _helper_name(kind: str) -> str:
    return f"{DOCKER_PREFIX}-{kind}-{time.time_ns()}-{rand_lower_case_letter_string(5)}"


def _clean_rel_path(rel_path: str) -> str:
    cleaned = posixpath.normpath(rel_path.lstrip("/"))
    if cleaned in (".", "", "..") or cleaned.startswith("../"):
        raise ValueError(f"path {rel_path!r} must stay inside the volume")
    return cleaned


class _VolumeHelper:
    def __init__(
        self,
        runner: JobRunner,
        run_scope: str,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.runner = runner
        self.run_scope = run_scope
        self.log = log if log is not None else runner.log

    @contextlib.asynccontextmanager
    async def _mounted(self, kind: str, volume: str) -> AsyncIterator[str]:
        """Yield the id of a created (not started) container with *volume* mounted."""
        ref = ImageRef.parse(get_settings().docker.helper_image)
        await self.runner.images.ensure(ref)
        spec = build_container_spec(
            ref,
            [],
            ContainerOptions(
                run_scope=self.run_scope,
                name=_helper_name(kind),
                binds=[f"{volume}:{MOUNT_PATH}"],
                user=root_user(),
            ),
        )
        engine = self.runner.engine
        try:
            container_id = await engine.create(spec)
        except EngineError as exc:
            raise CreateError(f"creating {kind} container: {exc}") from exc
        except asyncio.CancelledError:
            # The helper may exist without us knowing its id.
            await run_uncancelled(cleanup_container(engine, spec.name, False, self.log))
            raise
        try:
            yield container_id
        finally:
            await run_uncancelled(cleanup_container(engine, container_id, False, self.log))


class FileRetriever(_VolumeHelper):
    """Fetch file contents out of a volume."""

    async def single_file_content(self, volume: str, rel_path: str) -> bytes:
        """Return the contents of *rel_path* (relative to the volume root).

        Raises FileNotFoundError when the path does not exist or is not a
        regular file.
        """
        path = _clean_rel_path(rel_path)
        async with self._mounted("getfile", volume) as container_id:
            try:
                archive = await self.runner.engine.copy_from(
                    container_id, f"{MOUNT_PATH}/{path}"
                )
            except EngineNotFoundError as exc:
                raise FileNotFoundError(f"{volume}:{path}") from exc

        with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
            for member in tar:
                if not member.isfile():
                    continue
                fh = tar.extractfile(member)
                if fh is not None:
                    return fh.read()
        raise FileNotFoundError(f"{volume}:{path} is not a regular file")


class FileWriter(_VolumeHelper):
    """Write files into a volume."""

    async def write_file(self, volume: str, rel_path: str, content: bytes) -> None:
        """Write *content* to *rel_path* in *volume*, creating parent directories."""
        path = _clean_rel_path(rel_path)
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            info = tarfile.TarInfo(name=path)
            info.size = len(content)
            info.mode = 0o644
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(content))

        async with self._mounted("writefile", volume) as container_id:
            await self.runner.engine.copy_to(container_id, MOUNT_PATH, buf.getvalue())
