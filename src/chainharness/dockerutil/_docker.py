"""Docker CLI engine — the built-in :class:`ContainerEngine`.

Every engine call is a ``docker`` subprocess run on the event loop via
``asyncio.create_subprocess_exec``. Short calls are bounded by
``docker.command_timeout``; the long-lived ones (``wait``, ``events``,
``logs --follow``) run until the container finishes or the caller cancels.
A cancelled call kills its subprocess so nothing outlives the awaiting task.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import re
import subprocess
import time
from collections.abc import AsyncIterator, Mapping
from datetime import datetime
from typing import Any

from chainharness.config import get_settings
from chainharness.dockerutil._engine import (
    EngineError,
    EngineNotFoundError,
    ResourceKind,
    StreamName,
)
from chainharness.logger import logger
from chainharness.types import ContainerSpec, ImageRef

_NOT_FOUND_RE = re.compile(
    r"no such (container|image|object|network|volume)"
    r"|could not find the file"
    r"|\b(network|volume) \S+ not found",
    re.I,
)

_LIST_ARGS: dict[str, tuple[str, ...]] = {
    "container": ("ps", "-a", "-q", "--no-trunc"),
    "network": ("network", "ls", "-q", "--no-trunc"),
    "volume": ("volume", "ls", "-q"),
}
_REMOVE_ARGS: dict[str, tuple[str, ...]] = {
    "container": ("rm", "-f"),
    "network": ("network", "rm"),
    "volume": ("volume", "rm", "-f"),
}

_SLOW_CALL_MS = 5000


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc* if it is still running and reap it."""
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
    await proc.wait()


async def _spawn(cli: str, *args: str) -> asyncio.subprocess.Process:
    """Start a long-lived docker subprocess with piped stdout/stderr."""
    try:
        return await asyncio.create_subprocess_exec(
            cli,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise EngineError(f"could not run {cli}: {exc}") from exc


def _engine_error(result: subprocess.CompletedProcess[bytes]) -> EngineError:
    stderr = result.stderr.decode(errors="replace").strip()
    argv = result.args if isinstance(result.args, list) else [str(result.args)]
    msg = f"{' '.join(argv[:2])} exited {result.returncode}: {stderr}"
    if _NOT_FOUND_RE.search(stderr):
        return EngineNotFoundError(msg, returncode=result.returncode, stderr=stderr)
    return EngineError(msg, returncode=result.returncode, stderr=stderr)


async def run_docker(
    *args: str,
    check: bool = True,
    timeout: float | None = 30,
    stdin: bytes | None = None,
    cli: str | None = None,
) -> subprocess.CompletedProcess[bytes]:
    """Run a ``docker`` CLI command without blocking the event loop.

    Raises :class:`EngineError` (or :class:`EngineNotFoundError`) on a
    non-zero exit when *check* is set, and on timeout.
    """
    cli = cli or get_settings().docker.cli
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            cli,
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise EngineError(f"could not run {cli}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(stdin), timeout)
    except TimeoutError:
        await _kill(proc)
        raise EngineError(f"{cli} {args[0]} timed out after {timeout}s") from None
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    elapsed_ms = (time.monotonic() - start) * 1000
    if elapsed_ms > _SLOW_CALL_MS:
        logger.warning("Slow docker call", command=args[0], elapsed_ms=round(elapsed_ms))

    result = subprocess.CompletedProcess([cli, *args], proc.returncode or 0, stdout, stderr)
    if check and result.returncode != 0:
        raise _engine_error(result)
    return result


def _create_args(spec: ContainerSpec) -> list[str]:
    """Translate a ContainerSpec into ``docker create`` arguments."""
    args = ["create", "--name", spec.name]
    if spec.hostname:
        args += ["--hostname", spec.hostname]
    if spec.user:
        args += ["--user", spec.user]
    if spec.network_id:
        args += ["--network", spec.network_id]
    if spec.auto_remove:
        args.append("--rm")
    for key, value in spec.labels.items():
        args += ["--label", f"{key}={value}"]
    for key, value in spec.env.items():
        args += ["-e", f"{key}={value}"]
    for bind in spec.binds:
        args += ["-v", str(bind)]

    # The CLI takes a single --entrypoint word; remaining entrypoint words
    # lead the command, which the engine appends to the entrypoint anyway.
    command = list(spec.args)
    if spec.entrypoint is not None:
        first, *rest = spec.entrypoint or ("",)
        args += ["--entrypoint", first]
        command = [*rest, *command]

    args.append(str(spec.image))
    args += command
    return args


class DockerEngine:
    """Stateless adapter from :class:`ContainerEngine` calls to the docker CLI."""

    def __init__(self, cli: str | None = None) -> None:
        self.cli = cli or get_settings().docker.cli

    async def _run(
        self,
        *args: str,
        timeout: float | None = None,
        stdin: bytes | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[bytes]:
        if timeout is None:
            timeout = get_settings().docker.command_timeout
        return await run_docker(*args, check=check, timeout=timeout, stdin=stdin, cli=self.cli)

    # -- images --------------------------------------------------------------

    async def image_exists(self, ref: ImageRef) -> bool:
        result = await self._run("image", "inspect", str(ref), check=False)
        return result.returncode == 0

    async def pull(self, ref: ImageRef) -> None:
        logger.info("Pulling image", image=str(ref))
        await self._run("pull", str(ref), timeout=get_settings().docker.pull_timeout)
        logger.info("Image pulled", image=str(ref))

    # -- container lifecycle -------------------------------------------------

    async def create(self, spec: ContainerSpec) -> str:
        result = await self._run(*_create_args(spec))
        return result.stdout.decode().strip()

    async def start(self, container_id: str) -> None:
        await self._run("start", container_id)

    async def wait(self, container_id: str) -> int:
        result = await run_docker("wait", container_id, timeout=None, cli=self.cli)
        out = result.stdout.decode().strip()
        try:
            return int(out.splitlines()[-1])
        except (IndexError, ValueError):
            raise EngineError(f"unexpected docker wait output: {out!r}") from None

    async def wait_removed(self, container_id: str, since: datetime | None = None) -> None:
        # ``--since`` replays a destroy that happened before the subscription
        # was established.
        since_ts = int(since.timestamp()) - 1 if since else int(time.time()) - 1
        proc = await _spawn(
            self.cli,
            "events",
            "--since",
            str(since_ts),
            "--filter",
            f"container={container_id}",
            "--filter",
            "event=destroy",
            "--format",
            "{{.Action}}",
        )
        try:
            assert proc.stdout is not None
            line = await proc.stdout.readline()
            if line:
                return
            await proc.wait()
            stderr = b"" if proc.stderr is None else await proc.stderr.read()
            raise _engine_error(
                subprocess.CompletedProcess(
                    [self.cli, "events"], proc.returncode or 0, b"", stderr
                )
            )
        finally:
            await _kill(proc)

    async def stream_output(self, container_id: str) -> AsyncIterator[tuple[StreamName, bytes]]:
        proc = await _spawn(self.cli, "logs", "--follow", container_id)
        queue: asyncio.Queue[tuple[StreamName, bytes] | None] = asyncio.Queue()
        stderr_tail = bytearray()

        async def _pump(name: StreamName, stream: asyncio.StreamReader) -> None:
            while chunk := await stream.read(8192):
                if name == "stderr":
                    stderr_tail[:] = (stderr_tail + chunk)[-4096:]
                await queue.put((name, chunk))
            await queue.put(None)

        assert proc.stdout is not None
        assert proc.stderr is not None
        pumps = [
            asyncio.create_task(_pump("stdout", proc.stdout)),
            asyncio.create_task(_pump("stderr", proc.stderr)),
        ]
        try:
            open_streams = len(pumps)
            while open_streams:
                item = await queue.get()
                if item is None:
                    open_streams -= 1
                    continue
                yield item
            returncode = await proc.wait()
            if returncode != 0:
                raise _engine_error(
                    subprocess.CompletedProcess(
                        [self.cli, "logs"], returncode, b"", bytes(stderr_tail)
                    )
                )
        finally:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            await _kill(proc)

    async def remove(self, container_id: str, *, force: bool = True) -> None:
        args = ["rm", "-f", container_id] if force else ["rm", container_id]
        await self._run(*args)

    async def inspect(self, container_id: str) -> dict[str, Any]:
        result = await self._run("inspect", container_id)
        return json.loads(result.stdout)[0]

    # -- filesystem ------------------------------------------------------------

    async def copy_from(self, container_id: str, path: str) -> bytes:
        result = await self._run("cp", f"{container_id}:{path}", "-")
        return result.stdout

    async def copy_to(self, container_id: str, path: str, archive: bytes) -> None:
        await self._run("cp", "-", f"{container_id}:{path}", stdin=archive)

    # -- networks, sweeps ----------------------------------------------------

    async def create_network(self, name: str, labels: Mapping[str, str]) -> str:
        args = ["network", "create"]
        for key, value in labels.items():
            args += ["--label", f"{key}={value}"]
        result = await self._run(*args, name)
        return result.stdout.decode().strip()

    async def list_resources(self, kind: ResourceKind, labels: Mapping[str, str]) -> list[str]:
        args = list(_LIST_ARGS[kind])
        for key, value in labels.items():
            args += ["--filter", f"label={key}={value}"]
        result = await self._run(*args)
        return [line for line in result.stdout.decode().split() if line]

    async def remove_resource(self, kind: ResourceKind, resource_id: str) -> None:
        await self._run(*_REMOVE_ARGS[kind], resource_id)
