"""Shared test fixtures for chainharness."""

from __future__ import annotations

import asyncio
import io
import itertools
import tarfile
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from unittest.mock import MagicMock

import pytest

from chainharness.dockerutil._engine import EngineError, EngineNotFoundError
from chainharness.types import ContainerSpec, ImageRef

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures; importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset({"job_timeout"})


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Usage::

        s = make_settings(docker=DockerConfig(max_output_size=16))
        s = make_settings(job_timeout=0.5)
    """
    from chainharness.config import DockerConfig, LoggingConfig, Settings

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "docker": DockerConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def make_log() -> MagicMock:
    """A stand-in bound logger whose ``bind()`` returns itself."""
    log = MagicMock()
    log.bind.return_value = log
    return log


def logged_events(log: MagicMock, level: str = "warning") -> list[str]:
    return [c.args[0] for c in getattr(log, level).call_args_list]


# ---------------------------------------------------------------------------
# In-memory container engine
# ---------------------------------------------------------------------------


@dataclass
class FakeJob:
    """Scripted behaviour of one fake container."""

    exit_code: int = 0
    stdout: bytes = b""
    stderr: bytes = b""
    hang: bool = False  # runs until force-removed
    delay: float = 0.0  # seconds between start and exit
    remove_before_start: bool = False  # auto-removed before start observes it
    exit_before_wait: bool = False  # exits (and auto-removes) inside start
    wait_blocks: bool = False  # the explicit wait never resolves
    wait_error: str | None = None  # engine-level failure reported by wait


@dataclass
class FakeContainer:
    id: str
    spec: ContainerSpec
    job: FakeJob
    state: str = "created"
    exit_code: int | None = None
    done: asyncio.Event = field(default_factory=asyncio.Event)
    gone: asyncio.Event = field(default_factory=asyncio.Event)


class FakeEngine:
    """Implements the ContainerEngine protocol in memory.

    Containers, networks and volumes live in dicts; every call is recorded in
    ``calls`` as ``(method, arg)``.
    """

    def __init__(self) -> None:
        self.images: set[str] = set()
        self.missing_images: set[str] = set()
        self.pull_calls: list[str] = []
        self.pull_delay = 0.0
        self.containers: dict[str, FakeContainer] = {}
        self.created: list[str] = []
        self.removed: list[str] = []
        self.networks: dict[str, dict[str, str]] = {}
        self.volumes: dict[str, dict[str, bytes]] = {}
        self.volume_labels: dict[str, dict[str, str]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.job: FakeJob = FakeJob()
        self.job_factory: Callable[[ContainerSpec], FakeJob] | None = None
        self.create_error: EngineError | None = None
        self.start_error: EngineError | None = None
        self.remove_errors: dict[str, EngineError] = {}
        self.removal_watch_error: EngineError | None = None
        self._ids = itertools.count(1)

    # -- helpers for assertions ------------------------------------------------

    def exists(self, container_id: str) -> bool:
        return container_id in self.containers

    def by_name(self, name: str) -> FakeContainer | None:
        return next((c for c in self.containers.values() if c.spec.name == name), None)

    def _get(self, container_id: str) -> FakeContainer:
        c = self.containers.get(container_id) or self.by_name(container_id)
        if c is None:
            raise EngineNotFoundError(f"No such container: {container_id}")
        return c

    def _finish(self, c: FakeContainer) -> None:
        if c.gone.is_set():
            return
        c.state = "exited"
        c.exit_code = c.job.exit_code
        c.done.set()
        if c.spec.auto_remove:
            self._destroy(c)

    def _destroy(self, c: FakeContainer) -> None:
        if not c.done.is_set():
            # Force-removing a running container kills it.
            c.state = "exited"
            c.exit_code = 137
            c.done.set()
        self.containers.pop(c.id, None)
        self.removed.append(c.id)
        c.gone.set()

    # -- images ------------------------------------------------------------------

    async def image_exists(self, ref: ImageRef) -> bool:
        self.calls.append(("image_exists", str(ref)))
        return str(ref) in self.images

    async def pull(self, ref: ImageRef) -> None:
        self.pull_calls.append(str(ref))
        await asyncio.sleep(self.pull_delay)
        if str(ref) in self.missing_images:
            raise EngineError(f"pull access denied for {ref.repository}, repository does not exist")
        self.images.add(str(ref))

    # -- container lifecycle -------------------------------------------------

    async def create(self, spec: ContainerSpec) -> str:
        self.calls.append(("create", spec.name))
        if self.create_error is not None:
            raise self.create_error
        if self.by_name(spec.name) is not None:
            raise EngineError(f"Conflict. The container name {spec.name!r} is already in use")
        container_id = f"{next(self._ids):064x}"
        job = self.job_factory(spec) if self.job_factory else self.job
        self.containers[container_id] = FakeContainer(container_id, spec, job)
        self.created.append(container_id)
        return container_id

    async def start(self, container_id: str) -> None:
        self.calls.append(("start", container_id))
        if self.start_error is not None:
            raise self.start_error
        c = self._get(container_id)
        if c.job.remove_before_start:
            self._destroy(c)
            raise EngineNotFoundError(f"No such container: {container_id}")
        c.state = "running"
        if c.job.exit_before_wait:
            self._finish(c)
        elif not c.job.hang:
            asyncio.get_running_loop().call_later(c.job.delay, self._finish, c)

    async def wait(self, container_id: str) -> int:
        self.calls.append(("wait", container_id))
        c = self._get(container_id)
        if c.job.wait_error:
            raise EngineError(c.job.wait_error)
        if c.job.wait_blocks:
            await asyncio.Event().wait()
        await c.done.wait()
        assert c.exit_code is not None
        return c.exit_code

    async def wait_removed(self, container_id: str, since: datetime | None = None) -> None:
        self.calls.append(("wait_removed", container_id))
        if self.removal_watch_error is not None:
            raise self.removal_watch_error
        c = self.containers.get(container_id)
        if c is None:
            return
        await c.gone.wait()

    async def stream_output(self, container_id: str) -> AsyncIterator[tuple[str, bytes]]:
        c = self._get(container_id)
        if c.job.stdout:
            yield "stdout", c.job.stdout
        if c.job.stderr:
            yield "stderr", c.job.stderr
        await c.done.wait()

    async def remove(self, container_id: str, *, force: bool = True) -> None:
        self.calls.append(("remove", container_id))
        if container_id in self.remove_errors:
            raise self.remove_errors[container_id]
        c = self._get(container_id)
        if c.state == "running" and not force:
            raise EngineError("You cannot remove a running container")
        self._destroy(c)

    async def inspect(self, container_id: str) -> dict[str, Any]:
        c = self._get(container_id)
        return {"Id": c.id, "Name": f"/{c.spec.name}", "State": {"Status": c.state}}

    # -- filesystem ------------------------------------------------------------

    def _volume_at(self, c: FakeContainer, path: str) -> tuple[dict[str, bytes], str]:
        for bind in c.spec.binds:
            prefix = bind.target.rstrip("/") + "/"
            if path == bind.target or path.startswith(prefix):
                return self.volumes.setdefault(bind.source, {}), path[len(prefix) :]
        raise EngineNotFoundError(f"Could not find the file {path} in container {c.id}")

    async def copy_from(self, container_id: str, path: str) -> bytes:
        self.calls.append(("copy_from", path))
        c = self._get(container_id)
        files, rel = self._volume_at(c, path)
        if rel not in files:
            raise EngineNotFoundError(f"Could not find the file {path} in container {c.id}")
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            info = tarfile.TarInfo(name=rel.rsplit("/", 1)[-1])
            info.size = len(files[rel])
            tar.addfile(info, io.BytesIO(files[rel]))
        return buf.getvalue()

    async def copy_to(self, container_id: str, path: str, archive: bytes) -> None:
        self.calls.append(("copy_to", path))
        c = self._get(container_id)
        files, _ = self._volume_at(c, path)
        with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
            for member in tar:
                fh = tar.extractfile(member)
                if fh is not None:
                    files[member.name] = fh.read()

    # -- networks, sweeps ----------------------------------------------------

    async def create_network(self, name: str, labels: Mapping[str, str]) -> str:
        network_id = f"net-{name}"
        self.networks[network_id] = dict(labels)
        return network_id

    def _labels_of(self, kind: str) -> dict[str, Mapping[str, str]]:
        if kind == "container":
            return {cid: c.spec.labels for cid, c in self.containers.items()}
        if kind == "network":
            return dict(self.networks)
        return dict(self.volume_labels)

    async def list_resources(self, kind: str, labels: Mapping[str, str]) -> list[str]:
        self.calls.append(("list", kind))
        return [
            rid
            for rid, have in self._labels_of(kind).items()
            if all(have.get(k) == v for k, v in labels.items())
        ]

    async def remove_resource(self, kind: str, resource_id: str) -> None:
        self.calls.append(("remove_" + kind, resource_id))
        if resource_id in self.remove_errors:
            raise self.remove_errors[resource_id]
        if kind == "container":
            self._destroy(self._get(resource_id))
        elif kind == "network":
            self.networks.pop(resource_id)
        else:
            self.volume_labels.pop(resource_id)
            self.volumes.pop(resource_id, None)


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults: no
    chainharness.toml, no .env, no file I/O.
    """
    safe = make_settings()
    monkeypatch.setattr("chainharness.config._settings", safe)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


BUSYBOX = ImageRef("busybox", "stable")


@pytest.fixture
def engine() -> FakeEngine:
    eng = FakeEngine()
    eng.images.add(str(BUSYBOX))
    return eng


@pytest.fixture
def log() -> MagicMock:
    return make_log()


@pytest.fixture
def runner(engine: FakeEngine, log: MagicMock):
    from chainharness.dockerutil import JobRunner

    return JobRunner(engine, log=log)
