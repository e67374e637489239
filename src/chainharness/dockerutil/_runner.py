"""Job runner — execute one ContainerSpec in an ephemeral container.

Stages run strictly in order: ensure image → create → start → (follow
output ∥ wait for a terminal state) → cleanup. Cleanup runs exactly once per
created container on every path out of :meth:`JobRunner.run`, including
deadline expiry and cancellation of the calling task.

A non-zero exit code is returned as data in :class:`JobResult`; only
failures of the engine itself are raised.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from chainharness.config import get_settings
from chainharness.dockerutil._cleanup import cleanup_container, run_uncancelled
from chainharness.dockerutil._docker import DockerEngine
from chainharness.dockerutil._engine import ContainerEngine, EngineError, EngineNotFoundError
from chainharness.dockerutil._errors import (
    CanceledError,
    CreateError,
    OutputTruncatedError,
    StartError,
    StartRaceError,
)
from chainharness.dockerutil._images import ImageResolver
from chainharness.dockerutil._waiter import WaitOutcome, wait_for_completion
from chainharness.logger import logger
from chainharness.types import ContainerSpec, JobResult, RunningContainer

_UNSET = object()

# How long to let the output follower drain after the container stopped.
_OUTPUT_GRACE_SECS = 10.0


@dataclass
class _Captured:
    stdout: bytes = b""
    stderr: bytes = b""
    truncated: bool = False


class JobRunner:
    """Runs container jobs against one engine.

    A runner is meant to be long-lived and shared: it owns the image
    presence cache, which is the only state concurrent runs share.
    """

    def __init__(
        self,
        engine: ContainerEngine | None = None,
        *,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.engine: ContainerEngine = engine if engine is not None else DockerEngine()
        self.images = ImageResolver(self.engine)
        self.log = log if log is not None else logger

    async def run(
        self, spec: ContainerSpec, *, timeout: float | None | object = _UNSET
    ) -> JobResult:
        """Run *spec* to completion and return its result.

        *timeout* (seconds) bounds create through wait; it defaults to
        ``docker.job_timeout_ms``. On expiry the container is force-removed
        and :class:`CanceledError` is raised. If the calling task is
        cancelled the same cleanup happens before the cancellation
        propagates.
        """
        if timeout is _UNSET:
            timeout = get_settings().job_timeout
        log = self.log.bind(container=spec.name, image=str(spec.image))

        await self.images.ensure(spec.image)

        start_time = time.monotonic()
        cleanup_target: str | None = None  # id (or name, mid-create) to remove on the way out
        already_removed = False
        deadline = asyncio.timeout(timeout)  # type: ignore[arg-type]
        try:
            async with deadline:
                # If we are cancelled while create is in flight the container may
                # exist without us knowing its id; remove it by name.
                cleanup_target = spec.name
                try:
                    container_id = await self.engine.create(spec)
                except EngineError as exc:
                    cleanup_target = None
                    raise CreateError(f"creating container {spec.name}: {exc}") from exc
                cleanup_target = container_id
                log = log.bind(container_id=container_id[:12])

                container = RunningContainer(
                    id=container_id, spec=spec, started_at=datetime.now(UTC)
                )
                try:
                    await self.engine.start(container_id)
                except EngineNotFoundError as exc:
                    already_removed = True
                    log.warning("Container removed before start could observe it")
                    raise StartRaceError(
                        f"container {spec.name} was removed before start: {exc}"
                    ) from exc
                except EngineError as exc:
                    raise StartError(f"starting container {spec.name}: {exc}") from exc

                outcome, captured = await self._follow(container, log)
                already_removed = outcome.removed
        except TimeoutError as exc:
            if not deadline.expired():
                raise
            log.error("Container job timed out", timeout=timeout)
            raise CanceledError(f"container {spec.name} did not finish within {timeout}s") from exc
        finally:
            if cleanup_target is not None:
                await run_uncancelled(
                    cleanup_container(self.engine, cleanup_target, already_removed, log)
                )

        result = JobResult(
            container_id=container.id,
            exit_code=outcome.exit_code,
            stdout=captured.stdout,
            stderr=captured.stderr,
            auto_removed=outcome.auto_removed,
            truncated=captured.truncated,
        )
        log.info(
            "Container job finished",
            exit_code=result.exit_code,
            duration_ms=round((time.monotonic() - start_time) * 1000),
        )
        if captured.truncated:
            raise OutputTruncatedError(
                f"output of {spec.name} exceeded {get_settings().docker.max_output_size} bytes",
                result,
            )
        return result

    async def _follow(
        self,
        container: RunningContainer,
        log: structlog.stdlib.BoundLogger,
    ) -> tuple[WaitOutcome, _Captured]:
        """Collect output while waiting for the container to finish."""
        output_task = asyncio.create_task(self._collect_output(container.id, log))
        try:
            outcome = await wait_for_completion(self.engine, container, log)
        except BaseException:
            output_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await output_task
            raise

        try:
            captured = await asyncio.wait_for(output_task, _OUTPUT_GRACE_SECS)
        except TimeoutError:
            log.warning("Container output did not drain after exit")
            captured = _Captured()
        return outcome, captured

    async def _collect_output(
        self,
        container_id: str,
        log: structlog.stdlib.BoundLogger,
    ) -> _Captured:
        cap = get_settings().docker.max_output_size
        buffers = {"stdout": bytearray(), "stderr": bytearray()}
        truncated = False
        try:
            async with contextlib.aclosing(self.engine.stream_output(container_id)) as stream:
                async for name, chunk in stream:
                    buf = buffers[name]
                    if cap is not None and len(buf) + len(chunk) > cap:
                        if not truncated:
                            log.warning("Container output truncated", stream=name, limit=cap)
                        truncated = True
                        buf += chunk[: max(0, cap - len(buf))]
                        continue
                    buf += chunk
        except EngineNotFoundError:
            # Anything read so far is the engine's own error text.
            log.warning("Container removed before its output could be read")
            return _Captured()
        except EngineError as exc:
            log.warning("Reading container output failed", err=str(exc))
        return _Captured(bytes(buffers["stdout"]), bytes(buffers["stderr"]), truncated)
