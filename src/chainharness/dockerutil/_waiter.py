"""Completion waiter — resolve "container finished" across the auto-removal race.

Two independent engine signals say a job is over: the explicit wait call
(exit code once the container stops) and the destroy event of an
auto-removing container. A fast job can exit and be removed between start
and the wait call, in which case the wait reports not-found even though the
job succeeded. Both signals are awaited concurrently and the first one wins:

- wait returns              → trust its exit code
- wait says not-found, or
  the destroy event wins    → the container reached its terminal
                              auto-remove state; exit code 0, already removed
- wait fails otherwise      → WaitError

Auto-removal only follows an entrypoint exit, but the engine gives no way to
tell it apart from an external removal mid-run (e.g. a concurrent sweep);
both resolve as success here.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass

import structlog

from chainharness.dockerutil._engine import ContainerEngine, EngineError, EngineNotFoundError
from chainharness.dockerutil._errors import WaitError
from chainharness.types import RunningContainer

# How long to wait for the destroy event of an auto-removing container after
# its wait already returned.
_REMOVAL_GRACE_SECS = 5.0


@dataclass(frozen=True)
class WaitOutcome:
    exit_code: int
    removed: bool  # container is already gone; cleanup can skip removal
    auto_removed: bool = False  # exit observed via removal, exit code assumed


async def _cancel_and_reap(task: asyncio.Task) -> None:  # type: ignore[type-arg]
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, EngineError):
        await task


async def wait_for_completion(
    engine: ContainerEngine,
    container: RunningContainer,
    log: structlog.stdlib.BoundLogger,
) -> WaitOutcome:
    """Block until *container* reaches a terminal state.

    Cancelling the awaiting task cancels both engine waits before the
    cancellation propagates.
    """
    wait_task = asyncio.create_task(engine.wait(container.id))
    removed_task = asyncio.create_task(engine.wait_removed(container.id, container.started_at))
    try:
        done, _ = await asyncio.wait(
            {wait_task, removed_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if (
            wait_task in done
            and container.spec.auto_remove
            and not removed_task.done()
            and wait_task.exception() is None
        ):
            # The engine removes the container shortly after the wait returns.
            await asyncio.wait({removed_task}, timeout=_REMOVAL_GRACE_SECS)
    finally:
        # No-ops for whichever task already finished.
        if not wait_task.done():
            await _cancel_and_reap(wait_task)
        if not removed_task.done():
            await _cancel_and_reap(removed_task)

    if wait_task not in done and removed_task.exception() is not None:
        # The destroy-event watch broke before the wait resolved; the explicit
        # wait is the only signal left.
        log.warning(
            "Container removal watch failed, falling back to wait",
            container_id=container.id,
            err=str(removed_task.exception()),
        )
        wait_task = asyncio.create_task(engine.wait(container.id))
        try:
            done, _ = await asyncio.wait({wait_task})
        finally:
            if not wait_task.done():
                await _cancel_and_reap(wait_task)

    # When both finished in the same tick the wait result is authoritative.
    if wait_task in done:
        return _outcome_from_wait(wait_task, removed_task, container, log)

    log.warning("Container removed before wait resolved", container_id=container.id)
    return WaitOutcome(exit_code=0, removed=True, auto_removed=True)


def _outcome_from_wait(
    wait_task: asyncio.Task[int],
    removed_task: asyncio.Task[None],
    container: RunningContainer,
    log: structlog.stdlib.BoundLogger,
) -> WaitOutcome:
    try:
        exit_code = wait_task.result()
    except EngineNotFoundError:
        log.warning("Container auto-removed before wait", container_id=container.id)
        return WaitOutcome(exit_code=0, removed=True, auto_removed=True)
    except EngineError as exc:
        raise WaitError(f"waiting for container {container.id}: {exc}") from exc
    removed = (
        removed_task.done()
        and not removed_task.cancelled()
        and removed_task.exception() is None
    )
    return WaitOutcome(exit_code=exit_code, removed=removed)
