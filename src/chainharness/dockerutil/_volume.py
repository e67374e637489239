"""Set the owner of a Docker volume to match the user an image runs as."""

from __future__ import annotations

import time

import structlog

from chainharness.config import get_settings
from chainharness.dockerutil._errors import NonZeroExitError
from chainharness.dockerutil._files import MOUNT_PATH
from chainharness.dockerutil._labels import DOCKER_PREFIX
from chainharness.dockerutil._runner import JobRunner
from chainharness.dockerutil._spec import ContainerOptions, build_container_spec
from chainharness.dockerutil._strings import rand_lower_case_letter_string, root_user
from chainharness.types import ImageRef


async def set_volume_owner(
    runner: JobRunner,
    volume: str,
    run_scope: str,
    uid_gid: str = "",
    *,
    log: structlog.stdlib.BoundLogger | None = None,
) -> None:
    """``chown`` and ``chmod 0700`` *volume* for *uid_gid* (default root).

    Runs a one-off, self-removing helper container as root. The helper
    usually finishes in milliseconds, so it regularly exits and disappears
    before the wait is issued; the runner reports that as a clean exit.
    """
    owner = uid_gid or root_user()
    log = (log if log is not None else runner.log).bind(volume=volume, owner=owner)

    spec = build_container_spec(
        ImageRef.parse(get_settings().docker.helper_image),
        [
            'chown "$2" "$1" && chmod 0700 "$1"',
            "_",  # $0 for sh -c with positional args
            MOUNT_PATH,
            owner,
        ],
        ContainerOptions(
            run_scope=run_scope,
            name=f"{DOCKER_PREFIX}-volumeowner-{time.time_ns()}-{rand_lower_case_letter_string(5)}",
            entrypoint=["sh", "-c"],
            binds=[f"{volume}:{MOUNT_PATH}"],
            user=root_user(),
            auto_remove=True,
        ),
    )
    result = await runner.run(spec)
    if result.exit_code != 0:
        stderr = result.stderr.decode(errors="replace").strip()
        log.error("Configuring volume failed", exit_code=result.exit_code, stderr=stderr[-500:])
        raise NonZeroExitError(
            f"configuring volume exited {result.exit_code}",
            exit_code=result.exit_code,
            stderr=result.stderr,
        )
    log.debug("Volume owner set")
