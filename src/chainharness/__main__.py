"""Entry point for `python -m chainharness` / `chainharness`.

Subcommands:
    chainharness run IMAGE [opts] -- CMD...   Run one job and exit with its code
    chainharness sweep [SCOPE]                Remove labelled leftovers
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

_DEFAULT_SCOPE = f"cli-{os.environ.get('USER', 'local')}"


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"Error: -e expects KEY=VALUE, got {pair!r}")
        env[key] = value
    return env


async def _run(args: argparse.Namespace) -> int:
    from chainharness.dockerutil import ContainerOptions, JobError, JobRunner, build_container_spec
    from chainharness.types import ImageRef

    runner = JobRunner()
    try:
        spec = build_container_spec(
            ImageRef.parse(args.image),
            args.command,
            ContainerOptions(
                run_scope=args.scope,
                env=_parse_env(args.env),
                binds=args.volume,
                user=args.user,
                network_id=args.network,
                entrypoint=[args.entrypoint] if args.entrypoint is not None else None,
                auto_remove=args.rm,
            ),
        )
        kwargs = {} if args.timeout is None else {"timeout": args.timeout}
        result = await runner.run(spec, **kwargs)
    except JobError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 125  # docker's own "daemon error" exit status

    sys.stdout.buffer.write(result.stdout)
    sys.stdout.flush()
    sys.stderr.buffer.write(result.stderr)
    sys.stderr.flush()
    return result.exit_code


async def _sweep(args: argparse.Namespace) -> int:
    from chainharness.dockerutil import DockerEngine, sweep

    report = await sweep(DockerEngine(), args.scope)
    print(report.summary())
    for resource_id, err in report.failed.items():
        print(f"  {resource_id}: {err}", file=sys.stderr)
    return 0 if report.ok else 1


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="chainharness",
        description="Ephemeral container jobs for blockchain integration tests",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command_name", required=True)

    run = sub.add_parser("run", help="Run one command in a throwaway container")
    run.add_argument("image", help="Image reference, e.g. busybox:stable")
    run.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")
    run.add_argument("--scope", default=_DEFAULT_SCOPE, help="Cleanup label value")
    run.add_argument("-e", "--env", action="append", default=[], help="KEY=VALUE")
    run.add_argument("-v", "--volume", action="append", default=[], help="SRC:DST[:MODE]")
    run.add_argument("-u", "--user", default="", help="uid[:gid]")
    run.add_argument("--network", default=None)
    run.add_argument("--entrypoint", default=None)
    run.add_argument("--rm", action="store_true", help="Let the engine auto-remove the container")
    run.add_argument("--timeout", type=float, default=None, help="Seconds before giving up")

    sw = sub.add_parser("sweep", help="Remove containers, networks and volumes left by a run")
    sw.add_argument("scope", nargs="?", default=None, help="Run scope (default: everything)")

    args = parser.parse_args()
    if args.command_name == "run" and args.command[:1] == ["--"]:
        args.command = args.command[1:]

    from chainharness.config import get_settings
    from chainharness.logger import set_level

    set_level(args.log_level or get_settings().logging.level)

    match args.command_name:
        case "run":
            code = asyncio.run(_run(args))
        case "sweep":
            code = asyncio.run(_sweep(args))
        case _:
            parser.error(f"unknown command {args.command_name}")
    sys.exit(code)


if __name__ == "__main__":
    main()
