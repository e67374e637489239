"""Naming helpers for containers, hostnames and published ports."""

from __future__ import annotations

import random
import re
import string
from typing import Any

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")

# Hostnames longer than this are rejected by the engine.
_MAX_HOSTNAME = 64
_HOSTNAME_KEEP = 30


def root_user() -> str:
    return "0:0"


def rand_lower_case_letter_string(length: int) -> str:
    return "".join(random.choice(string.ascii_lowercase) for _ in range(length))


def sanitize_container_name(name: str) -> str:
    """Replace every character Docker rejects in container names with ``_``."""
    return _INVALID_NAME_CHARS.sub("_", name)


def condense_host_name(name: str) -> str:
    """Shorten an over-long hostname to ``<first 30>_._<last 30>``."""
    if len(name) < _MAX_HOSTNAME:
        return name
    return f"{name[:_HOSTNAME_KEEP]}_._{name[-_HOSTNAME_KEEP:]}"


def get_host_port(inspect: dict[str, Any], port_id: str) -> str:
    """Return ``HostIP:HostPort`` of the first binding for *port_id*, or ``""``.

    *inspect* is one element of ``docker inspect`` output.
    """
    network = inspect.get("NetworkSettings") or {}
    bindings = (network.get("Ports") or {}).get(port_id) or []
    if not bindings:
        return ""
    first = bindings[0]
    return f"{first.get('HostIp', first.get('HostIP', ''))}:{first.get('HostPort', '')}"
