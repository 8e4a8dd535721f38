from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_BASE = "/run/rkey"
_DEFAULT_CONFIG = "/etc/rkey/rkey.json"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def rkey_base_path() -> str:
    """Return the runtime directory for rkey state.

    The location can be overridden via the ``RKEY_BASE_PATH`` environment
    variable.  Early boot only guarantees a writable ``/run``, so that is
    where the default lives.
    """

    override = os.environ.get("RKEY_BASE_PATH")
    if override:
        return _expand(override)
    return _expand(_DEFAULT_BASE)


def rkey_logs_dir() -> str:
    return str(Path(rkey_base_path()) / "logs")


def rkey_pid_file() -> str:
    return str(Path(rkey_base_path()) / "rkey.pid")


def rkey_mountpoint() -> str:
    return str(Path(rkey_base_path()) / "mnt")


def rkey_config_path() -> str:
    override = os.environ.get("RKEY_CONFIG")
    if override:
        return _expand(override)
    return _DEFAULT_CONFIG
