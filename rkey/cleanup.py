"""Stop a lingering ``rkey-unlock`` instance (``rkey-stop``).

Run once the boot has moved on, e.g. from the initramfs bottom scripts.  The
recorded PID is only signalled when its command line still looks like ours,
so a recycled PID is left alone.
"""

from __future__ import annotations

import argparse
import os
import signal
import sys
from typing import Optional

from . import cli
from .config import load_config
from .errors import ConfigError
from .executil import console, trace
from .mounts import ScratchMount
from .paths import rkey_mountpoint, rkey_pid_file

RESULT_CODES = {
    "STOP_OK": 0,
    "STOP_NOT_RUNNING": 0,
    "FAIL_STOP": 1,
    "FAIL_UNHANDLED": 1,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rkey-stop", add_help=True)
    parser.add_argument("--config", default=None)
    parser.add_argument("--pid-file", default=None)
    parser.add_argument("--match", default=cli.PROG, help="expected command line marker")
    parser.add_argument("--json", dest="json", action="store_true", default=True)
    parser.add_argument("--no-json", dest="json", action="store_false")
    return parser


def _locations(args) -> tuple[str, str]:
    pid_file, mountpoint = rkey_pid_file(), rkey_mountpoint()
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        trace("cleanup.config_unavailable", error=str(exc))
    else:
        pid_file, mountpoint = config.pid_file, config.mountpoint
    return args.pid_file or pid_file, mountpoint


def stop(pid_file: str, match: str) -> str:
    pid = cli.read_pid_file(pid_file)
    if not pid or pid == os.getpid():
        return "STOP_NOT_RUNNING"
    if not cli._pid_alive(pid) or match not in cli._cmdline(pid):
        trace("cleanup.stale_pid", pid=pid, pid_file=pid_file)
        _unlink(pid_file)
        return "STOP_NOT_RUNNING"
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        _unlink(pid_file)
        return "STOP_NOT_RUNNING"
    except OSError as exc:
        console("FAIL", f"cannot signal pid {pid}: {exc}")
        return "FAIL_STOP"
    trace("cleanup.signalled", pid=pid)
    _unlink(pid_file)
    return "STOP_OK"


def _unlink(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        pass


def _main_impl(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cli.JSON_OUTPUT_ENABLED = bool(args.json)
    pid_file, mountpoint = _locations(args)
    kind = stop(pid_file, args.match)
    if kind != "FAIL_STOP":
        ScratchMount(mountpoint).remove()
    cli._emit_result(kind, extra={"pid_file": pid_file}, exit_code=RESULT_CODES[kind])
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001
        cli._emit_result("FAIL_UNHANDLED", extra={"error": str(exc)}, exit_code=1)
    return 0


if __name__ == "__main__":
    sys.exit(main())
