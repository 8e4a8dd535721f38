"""CLI entrypoint for the boot-time unlock helper."""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from typing import Any, Dict, Optional

from .config import Config, load_config
from .coordinator import UnlockCoordinator
from .decryptor import Decryptor
from .device_provider import DeviceProvider
from .errors import AlreadyRunningError, ConfigError, MountpointExistsError, UnmountError
from .executil import append_jsonl, console, resolve_log_path, set_level, trace
from .keymanager import KeyManager
from .mounts import ScratchMount
from .prompt import PromptChannel
from .registry import ProviderRegistry
from .server_provider import ServerProvider

PROG = "rkey-unlock"

RESULT_CODES: Dict[str, int] = {
    "UNLOCK_DONE_OK": 0,
    "UNLOCK_COMPLETE_BEFORE_REQUEST_OK": 0,
    "FAIL_CONFIG": 1,
    "FAIL_MOUNTPOINT": 1,
    "FAIL_UNMOUNT": 1,
    "FAIL_ALREADY_RUNNING": 1,
    "FAIL_UNHANDLED": 1,
}

CLI_START_MONO = time.perf_counter()
JSON_OUTPUT_ENABLED = True


def _emit_result(
        kind: str,
        extra: Optional[Dict[str, Any]] = None,
        exit_code: Optional[int] = None,
) -> None:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    payload["timing_total_ms"] = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    log_path = resolve_log_path()
    if log_path:
        payload.setdefault("log_path", log_path)
        append_jsonl(log_path, payload)
    if JSON_OUTPUT_ENABLED:
        print(json.dumps(payload, sort_keys=True, separators=(",", ":")))
    code = RESULT_CODES.get(kind, 1) if exit_code is None else exit_code
    raise SystemExit(code)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, add_help=True)
    parser.add_argument("--config", default=None, help="JSON configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="log TRACE events")
    parser.add_argument("--json", dest="json", action="store_true", default=True)
    parser.add_argument("--no-json", dest="json", action="store_false")
    return parser


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _cmdline(pid: int) -> str:
    try:
        with open(f"/proc/{pid}/cmdline", "rb") as fh:
            return fh.read().replace(b"\0", b" ").decode("utf-8", errors="replace")
    except OSError:
        return ""


def read_pid_file(path: str) -> int | None:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read().strip()
    except OSError:
        return None
    return int(text) if text.isdigit() else None


def register_pid(path: str, marker: str = PROG) -> None:
    """Record our PID so ``rkey-stop`` can find us later."""

    existing = read_pid_file(path)
    if existing and existing != os.getpid() and _pid_alive(existing) and marker in _cmdline(existing):
        raise AlreadyRunningError(f"{marker} already running as pid {existing}")
    os.makedirs(os.path.dirname(path) or "/", exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(f"{os.getpid()}\n")
    trace("cli.pid_registered", path=path, pid=os.getpid())


def release_pid(path: str) -> None:
    if read_pid_file(path) == os.getpid():
        try:
            os.unlink(path)
        except OSError:
            pass


def build_coordinator(config: Config, scratch: ScratchMount) -> UnlockCoordinator:
    registry = ProviderRegistry(
        config.slots,
        config.slot_count,
        device=DeviceProvider(scratch),
        server=ServerProvider(
            config.identity_path,
            remote_command=config.remote_command,
            ssh_command=config.ssh_command,
            ssh_options=config.ssh_options,
            timeout=config.ssh_timeout,
        ),
    )
    return UnlockCoordinator(
        registry,
        Decryptor(config.key_path),
        KeyManager(config.key_manager_command),
        PromptChannel(config.signals),
        poll_interval=config.poll_interval,
        backoff=config.backoff,
        wrong_key_backoff=config.wrong_key_backoff,
    )


def _main_impl(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    global JSON_OUTPUT_ENABLED
    JSON_OUTPUT_ENABLED = bool(args.json)
    if args.verbose:
        set_level("TRACE")

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        console("FAIL", str(exc))
        _emit_result("FAIL_CONFIG", extra={"error": str(exc)})

    scratch = ScratchMount(config.mountpoint)
    try:
        coordinator = build_coordinator(config, scratch)
    except ConfigError as exc:
        console("FAIL", str(exc))
        _emit_result("FAIL_CONFIG", extra={"error": str(exc)})

    try:
        register_pid(config.pid_file)
    except AlreadyRunningError as exc:
        console("FAIL", str(exc))
        _emit_result("FAIL_ALREADY_RUNNING", extra={"error": str(exc)})

    try:
        scratch.create()
    except MountpointExistsError as exc:
        console("FAIL", str(exc))
        release_pid(config.pid_file)
        _emit_result("FAIL_MOUNTPOINT", extra={"error": str(exc), "mountpoint": config.mountpoint})

    try:
        outcome = coordinator.run()
    except UnmountError as exc:
        console("FAIL", f"{exc}; aborting")
        _emit_result(
            "FAIL_UNMOUNT",
            extra={"error": str(exc), "mountpoint": exc.mountpoint, "rc": exc.rc},
        )

    scratch.remove()
    release_pid(config.pid_file)
    kind = "UNLOCK_COMPLETE_BEFORE_REQUEST_OK" if outcome.complete_before_request else "UNLOCK_DONE_OK"
    _emit_result(kind, extra={"volumes": outcome.volumes, "notified": outcome.notified})
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001
        _emit_result("FAIL_UNHANDLED", extra={"error": str(exc)})
    return 0


if __name__ == "__main__":
    sys.exit(main())
