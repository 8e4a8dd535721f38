from __future__ import annotations

"""Subprocess wrapper and JSONL trace logging."""

import datetime as _dt
import json
import os
import subprocess
import sys
import time
from typing import Sequence

from .paths import rkey_logs_dir


LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None
LOG_NAME = "unlock.jsonl"
REDACTED = "<redacted>"


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    return [
        rkey_logs_dir(),
        "/run/rkey/logs",
        "/tmp/rkey-logs",
    ]


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, mode=0o700, exist_ok=True)
            LOG_PATH = os.path.join(d_expanded, LOG_NAME)
            return LOG_PATH
        except Exception:
            continue
    LOG_PATH = None
    return None


def resolve_log_path() -> str | None:
    """Return the active log path, creating directories when possible."""

    return _ensure_logger()


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("RKEY_LOG_LEVEL", "INFO").upper()


def set_level(level: str) -> None:
    global LOG_LEVEL
    LOG_LEVEL = level.upper() if level.upper() in LEVELS else "INFO"


def _write_jsonl(obj: dict):
    path = _ensure_logger()
    try:
        if path:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(obj) + "\n")
    except Exception:
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, 100)
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    _write_jsonl(rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def run(
    cmd: Sequence[str],
    check: bool = True,
    timeout: float = 60.0,
    env: dict | None = None,
    input_text: str | None = None,
    secret: bool = False,
) -> Result:
    """Run ``cmd`` and capture its output.

    With ``secret=True`` the captured stdout is never written to the log;
    ``input_text`` is never logged at all.  ``subprocess.TimeoutExpired``
    propagates to the caller unchanged.
    """

    trace("exec.start", cmd=list(cmd))
    started = time.time()
    proc = subprocess.run(
        list(cmd),
        capture_output=True,
        text=True,
        timeout=timeout,
        env=(env or os.environ).copy(),
        input=input_text,
    )
    dur = time.time() - started
    trace(
        "exec.done",
        cmd=list(cmd),
        rc=proc.returncode,
        dur=dur,
        out=REDACTED if secret else proc.stdout,
        err=proc.stderr,
    )
    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(
            proc.returncode, cmd, None if secret else proc.stdout, proc.stderr
        )
    return Result(proc.returncode, proc.stdout, proc.stderr, dur)


def udev_settle():
    try:
        subprocess.run(["udevadm", "settle"], check=False, timeout=30)
    except Exception:
        pass


def append_jsonl(path: str, obj: dict):
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")
    except Exception:
        pass


def console(level: str, message: str, **fields):
    """Print a one-line operator message to stderr and record it."""

    print(f"[{level.upper()}] {message}", file=sys.stderr, flush=True)
    log(level, "console", message=message, **fields)
