"""Signal files shared with the boot prompt, and prompt process signalling."""
from __future__ import annotations

import os
import signal
import stat

from .executil import trace
from .model import SignalPaths


def _read_text(path: str) -> str | None:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as fh:
            value = fh.read().strip()
    except OSError:
        return None
    return value or None


def process_listing(proc_root: str = "/proc") -> list[tuple[int, str]]:
    """Return ``(pid, args)`` for every readable process under ``proc_root``."""

    listing: list[tuple[int, str]] = []
    try:
        entries = os.listdir(proc_root)
    except OSError:
        return listing
    for name in entries:
        if not name.isdigit():
            continue
        try:
            with open(os.path.join(proc_root, name, "cmdline"), "rb") as fh:
                raw = fh.read()
        except OSError:
            continue
        args = raw.replace(b"\0", b" ").decode("utf-8", errors="replace").strip()
        if args:
            listing.append((int(name), args))
    return listing


def find_pids(pattern: str, listing: list[tuple[int, str]], exclude: tuple = ()) -> list[int]:
    pids: list[int] = []
    for pid, args in listing:
        if pid == 1 or pid in exclude:
            continue
        if pattern in args:
            pids.append(pid)
    return pids


class PromptChannel:
    def __init__(self, paths: SignalPaths, proc_root: str = "/proc"):
        self.paths = paths
        self.proc_root = proc_root
        self.notified = False

    def requested_volume(self) -> str | None:
        return _read_text(self.paths.volume_name)

    def prompt_command(self) -> str | None:
        return _read_text(self.paths.prompt_command)

    def unlock_complete(self) -> bool:
        return os.path.exists(self.paths.unlock_complete)

    def notify_complete(self) -> bool:
        """Tell the consumer on the notify channel that we are done.

        Only written when the channel exists; a FIFO blocks until its
        reader picks the message up.  Subsequent calls do nothing.
        """

        if self.notified:
            return False
        self.notified = True
        path = self.paths.unlock_complete_notify
        try:
            st = os.stat(path)
        except FileNotFoundError:
            trace("prompt.notify.absent", path=path)
            return False
        except OSError as exc:
            trace("prompt.notify.error", path=path, error=str(exc))
            return False
        try:
            with open(path, "w", encoding="utf-8") as fh:
                fh.write("ok\n")
        except OSError as exc:
            trace("prompt.notify.error", path=path, error=str(exc))
            return False
        trace("prompt.notify.sent", path=path, fifo=stat.S_ISFIFO(st.st_mode))
        return True

    def kill_prompt(self) -> list[int]:
        """Terminate the console prompt process; every failure is ignored."""

        command = self.prompt_command()
        if not command:
            trace("prompt.kill.no_command")
            return []
        killed: list[int] = []
        for pid in find_pids(command, process_listing(self.proc_root), exclude=(os.getpid(),)):
            try:
                os.kill(pid, signal.SIGTERM)
            except OSError as exc:
                trace("prompt.kill.failed", pid=pid, error=str(exc))
                continue
            killed.append(pid)
        trace("prompt.kill", command=command, pids=killed)
        return killed
