"""Boundary to the key manager (the ``zfs`` command)."""
from __future__ import annotations

import subprocess
from typing import Sequence

from .executil import run, trace

AVAILABLE = "available"


class KeyManager:
    def __init__(self, command: Sequence[str] = ("zfs",), timeout: float = 60.0):
        self.command = list(command)
        self.timeout = timeout

    def submit(self, volume: str, passphrase: bytearray) -> None:
        """Hand ``passphrase`` to ``zfs load-key``; the outcome is not inspected here."""

        try:
            r = run(
                [*self.command, "load-key", volume],
                check=False,
                timeout=self.timeout,
                input_text=bytes(passphrase).decode("utf-8", errors="surrogateescape"),
                secret=True,
            )
        except (subprocess.SubprocessError, OSError) as exc:
            trace("keymanager.submit_error", volume=volume, error=str(exc))
            return
        trace("keymanager.submitted", volume=volume, rc=r.rc)

    def key_status(self, volume: str) -> str:
        try:
            r = run(
                [*self.command, "get", "-H", "-o", "value", "keystatus", volume],
                check=False,
                timeout=self.timeout,
            )
        except (subprocess.SubprocessError, OSError) as exc:
            trace("keymanager.status_error", volume=volume, error=str(exc))
            return ""
        if r.rc != 0:
            return ""
        return (r.out or "").strip()

    def is_available(self, volume: str) -> bool:
        return self.key_status(volume) == AVAILABLE
