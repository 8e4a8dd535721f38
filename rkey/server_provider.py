"""Fetch a volume secret from a key server over ssh."""
from __future__ import annotations

import os
import shlex
import subprocess
from typing import Sequence

from .executil import run, trace


def identity_file(identity_path: str, slot: str) -> str:
    return f"{identity_path}-{slot}"


class ServerProvider:
    def __init__(
        self,
        identity_path: str,
        remote_command: str = "cat .rkey-{volume}",
        ssh_command: Sequence[str] = ("ssh",),
        ssh_options: Sequence[str] = (),
        timeout: float = 30.0,
    ):
        self.identity_path = identity_path
        self.remote_command = remote_command
        self.ssh_command = list(ssh_command)
        self.ssh_options = list(ssh_options)
        self.timeout = timeout

    def command(self, volume: str, address: str, key_file: str) -> list[str]:
        remote = self.remote_command.format(volume=shlex.quote(volume))
        return [*self.ssh_command, "-i", key_file, *self.ssh_options, address, remote]

    def fetch(self, volume: str, address: str, identity: str) -> bytearray | None:
        """Run the remote read command; the caller owns the returned buffer."""

        if not volume or not address or not identity:
            trace("server.skip", volume=volume, address=address, identity=identity)
            return None
        key_file = identity_file(self.identity_path, identity)
        if not os.path.isfile(key_file):
            trace("server.no_identity", address=address, identity=identity, path=key_file)
            return None
        cmd = self.command(volume, address, key_file)
        try:
            r = run(cmd, check=False, timeout=self.timeout, secret=True)
        except subprocess.TimeoutExpired:
            trace("server.timeout", address=address, timeout=self.timeout)
            return None
        except (subprocess.SubprocessError, OSError) as exc:
            trace("server.error", address=address, error=str(exc))
            return None
        if r.rc != 0:
            trace("server.failed", address=address, rc=r.rc, stderr=(r.err or "").strip())
            return None
        secret = bytearray((r.out or "").encode("utf-8", errors="surrogateescape"))
        r = None
        while secret and secret[-1:] in (b"\n", b"\r"):
            secret.pop()
        if not secret:
            trace("server.empty", address=address)
            return None
        trace("server.fetched", volume=volume, address=address)
        return secret
