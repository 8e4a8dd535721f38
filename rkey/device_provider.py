"""Fetch a volume secret from a removable key device."""
from __future__ import annotations

import os

from .devices import device_for_uuid
from .executil import trace
from .mounts import ScratchMount

SECRET_PREFIX = ".rkey-"


def secret_filename(volume: str) -> str:
    return SECRET_PREFIX + volume


class DeviceProvider:
    def __init__(self, scratch: ScratchMount):
        self.scratch = scratch

    def secret_path(self, volume: str) -> str | None:
        """Path of the secret for ``volume`` on the mounted device.

        Nested dataset names such as ``rpool/secure`` map to a file below a
        ``.rkey-rpool`` directory; a name that would leave the mountpoint
        yields ``None``.
        """

        root = os.path.normpath(self.scratch.path)
        path = os.path.normpath(os.path.join(root, secret_filename(volume)))
        if os.path.isabs(volume) or os.path.commonpath([root, path]) != root or path == root:
            return None
        return path

    def _read_secret(self, volume: str, path: str) -> bytearray | None:
        try:
            with open(path, "rb") as fh:
                secret = bytearray(fh.read())
        except OSError as exc:
            trace("device.read_failed", volume=volume, error=exc.__class__.__name__)
            return None
        while secret and secret[-1:] in (b"\n", b"\r"):
            secret.pop()
        return secret or None

    def fetch(self, volume: str, uuid: str, fstype: str) -> bytearray | None:
        """Mount the device with ``uuid`` and read the secret for ``volume``.

        Returns ``None`` for every ordinary miss (no such device, mount
        refused, no secret file).  The caller owns the returned buffer.
        The device is always unmounted again before returning; if that
        fails :class:`~rkey.errors.UnmountError` propagates and the whole
        unlock run must stop.
        """

        path = self.secret_path(volume) if volume else None
        if not path or not uuid or not fstype:
            trace("device.skip", volume=volume, uuid=uuid, fstype=fstype)
            return None
        device = device_for_uuid(uuid)
        if not device:
            trace("device.absent", volume=volume, uuid=uuid)
            return None
        if not self.scratch.mount(device, fstype):
            return None
        try:
            secret = self._read_secret(volume, path)
        finally:
            self.scratch.unmount()
        trace("device.fetched", volume=volume, uuid=uuid, found=secret is not None)
        return secret
