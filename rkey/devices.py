"""Block device lookup by filesystem UUID."""
from __future__ import annotations

import os
import subprocess

from .executil import run, udev_settle, trace

BY_UUID_DIR = "/dev/disk/by-uuid"


def _by_uuid_link(uuid: str) -> str | None:
    link = os.path.join(BY_UUID_DIR, uuid)
    if not os.path.exists(link):
        return None
    try:
        return os.path.realpath(link)
    except OSError:
        return None


def device_for_uuid(uuid: str) -> str | None:
    """Return the device node carrying ``uuid`` or ``None`` when absent.

    A missing device is the common case (the key stick is not plugged in),
    so nothing here raises.  udev gets a chance to settle first because
    removable media may still be enumerating this early in boot.
    """

    if not uuid or "/" in uuid:
        return None
    udev_settle()
    path = _by_uuid_link(uuid)
    if path:
        trace("devices.uuid.link", uuid=uuid, device=path)
        return path
    try:
        r = run(["blkid", "-U", uuid], check=False)
    except (OSError, subprocess.SubprocessError) as exc:
        trace("devices.uuid.blkid_error", uuid=uuid, error=str(exc))
        return None
    lines = (r.out or "").strip().splitlines()
    if r.rc != 0 or not lines:
        trace("devices.uuid.missing", uuid=uuid, rc=r.rc)
        return None
    trace("devices.uuid.blkid", uuid=uuid, device=lines[0])
    return lines[0]

