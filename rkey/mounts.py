"""Scratch mountpoint handling for the removable key device."""
import contextlib
import os
import threading
from subprocess import SubprocessError

from .errors import MountpointExistsError, UnmountError
from .executil import run, trace


def _unescape(field: str) -> str:
    return field.replace("\\040", " ").replace("\\011", "\t").replace("\\134", "\\")


def mountpoints(mountinfo: str = "/proc/self/mountinfo") -> list[str]:
    found: list[str] = []
    try:
        with open(mountinfo, "r", encoding="utf-8") as fh:
            for line in fh:
                parts = line.strip().split()
                if len(parts) < 5:
                    continue
                found.append(_unescape(parts[4]))
    except FileNotFoundError:
        return []
    except OSError as exc:
        trace("mounts.mountinfo_error", error=str(exc))
    return found


def is_mounted(path: str, mountinfo: str = "/proc/self/mountinfo") -> bool:
    target = os.path.realpath(path)
    return any(os.path.realpath(mp) == target for mp in mountpoints(mountinfo))


class ScratchMount:
    """The single process-wide mountpoint used to read key devices.

    At most one mount may be outstanding at a time.  :meth:`mount` takes
    the lock and :meth:`unmount` gives it back, so a second ``mount`` before
    the first ``unmount`` is a programming error and raises.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self.device: str | None = None

    def create(self) -> None:
        if os.path.lexists(self.path):
            raise MountpointExistsError(f"scratch mountpoint {self.path} already exists")
        try:
            os.makedirs(os.path.dirname(self.path) or "/", exist_ok=True)
            os.mkdir(self.path, 0o700)
        except OSError as exc:
            raise MountpointExistsError(
                f"cannot create scratch mountpoint {self.path}: {exc.strerror or exc}"
            ) from exc
        trace("mounts.scratch.created", path=self.path)

    def remove(self) -> None:
        if not os.path.isdir(self.path) or is_mounted(self.path):
            return
        with contextlib.suppress(OSError):
            os.rmdir(self.path)
            trace("mounts.scratch.removed", path=self.path)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def mount(self, device: str, fstype: str) -> bool:
        """Mount ``device`` read-only; return ``False`` when that fails."""

        if not self._lock.acquire(blocking=False):
            raise RuntimeError(f"scratch mountpoint {self.path} is already in use")
        cmd = ["mount", "-t", fstype, "-o", "ro", device, self.path]
        try:
            run(cmd, check=True)
        except (SubprocessError, OSError) as exc:
            trace(
                "mounts.mount_failed",
                device=device,
                fstype=fstype,
                rc=getattr(exc, "returncode", None),
                stderr=(getattr(exc, "stderr", None) or "").strip(),
            )
            try:
                if is_mounted(self.path):
                    self._umount()
            finally:
                self._lock.release()
            return False
        self.device = device
        trace("mounts.mounted", device=device, fstype=fstype, path=self.path)
        return True

    def _umount(self) -> None:
        try:
            r = run(["umount", self.path], check=False)
        except (SubprocessError, OSError) as exc:
            raise UnmountError(
                f"failed to unmount {self.path}: {exc}", mountpoint=self.path
            ) from exc
        if r.rc != 0:
            msg = (r.err or r.out or "").strip() or f"exit status {r.rc}"
            raise UnmountError(f"failed to unmount {self.path}: {msg}", mountpoint=self.path, rc=r.rc)
        trace("mounts.unmounted", path=self.path)

    def unmount(self) -> None:
        """Release the mount.  Raises :class:`UnmountError` on failure."""

        try:
            self._umount()
        finally:
            self.device = None
            if self._lock.locked():
                self._lock.release()
