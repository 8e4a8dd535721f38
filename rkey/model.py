from dataclasses import dataclass, field
from typing import Optional, Union


@dataclass(frozen=True)
class DeviceSlot:
    uuid: str
    fstype: str
    kind: str = field(default="device", init=False)


@dataclass(frozen=True)
class ServerSlot:
    address: str
    identity: str
    kind: str = field(default="server", init=False)


ProviderSlot = Union[DeviceSlot, ServerSlot]


@dataclass(frozen=True)
class SignalPaths:
    volume_name: str = "/run/zfs_fs_name"
    prompt_command: str = "/run/zfs_console_askpwd_cmd"
    unlock_complete: str = "/run/zfs_unlock_complete"
    unlock_complete_notify: str = "/run/zfs_unlock_complete_notify"


@dataclass
class UnlockSession:
    volume: str
    slot: int = 1
    satisfied: bool = False
    submitted: bool = False
    passes: int = 0

    def advance(self, total: int) -> bool:
        """Move to the next slot; return True when the chain wrapped around."""

        self.slot += 1
        self.submitted = False
        if self.slot > total:
            self.slot = 1
            self.passes += 1
            return True
        return False


@dataclass
class Outcome:
    volumes: list = field(default_factory=list)
    complete_before_request: bool = False
    notified: bool = False
    last_volume: Optional[str] = None
