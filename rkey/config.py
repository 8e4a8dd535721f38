"""Configuration loading for the unlock helper."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ConfigError
from .executil import trace
from .model import DeviceSlot, ProviderSlot, ServerSlot, SignalPaths
from .paths import rkey_config_path, rkey_mountpoint, rkey_pid_file

DEFAULT_SSH_OPTIONS = [
    "-o", "BatchMode=yes",
    "-o", "ConnectTimeout=10",
    "-o", "StrictHostKeyChecking=accept-new",
]


@dataclass(frozen=True)
class Config:
    key_path: str = "/etc/rkey/keys/rkey"
    identity_path: str = "/etc/rkey/ssh/id_rkey"
    mountpoint: str = field(default_factory=rkey_mountpoint)
    pid_file: str = field(default_factory=rkey_pid_file)
    slots: tuple = ()
    slot_count: int = 0
    poll_interval: float = 1.0
    backoff: float = 5.0
    wrong_key_backoff: float = 5.0
    ssh_timeout: float = 30.0
    ssh_command: tuple = ("ssh",)
    ssh_options: tuple = tuple(DEFAULT_SSH_OPTIONS)
    remote_command: str = "cat .rkey-{volume}"
    key_manager_command: tuple = ("zfs",)
    signals: SignalPaths = field(default_factory=SignalPaths)


def _str(entry: Dict[str, Any], key: str) -> str:
    value = entry.get(key)
    if value is None:
        return ""
    return str(value).strip()


def parse_slot(index: int, entry: Any) -> ProviderSlot:
    if not isinstance(entry, dict):
        raise ConfigError(f"slot {index}: expected an object, got {type(entry).__name__}")
    kind = _str(entry, "kind").lower()
    if kind == "device":
        return DeviceSlot(uuid=_str(entry, "uuid"), fstype=_str(entry, "fstype"))
    if kind == "server":
        return ServerSlot(address=_str(entry, "address"), identity=_str(entry, "identity"))
    raise ConfigError(f"slot {index}: unknown provider kind {kind!r}")


def _float(data: Dict[str, Any], key: str, default: float) -> float:
    if key not in data:
        return default
    try:
        value = float(data[key])
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a number") from exc
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return value


def _argv(data: Dict[str, Any], key: str, default: tuple) -> tuple:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{key} must be a string or a list of strings")
    return tuple(value)


def config_from_dict(data: Dict[str, Any]) -> Config:
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be an object")
    raw_slots = data.get("slots") or []
    if not isinstance(raw_slots, list):
        raise ConfigError("slots must be a list")
    slots: List[ProviderSlot] = [parse_slot(i + 1, entry) for i, entry in enumerate(raw_slots)]
    slot_count = data.get("slot_count", len(slots))
    if not isinstance(slot_count, int) or isinstance(slot_count, bool) or slot_count < 0:
        raise ConfigError("slot_count must be a non-negative integer")

    defaults = Config()
    raw_signals = data.get("signals") or {}
    if not isinstance(raw_signals, dict):
        raise ConfigError("signals must be an object")
    base_signals = SignalPaths()
    signals = SignalPaths(
        volume_name=raw_signals.get("volume_name", base_signals.volume_name),
        prompt_command=raw_signals.get("prompt_command", base_signals.prompt_command),
        unlock_complete=raw_signals.get("unlock_complete", base_signals.unlock_complete),
        unlock_complete_notify=raw_signals.get("unlock_complete_notify", base_signals.unlock_complete_notify),
    )

    remote_command = data.get("remote_command", defaults.remote_command)
    if "{volume}" not in str(remote_command):
        raise ConfigError("remote_command must contain a {volume} placeholder")

    return Config(
        key_path=data.get("key_path", defaults.key_path),
        identity_path=data.get("identity_path", defaults.identity_path),
        mountpoint=data.get("mountpoint", defaults.mountpoint),
        pid_file=data.get("pid_file", defaults.pid_file),
        slots=tuple(slots),
        slot_count=slot_count,
        poll_interval=_float(data, "poll_interval", defaults.poll_interval),
        backoff=_float(data, "backoff", defaults.backoff),
        wrong_key_backoff=_float(data, "wrong_key_backoff", defaults.wrong_key_backoff),
        ssh_timeout=_float(data, "ssh_timeout", defaults.ssh_timeout),
        ssh_command=_argv(data, "ssh_command", defaults.ssh_command),
        ssh_options=_argv(data, "ssh_options", defaults.ssh_options),
        remote_command=str(remote_command),
        key_manager_command=_argv(data, "key_manager_command", defaults.key_manager_command),
        signals=signals,
    )


def load_config(path: Optional[str] = None) -> Config:
    """Read the JSON configuration at ``path`` (or the default location)."""

    path = path or rkey_config_path()
    try:
        with open(os.path.expanduser(path), "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"configuration file {path} not found") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"failed to parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"failed to read {path}: {exc}") from exc
    config = config_from_dict(data)
    trace(
        "config.loaded",
        path=path,
        slot_count=config.slot_count,
        kinds=[slot.kind for slot in config.slots],
        mountpoint=config.mountpoint,
    )
    return config
