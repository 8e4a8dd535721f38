"""Ordered provider slots and their dispatch."""
from __future__ import annotations

from typing import Sequence

from .device_provider import DeviceProvider
from .errors import ConfigError
from .executil import trace
from .model import DeviceSlot, ProviderSlot, ServerSlot
from .server_provider import ServerProvider


class ProviderRegistry:
    """Maps slot indices 1..N onto configured providers.

    The slot table is fixed at construction; its length has to match the
    configured total or construction fails, so no slot is ever silently
    skipped.
    """

    def __init__(
        self,
        slots: Sequence[ProviderSlot],
        total: int,
        device: DeviceProvider,
        server: ServerProvider,
    ):
        if len(slots) != total:
            raise ConfigError(f"{len(slots)} provider slots registered but slot_count is {total}")
        for slot in slots:
            if not isinstance(slot, (DeviceSlot, ServerSlot)):
                raise ConfigError(f"unsupported provider slot {slot!r}")
        self.slots = tuple(slots)
        self.total = total
        self.device = device
        self.server = server

    def __len__(self) -> int:
        return self.total

    def resolve_slot(self, volume: str, index: int) -> bytearray | None:
        if not isinstance(index, int) or index < 1 or index > self.total:
            trace("registry.out_of_range", slot=index, total=self.total)
            return None
        slot = self.slots[index - 1]
        trace("registry.dispatch", slot=index, kind=slot.kind, volume=volume)
        if isinstance(slot, DeviceSlot):
            return self.device.fetch(volume, slot.uuid, slot.fstype)
        return self.server.fetch(volume, slot.address, slot.identity)
