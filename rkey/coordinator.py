"""The unlock state machine.

For every volume the boot prompt asks for, walk the provider slots in
ascending order, turn each remote secret into a passphrase, hand it to the
key manager and check whether the key became available.  All waits are
plain polls of the signal files; the unlock-complete file ends the run at
any of them.
"""
from __future__ import annotations

import enum
import time
from typing import Callable

from .decryptor import Decryptor, wipe
from .executil import console, log, trace
from .keymanager import KeyManager
from .model import Outcome, UnlockSession
from .prompt import PromptChannel
from .registry import ProviderRegistry


class State(enum.Enum):
    AWAITING_VOLUME_REQUEST = "awaiting_volume_request"
    ATTEMPTING_SLOT = "attempting_slot"
    VERIFYING_ACCEPTANCE = "verifying_acceptance"
    VOLUME_SATISFIED = "volume_satisfied"
    ALL_VOLUMES_COMPLETE = "all_volumes_complete"


class UnlockCoordinator:
    def __init__(
        self,
        registry: ProviderRegistry,
        decryptor: Decryptor,
        key_manager: KeyManager,
        channel: PromptChannel,
        *,
        poll_interval: float = 1.0,
        backoff: float = 5.0,
        wrong_key_backoff: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.registry = registry
        self.decryptor = decryptor
        self.key_manager = key_manager
        self.channel = channel
        self.poll_interval = poll_interval
        self.backoff = backoff
        self.wrong_key_backoff = wrong_key_backoff
        self.sleep = sleep
        self.state = State.AWAITING_VOLUME_REQUEST
        self.session: UnlockSession | None = None

    def _enter(self, state: State, **fields) -> None:
        self.state = state
        trace("coordinator.state", state=state.value, **fields)

    def _wait(self, seconds: float) -> bool:
        """Sleep ``seconds`` in poll-sized steps; True once unlocking is complete."""

        if self.channel.unlock_complete():
            return True
        remaining = seconds
        step = self.poll_interval if self.poll_interval > 0 else seconds
        while True:
            chunk = min(step, remaining) if remaining > 0 else 0
            self.sleep(chunk)
            if self.channel.unlock_complete():
                return True
            remaining -= chunk
            if remaining <= 0:
                return False

    def await_volume(self) -> str | None:
        self._enter(State.AWAITING_VOLUME_REQUEST)
        while True:
            if self.channel.unlock_complete():
                return None
            volume = self.channel.requested_volume()
            if volume:
                return volume
            if self._wait(self.poll_interval):
                return None

    def attempt(self, session: UnlockSession) -> bool:
        """Try the current slot once and report whether the key is now available."""

        self._enter(State.ATTEMPTING_SLOT, volume=session.volume, slot=session.slot)
        secret = self.registry.resolve_slot(session.volume, session.slot)
        passphrase = None
        try:
            if secret:
                passphrase = self.decryptor.decrypt(session.volume, secret)
            if passphrase:
                self.key_manager.submit(session.volume, passphrase)
                session.submitted = True
        finally:
            if isinstance(secret, bytearray):
                wipe(secret)
            wipe(passphrase)
            secret = passphrase = None
        self._enter(
            State.VERIFYING_ACCEPTANCE,
            volume=session.volume,
            slot=session.slot,
            submitted=session.submitted,
        )
        return self.key_manager.is_available(session.volume)

    def unlock_volume(self, volume: str) -> bool:
        """Cycle the provider chain until ``volume`` is unlocked.

        Returns False when the unlock-complete file shows up first.
        """

        session = UnlockSession(volume=volume)
        self.session = session
        while True:
            if self.channel.unlock_complete():
                return False
            if self.attempt(session):
                session.satisfied = True
                log("INFO", "coordinator.accepted", volume=volume, slot=session.slot)
                return True
            delay = self.backoff
            if session.submitted:
                console(
                    "WARN",
                    f"key from provider slot {session.slot} was rejected for {volume}",
                    volume=volume,
                    slot=session.slot,
                )
                delay = self.wrong_key_backoff
            wrapped = session.advance(len(self.registry))
            if wrapped:
                trace("coordinator.chain_exhausted", volume=volume, passes=session.passes)
            if self._wait(delay):
                return False

    def volume_satisfied(self, volume: str) -> bool:
        """Dismiss the prompt and wait for the next request.

        Returns False when the unlock-complete file shows up first.
        """

        self._enter(State.VOLUME_SATISFIED, volume=volume)
        if self.channel.requested_volume() == volume:
            self.channel.kill_prompt()
        while True:
            if self.channel.unlock_complete():
                return False
            if self.channel.requested_volume() != volume:
                return True
            if self._wait(self.poll_interval):
                return False

    def run(self) -> Outcome:
        outcome = Outcome()
        while True:
            volume = self.await_volume()
            if volume is None:
                outcome.complete_before_request = not outcome.volumes
                break
            outcome.last_volume = volume
            if not self.unlock_volume(volume):
                break
            outcome.volumes.append(volume)
            if not self.volume_satisfied(volume):
                break
        self._enter(State.ALL_VOLUMES_COMPLETE, volumes=outcome.volumes)
        self.session = None
        outcome.notified = self.channel.notify_complete()
        return outcome
