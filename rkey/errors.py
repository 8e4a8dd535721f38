"""Error taxonomy for the unlock helper.

Only the errors defined here ever escape a slot attempt.  Everything else a
provider runs into is converted to an absent secret where it happens.
"""


class RkeyError(RuntimeError):
    """Base class for errors that terminate the unlock process."""


class ConfigError(RkeyError):
    """The configuration file or slot table is unusable."""


class MountpointExistsError(RkeyError):
    """The scratch mountpoint already exists or could not be created."""


class UnmountError(RkeyError):
    """The scratch mountpoint could not be released; its state is unknown."""

    def __init__(self, message: str, *, mountpoint: str | None = None, rc: int | None = None) -> None:
        super().__init__(message)
        self.mountpoint = mountpoint
        self.rc = rc


class AlreadyRunningError(RkeyError):
    """Another unlock instance is registered in the PID file."""
