"""Exception types for fleetrun."""


class FleetrunError(Exception):
    """Base class for fleetrun errors."""


class ResolutionError(FleetrunError):
    """The selector matched no hosts."""


class WorkspaceError(FleetrunError):
    """The run workspace could not be created or written."""


class PerHostTransportError(FleetrunError):
    """A single host's connection or remote command failed.

    Never raised out of the dispatcher; its text is stored in that host's
    DispatchResult.
    """

    def __init__(self, host: str, message: str):
        super().__init__(f"{host}: {message}")
        self.host = host
        self.message = message


class CancellationError(FleetrunError):
    """The run was interrupted before dispatch completed."""
