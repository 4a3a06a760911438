"""fleetrun: Run a shell command across a fleet of SSH hosts in parallel."""

from .cancellation import CancellationController, RunState
from .command import build_command, join_command
from .config import Config, Defaults, InstanceConfig, RunOptions, load_config
from .dispatch import DispatchResult, Dispatcher, HostStatus
from .errors import (
    CancellationError,
    FleetrunError,
    PerHostTransportError,
    ResolutionError,
    WorkspaceError,
)
from .resolver import HostResolver, load_selection, save_selection
from .sshconfig import ensure_ssh_config
from .workspace import Workspace, new_run_id

__all__ = [
    "CancellationController",
    "RunState",
    "build_command",
    "join_command",
    "Config",
    "Defaults",
    "InstanceConfig",
    "RunOptions",
    "load_config",
    "DispatchResult",
    "Dispatcher",
    "HostStatus",
    "CancellationError",
    "FleetrunError",
    "PerHostTransportError",
    "ResolutionError",
    "WorkspaceError",
    "HostResolver",
    "load_selection",
    "save_selection",
    "ensure_ssh_config",
    "Workspace",
    "new_run_id",
]
