"""Per-run workspace: host list, command, transport config snapshot, output logs."""

from __future__ import annotations

import logging
import os
import re
import shutil
from datetime import datetime
from pathlib import Path

from .errors import WorkspaceError

logger = logging.getLogger(__name__)

HOSTS_FILE = "hosts"
COMMANDS_FILE = "commands.txt"
SSH_CONFIG_FILE = "sshconfig"
LOGS_DIR = "logs"


def new_run_id() -> str:
    """Timestamp-based run identifier, unique per process start."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{os.getpid()}"


class Workspace:
    """A run's temporary directory.

    The workspace owns everything under ``path`` until ``finalize`` either
    deletes it or moves it to the logs root.
    """

    def __init__(self, run_id: str, path: Path):
        self.run_id = run_id
        self.path = path
        self.finalized = False
        self.retained_at: Path | None = None
        self._log_files: dict[str, Path] = {}

    @property
    def hosts_file(self) -> Path:
        return self.path / HOSTS_FILE

    @property
    def commands_file(self) -> Path:
        return self.path / COMMANDS_FILE

    @property
    def ssh_config(self) -> Path:
        return self.path / SSH_CONFIG_FILE

    @property
    def logs_dir(self) -> Path:
        return self.path / LOGS_DIR

    def log_file(self, host: str) -> Path:
        """Output log for host. Hosts whose sanitized names collide get a numeric suffix."""
        if host not in self._log_files:
            stem = re.sub(r"[^A-Za-z0-9._-]", "_", host)
            taken = set(self._log_files.values())
            path = self.logs_dir / f"{stem}.log"
            n = 2
            while path in taken:
                path = self.logs_dir / f"{stem}-{n}.log"
                n += 1
            self._log_files[host] = path
        return self._log_files[host]

    @classmethod
    def create(
        cls,
        run_id: str,
        root: Path,
        hosts: tuple[str, ...],
        command: str,
        ssh_config: Path,
    ) -> Workspace:
        """Allocate the workspace and write the run's inputs into it.

        The transport config is copied so later changes to the source file do
        not affect the run.

        Raises:
            WorkspaceError: If anything could not be created or written
        """
        workspace = cls(run_id, Path(root) / run_id)
        try:
            workspace.path.mkdir(parents=True)
        except OSError as e:
            raise WorkspaceError(f"Cannot create workspace {workspace.path}: {e}") from e

        try:
            workspace.hosts_file.write_text("".join(f"{host}\n" for host in hosts))
            workspace.commands_file.write_text(command + "\n")
            shutil.copy(ssh_config, workspace.ssh_config)
            workspace.logs_dir.mkdir()
        except OSError as e:
            # Don't leave a half-written workspace behind
            shutil.rmtree(workspace.path, ignore_errors=True)
            raise WorkspaceError(f"Cannot create workspace {workspace.path}: {e}") from e

        logger.debug("Created workspace %s", workspace.path)
        return workspace

    def finalize(self, retain: bool, logs_root: Path | None = None) -> None:
        """Delete the workspace, or move it under ``logs_root/<run_id>`` if retained.

        Failures are logged, never raised. Calling it again does nothing.
        """
        if self.finalized:
            return
        self.finalized = True

        if not retain:
            try:
                shutil.rmtree(self.path)
                logger.debug("Removed workspace %s", self.path)
            except OSError as e:
                logger.warning("Failed to remove workspace %s: %s", self.path, e)
            return

        if logs_root is None:
            logger.warning("No logs directory configured, leaving workspace at %s", self.path)
            self.retained_at = self.path
            return

        target = Path(logs_root) / self.run_id
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(self.path), str(target))
            self.retained_at = target
            logger.info("Run logs kept at %s", target)
        except OSError as e:
            logger.warning("Failed to move workspace %s to %s: %s", self.path, target, e)
