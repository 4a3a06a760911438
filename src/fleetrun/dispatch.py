"""SSH fan-out engine for fleetrun."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

import asyncssh

from .errors import PerHostTransportError
from .workspace import Workspace

logger = logging.getLogger(__name__)


class HostStatus(Enum):
    """Status of a host's execution."""

    PENDING = "pending"
    CONNECTING = "connecting"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class DispatchResult:
    """Outcome of running the command on one host."""

    host: str
    status: HostStatus = HostStatus.PENDING
    exit_status: int | None = None
    output_lines: list[str] = field(default_factory=list)
    log_file: Path | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == HostStatus.SUCCESS


# Type alias for output callback
OutputCallback = Callable[[str, str], None]  # (host, line) -> None
StatusCallback = Callable[[str, HostStatus], None]  # (host, status) -> None


class Dispatcher:
    """Runs one command on many hosts at once, one connection per host."""

    def __init__(
        self,
        workspace: Workspace,
        width: int | None = None,
        connect_timeout: float = 30,
        on_output: OutputCallback | None = None,
        on_status: StatusCallback | None = None,
    ):
        if width is not None and width <= 0:
            raise ValueError(f"width must be > 0, got {width}")
        self.workspace = workspace
        self.width = width
        self.connect_timeout = connect_timeout
        self.on_output = on_output
        self.on_status = on_status
        self.results: dict[str, DispatchResult] = {}

    def _emit_output(self, host: str, line: str) -> None:
        """Record an output line for a host."""
        result = self.results[host]
        result.output_lines.append(line)

        if result.log_file:
            try:
                with open(result.log_file, "a") as f:
                    f.write(line + "\n")
            except OSError as e:
                # Output is still kept in memory
                logger.warning("Cannot write log for %s to %s: %s", host, result.log_file, e)
                result.log_file = None

        if self.on_output:
            self.on_output(host, line)

    def _emit_status(self, host: str, status: HostStatus) -> None:
        """Record a status change for a host."""
        self.results[host].status = status
        if self.on_status:
            self.on_status(host, status)

    async def run_all(self, hosts: tuple[str, ...], command: str) -> dict[str, DispatchResult]:
        """Run command on every host and wait for all of them.

        Per-host failures are recorded in the results and never raised. If
        this coroutine is cancelled, every worker is cancelled and awaited
        before CancelledError propagates.
        """
        for host in hosts:
            self.results[host] = DispatchResult(host=host, log_file=self.workspace.log_file(host))

        width = self.width or len(hosts)
        semaphore = asyncio.Semaphore(width)
        logger.debug("Dispatching to %d hosts (width=%d)", len(hosts), width)

        tasks = [
            asyncio.create_task(self._run_host(host, command, semaphore), name=host)
            for host in hosts
        ]
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            # Wait until every worker has closed its connection
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for host, outcome in zip(hosts, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(
                outcome, asyncio.CancelledError
            ):
                logger.error("Unexpected error on %s: %r", host, outcome)
                self.results[host].error = f"Unexpected error: {outcome!r}"
                self._emit_status(host, HostStatus.FAILED)

        return self.results

    async def _run_host(self, host: str, command: str, semaphore: asyncio.Semaphore) -> None:
        """Run the command on one host, recording the outcome."""
        result = self.results[host]

        try:
            async with semaphore:
                self._emit_status(host, HostStatus.CONNECTING)
                result.exit_status = await self._connect_and_run(host, command)
        except PerHostTransportError as e:
            result.error = e.message
            self._emit_output(host, f"ERROR: {e.message}")
            self._emit_status(host, HostStatus.FAILED)
            return
        except asyncio.CancelledError:
            self._emit_status(host, HostStatus.CANCELLED)
            raise

        if result.exit_status == 0:
            self._emit_status(host, HostStatus.SUCCESS)
        else:
            result.error = f"Command exited with status {result.exit_status}"
            self._emit_status(host, HostStatus.FAILED)

    async def _connect_and_run(self, host: str, command: str) -> int | None:
        """Open a connection, run the command and stream its output.

        Raises:
            PerHostTransportError: On connection, authentication or channel failure
        """
        try:
            async with asyncssh.connect(
                host,
                config=[str(self.workspace.ssh_config)],
                known_hosts=None,  # No strict host key checking
                preferred_auth="publickey",
                connect_timeout=self.connect_timeout,
            ) as conn:
                self._emit_status(host, HostStatus.RUNNING)
                return await self._run_command(conn, host, command)
        except asyncssh.Error as e:
            raise PerHostTransportError(host, f"SSH error: {e}") from e
        except (OSError, asyncio.TimeoutError) as e:
            raise PerHostTransportError(host, f"Connection error: {str(e) or type(e).__name__}") from e

    async def _run_command(
        self, conn: asyncssh.SSHClientConnection, host: str, command: str
    ) -> int | None:
        """Run the command with stderr merged into stdout. Returns the exit status."""
        async with conn.create_process(
            command, stderr=asyncssh.STDOUT, encoding="utf-8", errors="replace"
        ) as proc:
            try:
                while True:
                    line = await proc.stdout.readline()
                    if not line:
                        break
                    self._emit_output(host, line.rstrip("\n\r"))

                await proc.wait()
            except asyncio.CancelledError:
                try:
                    proc.kill()
                except (asyncssh.Error, OSError) as e:
                    logger.debug("Could not kill remote process on %s: %s", host, e)
                raise

            return proc.exit_status
