"""Signal-driven cancellation and guaranteed workspace cleanup."""

from __future__ import annotations

import asyncio
import logging
import signal
from enum import Enum
from pathlib import Path
from typing import Any, Coroutine, TypeVar

from .errors import CancellationError
from .workspace import Workspace

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunState(Enum):
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    CLEANING = "cleaning"
    EXITED = "exited"


class CancellationController:
    """Runs the dispatch and finalizes the workspace on every exit path.

    SIGINT and SIGTERM (or a call to ``interrupt``) cancel the dispatch task
    at once. The dispatcher cancels and awaits its workers, then the
    workspace is finalized according to the retention flag.
    """

    def __init__(
        self,
        workspace: Workspace,
        retain: bool = False,
        logs_root: Path | None = None,
        signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM),
    ):
        self.workspace = workspace
        self.retain = retain
        self.logs_root = logs_root
        self.signals = signals
        self.state = RunState.RUNNING
        self._task: asyncio.Task[Any] | None = None

    def interrupt(self, signum: int | None = None) -> None:
        """Cancel the running dispatch. Ignored unless still running."""
        if self.state != RunState.RUNNING:
            return
        if signum is not None:
            logger.warning("Received %s, cancelling run", signal.Signals(signum).name)
        self.state = RunState.INTERRUPTED
        if self._task is not None:
            self._task.cancel()

    async def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await coro under signal protection, then finalize the workspace.

        Raises:
            CancellationError: If the run was interrupted
        """
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []

        try:
            for sig in self.signals:
                loop.add_signal_handler(sig, self.interrupt, sig)
                installed.append(sig)
            self._task = asyncio.ensure_future(coro)
            if self.state == RunState.INTERRUPTED:
                self._task.cancel()
            return await self._task
        except asyncio.CancelledError:
            if self.state == RunState.INTERRUPTED:
                raise CancellationError("Run cancelled") from None
            raise
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            if self._task is None:
                # Never scheduled
                coro.close()
            self.state = RunState.CLEANING
            self.workspace.finalize(self.retain, self.logs_root)
            self.state = RunState.EXITED
