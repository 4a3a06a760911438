"""Shared fixtures: an in-memory stand-in for asyncssh connections."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import patch

import asyncssh
import pytest

from fleetrun.workspace import Workspace


class FakeStream:
    """Lines may be bytes; they are decoded the way the process was opened."""

    def __init__(self, lines: list[str | bytes]) -> None:
        self._lines = list(lines)
        self.encoding = "utf-8"
        self.errors = "strict"

    async def readline(self) -> str:
        if not self._lines:
            return ""
        line = self._lines.pop(0)
        if isinstance(line, bytes):
            try:
                return line.decode(self.encoding, self.errors)
            except UnicodeDecodeError as e:
                # asyncssh reports decode failures as a protocol error
                raise asyncssh.ProtocolError(str(e)) from e
        return line


class FakeProcess:
    """Mimics asyncssh.SSHClientProcess as used by the dispatcher."""

    def __init__(self, lines: list[str | bytes], exit_status: int = 0, hang: bool = False) -> None:
        self.stdout = FakeStream(lines)
        self.exit_status = exit_status
        self.hang = hang
        self.killed = False

    async def __aenter__(self) -> "FakeProcess":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def wait(self) -> None:
        if self.hang:
            await asyncio.Event().wait()

    def kill(self) -> None:
        self.killed = True


class FakeConnection:
    def __init__(self, host: str, process: FakeProcess) -> None:
        self.host = host
        self.process = process
        self.commands: list[str] = []
        self.process_kwargs: dict = {}
        self.closed = False

    def create_process(self, command: str, **kwargs) -> FakeProcess:
        self.commands.append(command)
        self.process_kwargs = kwargs
        self.process.stdout.encoding = kwargs.get("encoding", "utf-8")
        self.process.stdout.errors = kwargs.get("errors", "strict")
        return self.process

    async def __aenter__(self) -> "FakeConnection":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        self.closed = True
        return False


class FailingConnect:
    def __init__(self, error: BaseException) -> None:
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, *exc_info) -> bool:
        return False


class FakeSSH:
    """Replacement for asyncssh.connect that records every call."""

    def __init__(self) -> None:
        self.outputs: dict[str, list[str | bytes]] = {}
        self.exit_statuses: dict[str, int] = {}
        self.failures: dict[str, BaseException] = {}
        self.hang: set[str] = set()
        self.connections: dict[str, FakeConnection] = {}
        self.connect_calls: list[tuple[str, dict]] = []

    def connect(self, host: str, **kwargs):
        self.connect_calls.append((host, kwargs))
        if host in self.failures:
            return FailingConnect(self.failures[host])
        process = FakeProcess(
            self.outputs.get(host, [f"hello from {host}\n"]),
            exit_status=self.exit_statuses.get(host, 0),
            hang=host in self.hang,
        )
        conn = FakeConnection(host, process)
        self.connections[host] = conn
        return conn


@pytest.fixture
def fake_ssh():
    """Patch asyncssh.connect with a FakeSSH."""
    fake = FakeSSH()
    with patch("asyncssh.connect", new=fake.connect):
        yield fake


@pytest.fixture
def ssh_config_file(tmp_path: Path) -> Path:
    path = tmp_path / "ssh_config"
    path.write_text("Host *\n    PasswordAuthentication no\n")
    return path


@pytest.fixture
def workspace(tmp_path: Path, ssh_config_file: Path) -> Workspace:
    return Workspace.create(
        "20240101_000000_1",
        tmp_path / "work",
        ("h1", "h2", "h3"),
        "id",
        ssh_config_file,
    )
