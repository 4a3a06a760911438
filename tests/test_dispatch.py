"""Tests for the dispatch engine."""

import asyncio

import asyncssh
import pytest

from fleetrun.dispatch import Dispatcher, HostStatus
from fleetrun.workspace import Workspace

HOSTS = ("h1", "h2", "h3")


@pytest.mark.asyncio
async def test_one_result_per_host(fake_ssh, workspace: Workspace) -> None:
    dispatcher = Dispatcher(workspace)

    results = await dispatcher.run_all(HOSTS, "id")

    assert sorted(results) == sorted(HOSTS)
    assert all(result.ok for result in results.values())
    assert [host for host, _ in fake_ssh.connect_calls] == list(HOSTS)
    for host in HOSTS:
        assert fake_ssh.connections[host].commands == ["id"]
        assert results[host].output_lines == [f"hello from {host}"]
        assert results[host].exit_status == 0


@pytest.mark.asyncio
async def test_connect_options(fake_ssh, workspace: Workspace) -> None:
    await Dispatcher(workspace, connect_timeout=7).run_all(("h1",), "id")

    _, kwargs = fake_ssh.connect_calls[0]
    assert kwargs["config"] == [str(workspace.ssh_config)]
    assert kwargs["known_hosts"] is None
    assert kwargs["preferred_auth"] == "publickey"
    assert kwargs["connect_timeout"] == 7
    # stderr is merged into the captured stream
    assert fake_ssh.connections["h1"].process_kwargs["stderr"] is asyncssh.STDOUT


@pytest.mark.asyncio
async def test_failed_host_does_not_stop_others(fake_ssh, workspace: Workspace) -> None:
    fake_ssh.failures["h2"] = ConnectionRefusedError("Connection refused")

    results = await Dispatcher(workspace).run_all(HOSTS, "id")

    assert results["h1"].ok
    assert results["h3"].ok
    assert results["h2"].status == HostStatus.FAILED
    assert results["h2"].exit_status is None
    assert "Connection refused" in results["h2"].error


@pytest.mark.asyncio
async def test_ssh_error_recorded(fake_ssh, workspace: Workspace) -> None:
    fake_ssh.failures["h1"] = asyncssh.PermissionDenied("auth failed")

    results = await Dispatcher(workspace).run_all(("h1",), "id")

    assert results["h1"].status == HostStatus.FAILED
    assert results["h1"].error.startswith("SSH error")


@pytest.mark.asyncio
async def test_nonzero_exit_is_failure(fake_ssh, workspace: Workspace) -> None:
    fake_ssh.outputs["h1"] = ["ls: cannot access 'x'\n"]
    fake_ssh.exit_statuses["h1"] = 2

    results = await Dispatcher(workspace).run_all(("h1", "h2"), "ls x")

    assert results["h1"].status == HostStatus.FAILED
    assert results["h1"].exit_status == 2
    assert results["h1"].output_lines == ["ls: cannot access 'x'"]
    assert results["h2"].ok


@pytest.mark.asyncio
async def test_output_written_to_log_files(fake_ssh, workspace: Workspace) -> None:
    fake_ssh.outputs["h1"] = ["one\n", "two\r\n"]

    await Dispatcher(workspace).run_all(("h1",), "cat")

    assert workspace.log_file("h1").read_text() == "one\ntwo\n"


@pytest.mark.asyncio
async def test_callbacks(fake_ssh, workspace: Workspace) -> None:
    lines: list[tuple[str, str]] = []
    statuses: list[tuple[str, HostStatus]] = []

    dispatcher = Dispatcher(
        workspace,
        on_output=lambda host, line: lines.append((host, line)),
        on_status=lambda host, status: statuses.append((host, status)),
    )
    await dispatcher.run_all(("h1",), "id")

    assert lines == [("h1", "hello from h1")]
    assert statuses == [
        ("h1", HostStatus.CONNECTING),
        ("h1", HostStatus.RUNNING),
        ("h1", HostStatus.SUCCESS),
    ]


@pytest.mark.asyncio
async def test_width_limits_concurrency(fake_ssh, workspace: Workspace) -> None:
    fake_ssh.hang.update(HOSTS)
    dispatcher = Dispatcher(workspace, width=1)

    task = asyncio.create_task(dispatcher.run_all(HOSTS, "sleep 100"))
    for _ in range(20):
        await asyncio.sleep(0)

    assert len(fake_ssh.connect_calls) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_invalid_width(workspace: Workspace) -> None:
    with pytest.raises(ValueError):
        Dispatcher(workspace, width=0)


@pytest.mark.asyncio
async def test_cancel_kills_and_closes_every_worker(fake_ssh, workspace: Workspace) -> None:
    fake_ssh.hang.update(HOSTS)
    dispatcher = Dispatcher(workspace)

    task = asyncio.create_task(dispatcher.run_all(HOSTS, "sleep 100"))
    for _ in range(20):
        await asyncio.sleep(0)
    assert all(r.status == HostStatus.RUNNING for r in dispatcher.results.values())

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    for host in HOSTS:
        conn = fake_ssh.connections[host]
        assert conn.process.killed
        assert conn.closed
        assert dispatcher.results[host].status == HostStatus.CANCELLED


@pytest.mark.asyncio
async def test_invalid_utf8_output_keeps_result(fake_ssh, workspace: Workspace) -> None:
    fake_ssh.outputs["h1"] = [b"first\n", b"\xff\xfe binary\n", b"last\n"]

    results = await Dispatcher(workspace).run_all(("h1",), "cat blob")

    assert results["h1"].ok
    assert results["h1"].exit_status == 0
    assert results["h1"].output_lines == ["first", "\ufffd\ufffd binary", "last"]
    assert fake_ssh.connections["h1"].process_kwargs["errors"] == "replace"


@pytest.mark.asyncio
async def test_colliding_host_names_get_separate_logs(fake_ssh, workspace: Workspace) -> None:
    await Dispatcher(workspace).run_all(("a/b", "a_b"), "id")

    assert workspace.log_file("a/b") != workspace.log_file("a_b")
    assert workspace.log_file("a/b").read_text() == "hello from a/b\n"
    assert workspace.log_file("a_b").read_text() == "hello from a_b\n"


@pytest.mark.asyncio
async def test_log_write_failure_is_not_a_host_failure(
    fake_ssh, workspace: Workspace, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    # A directory can't be opened for appending
    monkeypatch.setattr(workspace, "log_file", lambda host: workspace.logs_dir)

    results = await Dispatcher(workspace).run_all(("h1",), "id")

    assert results["h1"].ok
    assert results["h1"].output_lines == ["hello from h1"]
    assert results["h1"].log_file is None
    assert "Cannot write log for h1" in caplog.text
