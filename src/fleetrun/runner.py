#!/usr/bin/env python3
"""Main entry point for fleetrun."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import asyncssh

from .cancellation import CancellationController
from .command import build_command, join_command
from .config import Config, RunOptions, load_config
from .dispatch import DispatchResult, Dispatcher, HostStatus
from .errors import CancellationError, ResolutionError, WorkspaceError
from .resolver import HostResolver, save_selection
from .sshconfig import ensure_ssh_config
from .workspace import Workspace, new_run_id

logger = logging.getLogger(__name__)

# ANSI colors for different hosts
COLORS = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[32m",  # Green
    "\033[34m",  # Blue
    "\033[91m",  # Light Red
    "\033[96m",  # Light Cyan
    "\033[93m",  # Light Yellow
]
RESET = "\033[0m"

EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetrun",
        description="Run a shell command on every instance of a fleet in parallel",
    )
    parser.add_argument("command", nargs="*", help="Command to run on each host")
    parser.add_argument("-f", "--fleet", help="Fleet name prefix (trailing * allowed) or path to a host list file")
    parser.add_argument("-i", "--instance", help="Run on this single instance instead of the fleet")
    parser.add_argument(
        "--tmux",
        nargs="?",
        const="",
        default=None,
        metavar="NAME",
        help="Run the command in a detached tmux session (default name: the run id)",
    )
    parser.add_argument("--sshconfig", type=Path, help="SSH config to use instead of the generated one")
    parser.add_argument("-q", "--quiet", action="store_true", help="Don't show per-host progress")
    parser.add_argument("--debug", action="store_true", help="Verbose logging, including SSH protocol traces")
    parser.add_argument("--cache", action="store_true", help="Reuse the cached SSH config without regenerating it")
    parser.add_argument("--logs", action="store_true", help="Keep the run workspace and output under the logs directory")
    parser.add_argument("-w", "--width", type=int, help="Maximum number of hosts to run on at once")
    parser.add_argument("-c", "--config", type=Path, help="Path to YAML configuration file")
    parser.add_argument("--select", action="store_true", help="Save the resolved hosts as the default selection and exit")
    parser.add_argument("--dashboard", action="store_true", help="Run with the TUI dashboard")
    return parser


def parse_options(argv: list[str] | None = None) -> tuple[RunOptions, Path | None]:
    """Parse the command line into RunOptions and an optional config path."""
    parser = build_parser()
    args = parser.parse_intermixed_args(argv)

    if not args.command and not args.select:
        parser.error("a command is required")
    if args.width is not None and args.width <= 0:
        parser.error("--width must be a positive integer")

    options = RunOptions(
        command=join_command(args.command),
        fleet=args.fleet,
        instance=args.instance,
        tmux=args.tmux is not None,
        tmux_name=args.tmux or None,
        sshconfig=args.sshconfig,
        quiet=args.quiet,
        debug=args.debug,
        cache=args.cache,
        logs=args.logs,
        width=args.width,
        select=args.select,
        dashboard=args.dashboard,
    )
    return options, args.config


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if debug:
        asyncssh.set_log_level(logging.DEBUG)
        asyncssh.set_debug_level(2)
    else:
        asyncssh.set_log_level(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    options, config_path = parse_options(argv)
    _setup_logging(options.debug)

    try:
        config = load_config(config_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    try:
        hosts = HostResolver(config).resolve(options.fleet, options.instance)
    except ResolutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if options.select:
        save_selection(config.selection_file, hosts)
        print(f"Selected {len(hosts)} hosts: {' '.join(hosts)}")
        return 0

    run_id = new_run_id()
    session = (options.tmux_name or run_id) if options.tmux else None
    command = build_command(options.command, session)

    try:
        ssh_config = options.sshconfig or ensure_ssh_config(config, use_cache=options.cache)
        workspace = Workspace.create(run_id, config.workspace_dir, hosts, command, ssh_config)
        logger.debug("Run %s: %d hosts, workspace %s", run_id, len(hosts), workspace.path)
    except WorkspaceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: cannot write SSH config: {e}", file=sys.stderr)
        return 1

    try:
        if options.dashboard:
            results, cancelled = _run_dashboard(config, options, workspace, hosts, command)
        else:
            results, cancelled = _run_headless(config, options, workspace, hosts, command)
    finally:
        # No-op when the controller already finalized
        workspace.finalize(options.logs, config.log_dir)

    if workspace.retained_at:
        print(f"Logs kept at {workspace.retained_at}", file=sys.stderr)

    if cancelled:
        print("\nCancelled", file=sys.stderr)
        return EXIT_CANCELLED

    # Per-host failures are reported but don't fail the run
    failed_hosts = sorted(host for host, result in results.items() if not result.ok)
    if failed_hosts:
        print(f"\nFailed hosts: {', '.join(failed_hosts)}", file=sys.stderr)

    return 0


def _run_headless(
    config: Config,
    options: RunOptions,
    workspace: Workspace,
    hosts: tuple[str, ...],
    command: str,
) -> tuple[dict[str, DispatchResult], bool]:
    """Run the dispatch without the TUI dashboard, printing output at the end."""
    host_colors = {host: COLORS[i % len(COLORS)] for i, host in enumerate(hosts)}

    def on_status(host: str, status: HostStatus) -> None:
        color = host_colors.get(host, "")
        print(f"{color}[{host}]{RESET} Status: {status.value}", file=sys.stderr)

    dispatcher = Dispatcher(
        workspace,
        width=options.width,
        connect_timeout=config.defaults.connect_timeout,
        on_status=None if options.quiet else on_status,
    )
    controller = CancellationController(workspace, retain=options.logs, logs_root=config.log_dir)

    try:
        results = asyncio.run(controller.run(dispatcher.run_all(hosts, command)))
    except CancellationError:
        return dispatcher.results, True

    # Arrival order is arbitrary, so print grouped by host name
    for host in sorted(results):
        color = host_colors.get(host, "")
        result = results[host]
        for line in result.output_lines:
            print(f"{color}[{host}]{RESET} {line}")

    return results, False


def _run_dashboard(
    config: Config,
    options: RunOptions,
    workspace: Workspace,
    hosts: tuple[str, ...],
    command: str,
) -> tuple[dict[str, DispatchResult], bool]:
    """Run the dispatch inside the TUI dashboard."""
    from .dashboard import Dashboard

    dispatcher = Dispatcher(
        workspace,
        width=options.width,
        connect_timeout=config.defaults.connect_timeout,
    )
    # Ctrl+C is a key press in raw mode, so only SIGTERM needs a handler
    controller = CancellationController(
        workspace,
        retain=options.logs,
        logs_root=config.log_dir,
        signals=(signal.SIGTERM,),
    )
    app = Dashboard(hosts, dispatcher, controller, dispatcher.run_all(hosts, command))
    app.run()
    return dispatcher.results, app.run_cancelled


if __name__ == "__main__":
    sys.exit(main())
