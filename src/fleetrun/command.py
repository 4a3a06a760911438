"""Build the command string sent to each host."""

from __future__ import annotations

import logging
import shlex
from typing import Iterable

logger = logging.getLogger(__name__)


def join_command(tokens: Iterable[str]) -> str:
    """Join positional arguments with single spaces, passed through verbatim."""
    return " ".join(tokens)


def build_command(command_text: str, session: str | None = None) -> str:
    """Return the final remote command.

    With a session name, the command runs inside a new detached tmux session
    and the remote call returns as soon as the session exists.

    The inner command is embedded between double quotes without escaping, so
    a command that contains ``"`` breaks the wrap. This is a known
    limitation and is only warned about.
    """
    if session is None:
        return command_text

    if '"' in command_text:
        logger.warning(
            "Command contains a double quote and will not survive the tmux wrap: %s",
            command_text,
        )
    return f'tmux new-session -d -s {shlex.quote(session)} "{command_text}"'
