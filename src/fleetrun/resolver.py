"""Turn a fleet selector or instance name into the list of hosts to target."""

from __future__ import annotations

import logging
from pathlib import Path

from .config import Config
from .errors import ResolutionError

logger = logging.getLogger(__name__)

HostSet = tuple[str, ...]


class HostResolver:
    """Resolves selectors against the inventory and the saved default selection."""

    def __init__(self, config: Config):
        self.config = config

    def resolve(self, selector: str | None = None, instance: str | None = None) -> HostSet:
        """Resolve the hosts for one run.

        An explicit instance replaces whatever the selector resolved to.

        Raises:
            ResolutionError: If no hosts were found
        """
        if instance:
            hosts = self._resolve_instance(instance)
            source = f"instance '{instance}'"
        elif not selector:
            hosts = load_selection(self.config.selection_file)
            source = f"default selection {self.config.selection_file}"
        elif Path(selector).expanduser().is_file():
            hosts = Path(selector).expanduser().read_text().split()
            source = f"host file {selector}"
        else:
            hosts = self.config.match_prefix(selector.rstrip("*"))
            source = f"fleet '{selector}'"

        hosts = _dedupe(hosts)
        if not hosts:
            raise ResolutionError(f"No hosts found for {source}")

        logger.debug("Resolved %d hosts from %s", len(hosts), source)
        return hosts

    def _resolve_instance(self, name: str) -> list[str]:
        inst = self.config.lookup(name)
        return [inst.name] if inst else []


def _dedupe(hosts: list[str]) -> HostSet:
    return tuple(dict.fromkeys(h for h in hosts if h))


def load_selection(path: Path) -> list[str]:
    """Read the saved default selection. A missing file is an empty selection."""
    try:
        return Path(path).read_text().split()
    except FileNotFoundError:
        return []


def save_selection(path: Path, hosts: HostSet) -> None:
    """Save hosts as the default selection, one per line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{host}\n" for host in hosts))
