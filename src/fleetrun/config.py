"""Configuration loader for fleetrun."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_HOME = Path("~/.fleetrun").expanduser()
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.yaml"
CONFIG_ENV_VAR = "FLEETRUN_CONFIG"


@dataclass
class Defaults:
    """Default values that can be overridden per instance."""

    user: str = "root"
    port: int = 22
    ssh_key: Path | None = None
    connect_timeout: int = 30


@dataclass
class InstanceConfig:
    """A single instance in the inventory."""

    name: str
    host: str
    user: str = "root"
    port: int = 22
    ssh_key: Path | None = None


@dataclass
class Config:
    """Inventory plus the locations fleetrun reads and writes."""

    instances: list[InstanceConfig] = field(default_factory=list)
    defaults: Defaults = field(default_factory=Defaults)
    log_dir: Path = field(default_factory=lambda: DEFAULT_HOME / "logs")
    workspace_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "fleetrun"
    )
    ssh_config: Path = field(default_factory=lambda: DEFAULT_HOME / "ssh_config")
    selection_file: Path = field(default_factory=lambda: DEFAULT_HOME / "selection")
    source_path: Path | None = None  # Path to the YAML file, if one was read

    def match_prefix(self, prefix: str) -> list[str]:
        """Names of all instances whose name starts with prefix, in file order."""
        return [inst.name for inst in self.instances if inst.name.startswith(prefix)]

    def lookup(self, name: str) -> InstanceConfig | None:
        """Find an instance by exact name."""
        for inst in self.instances:
            if inst.name == name:
                return inst
        return None


@dataclass
class RunOptions:
    """Options for one invocation, built once from the command line."""

    command: str = ""
    fleet: str | None = None
    instance: str | None = None
    tmux: bool = False
    tmux_name: str | None = None
    sshconfig: Path | None = None
    quiet: bool = False
    debug: bool = False
    cache: bool = False
    logs: bool = False
    width: int | None = None
    select: bool = False
    dashboard: bool = False


def load_config(config_path: str | Path | None = None) -> Config:
    """Load and validate configuration from a YAML file.

    With no explicit path, ``$FLEETRUN_CONFIG`` or ``~/.fleetrun/config.yaml``
    is used, and a missing file gives an empty inventory.
    """
    explicit = config_path is not None or CONFIG_ENV_VAR in os.environ
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
    config_path = Path(config_path).expanduser().resolve()

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return Config()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    config = _parse_config(raw)
    config.source_path = config_path
    return config


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults") or {}
    ssh_key_str = defaults_raw.get("ssh_key")
    return Defaults(
        user=defaults_raw.get("user", "root"),
        port=defaults_raw.get("port", 22),
        ssh_key=Path(ssh_key_str).expanduser() if ssh_key_str else None,
        connect_timeout=defaults_raw.get("connect_timeout", 30),
    )


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw YAML data into Config object."""
    defaults = _parse_defaults(raw)

    instances: list[InstanceConfig] = []
    seen: set[str] = set()
    for inst_raw in raw.get("instances") or []:
        inst = _parse_instance(inst_raw, defaults)
        if inst.name in seen:
            raise ValueError(f"Duplicate instance name: '{inst.name}'")
        seen.add(inst.name)
        instances.append(inst)

    config = Config(instances=instances, defaults=defaults)

    # Optional path overrides
    for key in ("log_dir", "workspace_dir", "ssh_config", "selection_file"):
        if raw.get(key):
            setattr(config, key, Path(raw[key]).expanduser().resolve())

    return config


def _parse_instance(inst_raw: dict[str, Any], defaults: Defaults) -> InstanceConfig:
    """Parse a single instance entry."""
    name = inst_raw.get("name")
    if not name:
        raise ValueError("Instance must have a 'name' field")

    host = inst_raw.get("host")
    if not host:
        raise ValueError(f"Instance '{name}' must have a 'host' field")

    ssh_key = defaults.ssh_key
    if "ssh_key" in inst_raw:
        ssh_key = Path(inst_raw["ssh_key"]).expanduser()

    return InstanceConfig(
        name=str(name),
        host=str(host),
        user=inst_raw.get("user", defaults.user),
        port=inst_raw.get("port", defaults.port),
        ssh_key=ssh_key,
    )
