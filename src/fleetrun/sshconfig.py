"""Transport config generation.

Writes an OpenSSH-format config with one ``Host`` block per inventory
instance so every host in a run can be reached by its instance name.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .config import Config, InstanceConfig

logger = logging.getLogger(__name__)

# Batch, key-only access: no host key prompts, no passwords
GLOBAL_OPTIONS = [
    ("StrictHostKeyChecking", "no"),
    ("UserKnownHostsFile", "/dev/null"),
    ("PasswordAuthentication", "no"),
    ("BatchMode", "yes"),
]


def render_ssh_config(config: Config) -> str:
    """Render the inventory as OpenSSH config text."""
    blocks = [_render_instance(inst) for inst in config.instances]
    lines = ["Host *"]
    lines.extend(f"    {key} {value}" for key, value in GLOBAL_OPTIONS)
    blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def _render_instance(inst: InstanceConfig) -> str:
    lines = [
        f"Host {inst.name}",
        f"    HostName {inst.host}",
        f"    User {inst.user}",
        f"    Port {inst.port}",
    ]
    if inst.ssh_key:
        lines.append(f"    IdentityFile {inst.ssh_key}")
    return "\n".join(lines)


def ensure_ssh_config(config: Config, path: Path | None = None, use_cache: bool = False) -> Path:
    """Return a transport config file, generating it unless a cached one is reused.

    Args:
        config: Loaded configuration holding the inventory
        path: Where to write the file (default: ``config.ssh_config``)
        use_cache: Reuse an existing file as-is instead of regenerating it

    Returns:
        Path to the transport config
    """
    path = Path(path or config.ssh_config)

    if use_cache and path.exists():
        logger.debug("Using cached SSH config %s", path)
        return path

    if use_cache:
        logger.info("No cached SSH config at %s, generating", path)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_ssh_config(config))
    logger.debug("Wrote SSH config for %d instances to %s", len(config.instances), path)
    return path
