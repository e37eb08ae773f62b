"""Host settings lookup for launching the dependency analysis service."""

from __future__ import annotations

import json
import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..logging import get_logger

SETTINGS_CANDIDATES: tuple[str, ...] = (
    ".mcp.json",
    ".claude/settings.json",
    ".claude/settings.local.json",
)

logger = get_logger("plugin.settings")


class ServiceNotConfiguredError(RuntimeError):
    """Raised when no launch descriptor exists for the requested service."""


@dataclass
class ServerLaunch:
    """Process-launch descriptor for a plugin server."""

    name: str
    command: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[Path] = None
    source: Optional[Path] = None

    def argv(self) -> List[str]:
        executable = self.command
        if executable in {"python", "python3"}:
            executable = sys.executable
        else:
            executable = shutil.which(executable) or executable
        return [executable, *self.args]

    def environment(self) -> Dict[str, str]:
        merged = dict(os.environ)
        merged.update(self.env)
        return merged


def find_settings_files(root: Path, candidates: Sequence[str] = SETTINGS_CANDIDATES) -> List[Path]:
    """Return existing settings files under ``root`` in lookup order."""
    return [root / name for name in candidates if (root / name).is_file()]


def load_server_launch(
    root: Path,
    name: str,
    *,
    settings_file: Path | None = None,
) -> ServerLaunch:
    """Return the launch descriptor for server ``name``.

    The first settings file declaring ``mcpServers.<name>`` wins. Raises
    :class:`ServiceNotConfiguredError` when nothing declares it.
    """
    files = [settings_file] if settings_file is not None else find_settings_files(root)
    if not files:
        raise ServiceNotConfiguredError(
            f"No host settings found under {root}. Declare the '{name}' server in "
            f"one of: {', '.join(SETTINGS_CANDIDATES)}"
        )

    declared: List[str] = []
    for path in files:
        servers = _read_servers(path)
        declared.extend(servers)
        entry = servers.get(name)
        if entry is None:
            continue
        launch = _launch_from_entry(name, entry, path)
        logger.debug("Using '%s' server from %s", name, path)
        return launch

    available = ", ".join(sorted(set(declared))) or "none"
    raise ServiceNotConfiguredError(
        f"Server '{name}' is not configured in {', '.join(str(p) for p in files)} "
        f"(declared servers: {available}). Check your settings."
    )


def _read_servers(path: Path) -> Dict[str, object]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ServiceNotConfiguredError(f"Settings file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ServiceNotConfiguredError(f"Settings file {path} is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ServiceNotConfiguredError(f"Settings file {path} must contain a JSON object")
    servers = data.get("mcpServers", {})
    if not isinstance(servers, dict):
        raise ServiceNotConfiguredError(f"'mcpServers' in {path} must be an object")
    return servers


def _launch_from_entry(name: str, entry: object, source: Path) -> ServerLaunch:
    if not isinstance(entry, dict):
        raise ServiceNotConfiguredError(f"Server '{name}' in {source} must be an object")
    command = entry.get("command")
    if not isinstance(command, str) or not command.strip():
        raise ServiceNotConfiguredError(f"Server '{name}' in {source} has no command")
    args = entry.get("args", [])
    if not isinstance(args, list) or not all(isinstance(arg, str) for arg in args):
        raise ServiceNotConfiguredError(f"Server '{name}' in {source} has invalid args")
    env = entry.get("env", {})
    if not isinstance(env, dict):
        raise ServiceNotConfiguredError(f"Server '{name}' in {source} has invalid env")
    cwd = entry.get("cwd")
    # Settings live in <root>/.claude/ or <root>/; relative cwd is resolved from the project root.
    project_root = source.parent.parent if source.parent.name == ".claude" else source.parent
    return ServerLaunch(
        name=name,
        command=command.strip(),
        args=list(args),
        env={str(key): str(value) for key, value in env.items()},
        cwd=(project_root / cwd) if isinstance(cwd, str) else project_root,
        source=source,
    )


__all__ = [
    "SETTINGS_CANDIDATES",
    "ServerLaunch",
    "ServiceNotConfiguredError",
    "find_settings_files",
    "load_server_launch",
]
