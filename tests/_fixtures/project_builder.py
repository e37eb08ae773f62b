"""Helper utilities for constructing temporary projects in tests."""

from __future__ import annotations

import json
import sys
import textwrap
from pathlib import Path
from typing import Mapping, Optional

from trophy.models import ProjectManifest
from trophy.scanner import ProjectScanner

FAKE_SERVICE = Path(__file__).with_name("fake_service.py")


class ProjectBuilder:
    """Utility for writing files into a throwaway project and rescanning it."""

    def __init__(self, tmp_path: Path) -> None:
        self.root = tmp_path / "project"
        self.root.mkdir()
        self._scanner = ProjectScanner()

    def write(self, files: Mapping[str, str]) -> None:
        """Write `path -> contents` entries into the project."""
        for relative, content in files.items():
            path = self.root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            normalised = textwrap.dedent(content).lstrip("\n")
            path.write_text(normalised, encoding="utf-8")

    def configure_service(
        self,
        name: str = "tree-sitter",
        *,
        supported: str = "python",
        settings: str = ".mcp.json",
        env: Optional[Mapping[str, str]] = None,
    ) -> Path:
        """Declare the fake stdio service in a host settings file."""
        target = self.root / settings
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "mcpServers": {
                name: {
                    "command": sys.executable,
                    "args": [str(FAKE_SERVICE)],
                    "env": {"FAKE_SUPPORTED": supported, **(env or {})},
                }
            }
        }
        target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return target

    def scan(self) -> ProjectManifest:
        """Return a fresh manifest of the project contents."""
        return self._scanner.scan(self.root)

    def path(self) -> Path:
        """Return the project root path."""
        return self.root


__all__ = ["FAKE_SERVICE", "ProjectBuilder"]
