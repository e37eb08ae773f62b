"""Project scanning utilities used for language detection and cache fingerprints."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterator, List, Sequence

from .config import ConfigError, load_config
from .logging import get_logger
from .models import FileMeta, ProjectManifest

_EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "node_modules",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".idea",
    ".trophy",
    "dist",
    "build",
    "target",
}

_EXCLUDED_FILES = {
    ".DS_Store",
    "Thumbs.db",
}

# Keys are tree-sitter grammar names so they can be passed straight to the service.
LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "c_sharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cc": "cpp",
    ".hh": "cpp",
    ".swift": "swift",
    ".scala": "scala",
    ".lua": "lua",
    ".ex": "elixir",
    ".exs": "elixir",
    ".hs": "haskell",
    ".jl": "julia",
    ".sh": "bash",
    ".zig": "zig",
    ".md": "markdown",
}

_ROLE_RULES: tuple[tuple[str, str], ...] = (
    ("tests", "test"),
    ("test", "test"),
    ("__tests__", "test"),
    ("spec", "test"),
    ("docs", "docs"),
    ("doc", "docs"),
    ("examples", "examples"),
    ("example", "examples"),
)

logger = get_logger("scanner")


@dataclass
class IgnoreRule:
    """Represents an ignore rule parsed from .gitignore or .trophy.yml."""

    pattern: str
    directory_only: bool
    anchored: bool
    negate: bool
    has_slash: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if not self.pattern:
            return False
        if self.directory_only and not is_dir:
            return False

        if self.anchored or self.has_slash:
            if fnmatchcase(rel_path, self.pattern):
                return True
            if self.directory_only and rel_path.startswith(f"{self.pattern}/"):
                return True
            return False

        return any(fnmatchcase(part, self.pattern) for part in rel_path.split("/"))


def build_ignore_rule(pattern: str, negate: bool = False) -> IgnoreRule | None:
    pattern = pattern.strip()
    if not pattern:
        return None

    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern[:-1]

    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern[1:]

    return IgnoreRule(
        pattern=pattern,
        directory_only=directory_only,
        anchored=anchored,
        negate=negate,
        has_slash="/" in pattern,
    )


def _parse_gitignore(path: Path) -> List[IgnoreRule]:
    if not path.exists():
        return []

    rules: List[IgnoreRule] = []
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        rule = build_ignore_rule(line, negate=negate)
        if rule is not None:
            rules.append(rule)
    return rules


def _parse_config_excludes(root: Path) -> List[IgnoreRule]:
    try:
        config = load_config(root)
    except ConfigError as exc:
        logger.warning("Ignoring exclude_paths from unreadable config: %s", exc)
        return []
    rules: List[IgnoreRule] = []
    for pattern in config.analysis.exclude_paths:
        rule = build_ignore_rule(pattern)
        if rule is not None:
            rules.append(rule)
    return rules


def _should_ignore(rel_path: str, is_dir: bool, rules: Sequence[IgnoreRule]) -> bool:
    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir):
            ignored = not rule.negate
    return ignored


def _iter_files(root: Path, rules: Sequence[IgnoreRule]) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        current_dir = Path(dirpath)
        rel_dir = current_dir.relative_to(root).as_posix() if current_dir != root else ""

        kept = []
        for name in sorted(dirnames):
            if name in _EXCLUDED_DIRS:
                continue
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            if _should_ignore(rel_path, True, rules):
                continue
            kept.append(name)
        dirnames[:] = kept

        for filename in sorted(filenames):
            if filename in _EXCLUDED_FILES:
                continue
            rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
            if _should_ignore(rel_path, False, rules):
                continue
            yield current_dir / filename


def detect_language(path: Path | str) -> str | None:
    """Return the tree-sitter grammar name for ``path`` based on its suffix."""
    return LANGUAGE_BY_SUFFIX.get(Path(path).suffix.lower())


def detect_role(relative_path: str) -> str:
    parts = relative_path.split("/")
    for segment, role in _ROLE_RULES:
        if segment in parts[:-1]:
            return role
    name = parts[-1]
    if name.startswith("test_") or name.endswith(("_test.py", "_test.go", ".test.ts", ".test.js")):
        return "test"
    if relative_path.endswith((".md", ".rst")):
        return "docs"
    return "src"


class ProjectScanner:
    """Walks a project directory to produce a normalized manifest."""

    def scan(self, root: str | Path) -> ProjectManifest:
        """Return a manifest describing project files, languages, and roles."""
        root_path = Path(root).expanduser().resolve()
        if not root_path.exists():
            raise FileNotFoundError(f"Project path not found: {root}")
        if not root_path.is_dir():
            raise NotADirectoryError(f"Project path is not a directory: {root}")

        rules = _parse_gitignore(root_path / ".gitignore")
        rules.extend(_parse_config_excludes(root_path))

        files: List[FileMeta] = []
        for path in _iter_files(root_path, rules):
            rel_path = path.relative_to(root_path).as_posix()
            stat_result = path.stat()
            files.append(
                FileMeta(
                    path=rel_path,
                    size=stat_result.st_size,
                    language=detect_language(path),
                    role=detect_role(rel_path),
                    mtime_ns=stat_result.st_mtime_ns,
                )
            )
        logger.debug("Scanned %d files under %s", len(files), root_path)
        return ProjectManifest(root=str(root_path), files=files)


def fingerprint(manifest: ProjectManifest) -> str:
    """Return a digest that changes whenever a scanned file is added, removed, or modified."""
    digest = hashlib.sha256()
    for meta in sorted(manifest.files, key=lambda item: item.path):
        digest.update(f"{meta.path}\0{meta.size}\0{meta.mtime_ns}\n".encode("utf-8"))
    return digest.hexdigest()


__all__ = ["LANGUAGE_BY_SUFFIX", "ProjectScanner", "detect_language", "detect_role", "fingerprint"]
