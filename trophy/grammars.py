"""Local tree-sitter grammar availability checks and grammar sample selection."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .logging import get_logger
from .models import ProjectManifest

try:  # pragma: no cover - optional dependency
    from tree_sitter import Parser
    from tree_sitter_languages import get_parser

    TREE_SITTER_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    Parser = None  # type: ignore[assignment,misc]
    get_parser = None  # type: ignore[assignment]
    TREE_SITTER_AVAILABLE = False

logger = get_logger("grammars")

# Sample files larger than this rarely add signal and slow the service down.
MAX_SAMPLE_BYTES = 256 * 1024


@dataclass
class SampleCheck:
    """Parse outcome for one grammar sample file."""

    path: str
    error_nodes: int
    parsed: bool


class GrammarRegistry:
    """Answers whether a tree-sitter grammar is available for a language."""

    def __init__(self, enabled: Optional[bool] = None) -> None:
        self._enabled = TREE_SITTER_AVAILABLE if enabled is None else enabled
        self._parsers: Dict[str, Parser] = {}
        self._missing: set[str] = set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def has_grammar(self, language: str) -> bool:
        return self.get_parser(language) is not None

    def get_parser(self, language: str) -> Optional[Parser]:
        if not self._enabled:
            return None
        key = language.lower()
        parser = self._parsers.get(key)
        if parser is not None:
            return parser
        if key in self._missing:
            return None
        try:
            parser = get_parser(key)
        except Exception as exc:  # unknown grammar names fail inside the native loader
            logger.debug("No bundled tree-sitter grammar for %s: %s", key, exc)
            self._missing.add(key)
            return None
        self._parsers[key] = parser
        return parser

    def unsupported_languages(self, languages: Iterable[str]) -> List[str]:
        """Return the languages in ``languages`` that have no local grammar."""
        return [language for language in languages if not self.has_grammar(language)]

    def sample_parse_errors(self, language: str, samples: Sequence[Path]) -> List[SampleCheck]:
        """Parse each sample and count ERROR/MISSING nodes in its syntax tree.

        A generated grammar that leaves error nodes in representative samples
        needs manual refinement before its dependency data can be trusted.
        """
        parser = self.get_parser(language)
        checks: List[SampleCheck] = []
        for sample in samples:
            if parser is None:
                checks.append(SampleCheck(path=str(sample), error_nodes=0, parsed=False))
                continue
            try:
                source = sample.read_bytes()
            except OSError as exc:
                logger.warning("Skipping unreadable sample %s: %s", sample, exc)
                checks.append(SampleCheck(path=str(sample), error_nodes=0, parsed=False))
                continue
            tree = parser.parse(source)
            checks.append(
                SampleCheck(path=str(sample), error_nodes=_count_errors(tree.root_node), parsed=True)
            )
        return checks


def collect_samples(
    manifest: ProjectManifest, language: str, *, limit: int = 5
) -> List[Path]:
    """Pick up to ``limit`` representative source files for grammar generation.

    Non-test sources come first, larger files before smaller ones, so the
    samples exercise as much syntax as possible.
    """
    candidates = [
        meta
        for meta in manifest.by_language(language)
        if 0 < meta.size <= MAX_SAMPLE_BYTES
    ]
    candidates.sort(key=lambda meta: (meta.role == "test", -meta.size, meta.path))
    root = Path(manifest.root)
    return [root / meta.path for meta in candidates[:limit]]


def _count_errors(node) -> int:  # type: ignore[no-untyped-def]
    count = 0
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "ERROR" or current.is_missing:
            count += 1
        stack.extend(current.children)
    return count


__all__ = [
    "GrammarRegistry",
    "SampleCheck",
    "TREE_SITTER_AVAILABLE",
    "collect_samples",
]
