"""Core data models shared across trophy components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

DEPTH_FILE = "file"
DEPTH_FUNCTION = "function"
DEPTH_FULL = "full"
DEPTHS = (DEPTH_FILE, DEPTH_FUNCTION, DEPTH_FULL)


def normalise_depth(depth: str | None) -> str:
    """Return a recognised depth selector, defaulting to ``file``."""
    if depth is None:
        return DEPTH_FILE
    value = depth.strip().lower()
    if value not in DEPTHS:
        raise ValueError(
            f"Unknown analysis depth '{depth}'. Expected one of: {', '.join(DEPTHS)}"
        )
    return value


def includes_calls(depth: str) -> bool:
    """Return True when the depth selector asks for function-level call data."""
    return normalise_depth(depth) in {DEPTH_FUNCTION, DEPTH_FULL}


# Project files


@dataclass
class FileMeta:
    """Metadata for an individual project file."""

    path: str
    size: int
    language: Optional[str]
    role: str
    mtime_ns: int = 0


@dataclass
class ProjectManifest:
    """Normalized view of the files under an analysed path."""

    root: str
    files: List[FileMeta]

    def by_language(self, language: str) -> List[FileMeta]:
        return [meta for meta in self.files if meta.language == language]

    def languages(self) -> List[str]:
        """Return detected languages, most common first."""
        counts: Dict[str, int] = {}
        for meta in self.files:
            if meta.language and meta.role != "docs":
                counts[meta.language] = counts.get(meta.language, 0) + 1
        return [name for name, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))]


# Dependency report


@dataclass
class AnalysisInfo:
    """Describes the analysis run that produced a dependency report."""

    path: str
    language: Optional[str] = None
    files_analyzed: int = 0
    depth: str = DEPTH_FILE


@dataclass
class ImportSet:
    """Imports declared by a file, split into third-party and in-project modules."""

    external: List[str] = field(default_factory=list)
    internal: List[str] = field(default_factory=list)


@dataclass
class ExportSet:
    """Identifiers a file makes available to other modules."""

    functions: Set[str] = field(default_factory=set)
    classes: Set[str] = field(default_factory=set)
    constants: Set[str] = field(default_factory=set)

    def is_empty(self) -> bool:
        return not (self.functions or self.classes or self.constants)


@dataclass
class CallSite:
    """A call made from inside a function body."""

    target: str
    line: Optional[int] = None


@dataclass
class FunctionInfo:
    """Function-level details reported at ``function`` or ``full`` depth."""

    name: str
    calls: List[CallSite] = field(default_factory=list)
    parameters: List[str] = field(default_factory=list)
    returns: Optional[str] = None


@dataclass
class FileReport:
    """Per-file section of a dependency report."""

    path: str
    imports: ImportSet = field(default_factory=ImportSet)
    exports: ExportSet = field(default_factory=ExportSet)
    functions: List[FunctionInfo] = field(default_factory=list)

    def has_call_data(self) -> bool:
        return any(function.calls for function in self.functions)


@dataclass
class DependencyGraph:
    """File-level and function-level adjacency maps."""

    file_level: Dict[str, List[str]] = field(default_factory=dict)
    function_level: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class DependencyReport:
    """Output of one dependency analysis run over a path."""

    analysis: AnalysisInfo
    files: Dict[str, FileReport] = field(default_factory=dict)
    dependency_graph: DependencyGraph = field(default_factory=DependencyGraph)

    def external_dependencies(self) -> List[str]:
        """Return every external import across the report, sorted and de-duplicated."""
        names: Set[str] = set()
        for file_report in self.files.values():
            names.update(file_report.imports.external)
        return sorted(names)


# Spec documents


@dataclass
class Scenario:
    """A WHEN/THEN scenario beneath a requirement."""

    name: str
    when: List[str] = field(default_factory=list)
    then: List[str] = field(default_factory=list)
    and_: List[str] = field(default_factory=list)
    steps: List[Tuple[str, str]] = field(default_factory=list)
    line: int = 0

    def add_step(self, keyword: str, text: str) -> None:
        keyword = keyword.upper()
        if keyword == "WHEN":
            self.when.append(text)
        elif keyword == "THEN":
            self.then.append(text)
        elif keyword == "AND":
            self.and_.append(text)
        else:
            raise ValueError(f"Unsupported scenario keyword: {keyword}")
        self.steps.append((keyword, text))


@dataclass
class Requirement:
    """A named requirement grouping one or more scenarios."""

    name: str
    description: str = ""
    scenarios: List[Scenario] = field(default_factory=list)
    line: int = 0


@dataclass
class SpecDocument:
    """A parsed spec markdown file."""

    path: str
    title: Optional[str] = None
    requirements: List[Requirement] = field(default_factory=list)

    @property
    def scenario_count(self) -> int:
        return sum(len(requirement.scenarios) for requirement in self.requirements)

    def iter_scenarios(self) -> List[Tuple[Requirement, Scenario]]:
        return [
            (requirement, scenario)
            for requirement in self.requirements
            for scenario in requirement.scenarios
        ]
