"""Parser for OpenSpec requirement/scenario markdown."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from ..models import Requirement, Scenario, SpecDocument

_TITLE = re.compile(r"^#\s+(?P<title>.+?)\s*#*\s*$")
_REQUIREMENT = re.compile(r"^###\s+Requirement:\s*(?P<name>.+?)\s*$", re.IGNORECASE)
_SCENARIO = re.compile(r"^####\s+Scenario:\s*(?P<name>.+?)\s*$", re.IGNORECASE)
_SECTION = re.compile(r"^#{1,3}\s+")
_STEP = re.compile(
    r"^\s*[-*+]\s+(?:\*\*|__)?(?P<keyword>WHEN|THEN|AND)\b:?(?:\*\*|__)?:?\s*(?P<text>.*?)\s*$",
    re.IGNORECASE,
)


@dataclass
class SpecIssue:
    """A structural problem found while parsing a spec document."""

    path: str
    line: int
    message: str

    def __str__(self) -> str:
        return f"{self.path}:{self.line}: {self.message}"


def load_spec(path: Path) -> Tuple[SpecDocument, List[SpecIssue]]:
    """Read and parse a spec file."""
    return parse_spec(path.read_text(encoding="utf-8"), str(path))


def parse_spec(text: str, path: str = "<memory>") -> Tuple[SpecDocument, List[SpecIssue]]:
    """Parse requirement and scenario headings and their WHEN/THEN/AND bullets."""
    document = SpecDocument(path=path)
    issues: List[SpecIssue] = []

    requirement: Optional[Requirement] = None
    scenario: Optional[Scenario] = None
    description: List[str] = []
    in_code = False

    def _finish_requirement() -> None:
        if requirement is not None and not requirement.description:
            requirement.description = " ".join(description).strip()

    for number, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if stripped.startswith(("```", "~~~")):
            in_code = not in_code
            continue
        if in_code:
            continue

        match = _REQUIREMENT.match(stripped)
        if match:
            _finish_requirement()
            requirement = Requirement(name=match.group("name"), line=number)
            document.requirements.append(requirement)
            scenario = None
            description = []
            continue

        match = _SCENARIO.match(stripped)
        if match:
            _finish_requirement()
            if requirement is None:
                issues.append(
                    SpecIssue(path, number, f"Scenario '{match.group('name')}' is not under a requirement")
                )
                scenario = None
                continue
            scenario = Scenario(name=match.group("name"), line=number)
            requirement.scenarios.append(scenario)
            continue

        if document.title is None:
            title = _TITLE.match(stripped)
            if title and requirement is None:
                document.title = title.group("title")
                continue

        if _SECTION.match(stripped):
            # Any other level 1-3 heading (e.g. "## ADDED Requirements") closes the current block.
            _finish_requirement()
            requirement = None
            scenario = None
            description = []
            continue

        match = _STEP.match(raw)
        if match and scenario is not None:
            keyword = match.group("keyword").upper()
            text_value = match.group("text")
            if keyword == "AND" and not scenario.steps:
                issues.append(
                    SpecIssue(path, number, f"Scenario '{scenario.name}' starts with AND")
                )
            scenario.add_step(keyword, text_value)
            continue

        if requirement is not None and scenario is None and stripped:
            description.append(stripped)

    _finish_requirement()

    for req in document.requirements:
        if not req.scenarios:
            issues.append(SpecIssue(path, req.line, f"Requirement '{req.name}' has no scenarios"))
        for item in req.scenarios:
            if not item.when:
                issues.append(SpecIssue(path, item.line, f"Scenario '{item.name}' has no WHEN step"))
            if not item.then:
                issues.append(SpecIssue(path, item.line, f"Scenario '{item.name}' has no THEN step"))

    return document, issues


__all__ = ["SpecIssue", "load_spec", "parse_spec"]
