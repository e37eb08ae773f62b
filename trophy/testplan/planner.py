"""Map spec scenarios onto integration test cases, one test per scenario."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..logging import get_logger
from ..models import SpecDocument

_TEST_DEF = re.compile(r"^\s*(?:async\s+)?def\s+(test_[A-Za-z0-9_]+)\s*\(", re.MULTILINE)
_MAX_NAME_LENGTH = 80

logger = get_logger("testplan")


@dataclass
class PlannedTest:
    """A test case derived from exactly one scenario."""

    name: str
    requirement: str
    scenario: str
    steps: List[Tuple[str, str]] = field(default_factory=list)
    line: int = 0


@dataclass
class TestPlan:
    """All planned tests for one spec document."""

    __test__ = False  # keep pytest from collecting this class

    source: str
    title: str
    tests: List[PlannedTest] = field(default_factory=list)
    module: Optional[str] = None

    @property
    def module_name(self) -> str:
        if self.module:
            return self.module
        return f"test_{slugify(self.title) or 'spec'}"


def slugify(value: str) -> str:
    """Return a lowercase python-identifier fragment for ``value``."""
    normalised = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "_", normalised.lower()).strip("_")
    return slug


def plan_tests(document: SpecDocument) -> TestPlan:
    """Return a plan with one uniquely named test per scenario in ``document``."""
    title = document.title or _title_from_path(document.path)
    plan = TestPlan(source=document.path, title=title)
    used: Set[str] = set()

    for index, (requirement, scenario) in enumerate(document.iter_scenarios(), start=1):
        requirement_slug = slugify(requirement.name) or "requirement"
        scenario_slug = slugify(scenario.name) or f"scenario_{index}"
        base = f"test_{requirement_slug}_{scenario_slug}"[:_MAX_NAME_LENGTH].rstrip("_")
        name = base
        suffix = 2
        while name in used:
            name = f"{base}_{suffix}"
            suffix += 1
        used.add(name)
        plan.tests.append(
            PlannedTest(
                name=name,
                requirement=requirement.name,
                scenario=scenario.name,
                steps=list(scenario.steps),
                line=scenario.line,
            )
        )

    logger.debug("Planned %d tests for %s", len(plan.tests), document.path)
    return plan


def assign_module_names(plans: Iterable[TestPlan]) -> None:
    """Give every plan a distinct test module name.

    Plans from change deltas (``changes/<name>/specs/...``) are suffixed with
    the change name; remaining clashes get a numeric suffix.
    """
    used: Set[str] = set()
    for plan in plans:
        base = f"test_{slugify(plan.title) or 'spec'}"
        change = _change_name(plan.source)
        if change:
            base = f"{base}_{slugify(change) or 'change'}"
        name = base
        suffix = 2
        while name in used:
            name = f"{base}_{suffix}"
            suffix += 1
        used.add(name)
        plan.module = name


def existing_test_names(tests_dir: Path) -> Set[str]:
    """Return every ``test_*`` function name defined in python files under ``tests_dir``."""
    names: Set[str] = set()
    if not tests_dir.is_dir():
        return names
    for path in sorted(tests_dir.rglob("*.py")):
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping unreadable test file %s: %s", path, exc)
            continue
        names.update(_TEST_DEF.findall(text))
    return names


def coverage_gaps(plans: Iterable[TestPlan], tests_dir: Path) -> Dict[str, List[PlannedTest]]:
    """Return planned tests with no matching test function, keyed by spec source."""
    existing = existing_test_names(tests_dir)
    gaps: Dict[str, List[PlannedTest]] = {}
    for plan in plans:
        missing = [test for test in plan.tests if test.name not in existing]
        if missing:
            gaps[plan.source] = missing
    return gaps


def _change_name(source: str) -> Optional[str]:
    parts = Path(source).parts
    for index in range(len(parts) - 2):
        if parts[index] == "changes" and parts[index + 2] == "specs":
            return parts[index + 1]
    return None


def _title_from_path(path: str) -> str:
    candidate = Path(path)
    if candidate.name == "spec.md" and candidate.parent.name:
        return candidate.parent.name
    return candidate.stem


__all__ = [
    "PlannedTest",
    "TestPlan",
    "assign_module_names",
    "coverage_gaps",
    "existing_test_names",
    "plan_tests",
    "slugify",
]
