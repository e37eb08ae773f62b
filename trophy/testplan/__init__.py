"""Scenario-to-test planning."""

from .planner import (
    PlannedTest,
    TestPlan,
    assign_module_names,
    coverage_gaps,
    existing_test_names,
    plan_tests,
    slugify,
)
from .render import render_test_module, write_test_module

__all__ = [
    "PlannedTest",
    "TestPlan",
    "assign_module_names",
    "coverage_gaps",
    "existing_test_names",
    "plan_tests",
    "render_test_module",
    "slugify",
    "write_test_module",
]
