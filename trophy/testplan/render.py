"""Render planned tests into pytest module skeletons."""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .planner import TestPlan

_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


def _docstring_safe(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"""', '\\"\\"\\"')


def create_environment(templates_dir: Path | None = None) -> Environment:
    directories = []
    if templates_dir:
        directories.append(str(templates_dir))
    directories.append(str(_TEMPLATES_DIR))
    env = Environment(
        loader=FileSystemLoader(directories),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    env.filters["docstring_safe"] = _docstring_safe
    return env


def render_test_module(plan: TestPlan, *, templates_dir: Path | None = None) -> str:
    """Return pytest source with one skipped test stub per planned scenario."""
    template = create_environment(templates_dir).get_template("pytest_module.j2")
    return template.render(plan=plan).rstrip() + "\n"


def write_test_module(
    plan: TestPlan,
    tests_dir: Path,
    *,
    overwrite: bool = False,
    templates_dir: Path | None = None,
) -> Path:
    """Write the rendered module to ``tests_dir`` and return its path."""
    target = tests_dir / f"{plan.module_name}.py"
    if target.exists() and not overwrite:
        raise FileExistsError(f"Test module already exists: {target}")
    tests_dir.mkdir(parents=True, exist_ok=True)
    target.write_text(render_test_module(plan, templates_dir=templates_dir), encoding="utf-8")
    return target


__all__ = ["create_environment", "render_test_module", "write_test_module"]
