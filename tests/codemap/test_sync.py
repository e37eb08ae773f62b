"""Tests for comparing and updating a code map from a dependency report."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests._fixtures.reports import function_report
from trophy.codemap import compare_with_report, parse_codemap, update_from_report
from trophy.codemap.sync import check_codemap_file, render_dependency_sections
from trophy.report import report_from_dict


def _report():
    return report_from_dict(function_report())


def test_matching_codemap_has_no_discrepancies() -> None:
    codemap = parse_codemap(
        """
# Code Map

## Entry Points
- `app/main.py`

## Dependencies
- `app/main.py` -> `app/utils.py`

## External Dependencies
- `Click`
- `requests`
"""
    )

    assert compare_with_report(codemap, _report()) == []


def test_discrepancies_cover_missing_and_stale_entries(tmp_path: Path) -> None:
    (tmp_path / "scripts").mkdir()
    (tmp_path / "scripts" / "run.py").write_text("", encoding="utf-8")
    codemap = parse_codemap(
        """
## Entry Points
- `scripts/run.py`
- `app/server.py`

## Dependencies
- `app/utils.py` -> `app/main.py`

## External Dependencies
- `requests`
- `flask`
"""
    )

    found = {(item.kind, item.subject) for item in compare_with_report(codemap, _report(), root=tmp_path)}

    assert found == {
        ("missing-external", "click"),
        ("stale-external", "flask"),
        ("missing-dependency", "app/main.py -> app/utils.py"),
        ("stale-dependency", "app/utils.py -> app/main.py"),
        ("missing-entry-point", "app/server.py"),
    }


def test_edges_are_not_compared_when_map_has_no_dependencies_section() -> None:
    codemap = parse_codemap("## External Dependencies\n- requests\n- click\n")

    assert compare_with_report(codemap, _report()) == []


def test_render_dependency_sections_has_placeholders() -> None:
    report = _report()
    report.dependency_graph.file_level = {"app/utils.py": []}
    for entry in report.files.values():
        entry.imports.external = []

    bodies = render_dependency_sections(report)

    assert bodies == {
        "dependencies": "_No internal dependencies found._",
        "external_dependencies": "_No external dependencies found._",
    }


def test_update_replaces_plain_sections_and_preserves_the_rest() -> None:
    markdown = """# Code Map

## Overview
Hand written overview.

## Dependencies
Modules talk to each other through plain imports.

- outdated -> stuff
  continued explanation

```text
## not a heading
```

### Notes
Keep the CLI thin.

## Data Flow
Requests flow left to right.
"""

    updated = update_from_report(markdown, _report())

    assert "Hand written overview." in updated
    assert "Requests flow left to right." in updated
    assert "outdated" not in updated
    assert "continued explanation" not in updated
    assert "Modules talk to each other through plain imports." in updated
    assert "```text\n## not a heading\n```" in updated
    assert updated.index("plain imports.") < updated.index("<!-- trophy:begin:dependencies -->")
    assert updated.index("<!-- trophy:end:dependencies -->") < updated.index("### Notes\nKeep the CLI thin.")
    assert updated.index("Keep the CLI thin.") < updated.index("## Data Flow")
    assert updated.count("## External Dependencies") == 1
    assert "<!-- trophy:begin:dependencies -->\n- `app/main.py` -> `app/utils.py`\n<!-- trophy:end:dependencies -->" in updated
    assert updated.rstrip().endswith("<!-- trophy:end:external_dependencies -->")
    assert "- `click`\n- `requests`" in updated
    assert compare_with_report(parse_codemap(updated), _report()) == []
    assert update_from_report(updated, _report()) == updated


def test_update_is_idempotent() -> None:
    once = update_from_report("", _report())

    assert once.startswith("# Code Map\n")
    assert update_from_report(once, _report()) == once


def test_check_codemap_file_requires_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        check_codemap_file(tmp_path / "CODEMAP.md", _report())
