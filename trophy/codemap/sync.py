"""Compare a code map against a dependency report and refresh its managed sections."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence

from ..models import DependencyReport
from .document import MANAGED_SECTIONS, SECTION_TITLES, CodeMap, parse_codemap
from .markers import MarkerManager, SectionContent

_LIST_ITEM = re.compile(r"^[-*+]\s|^\d+[.)]\s")


@dataclass
class Discrepancy:
    """A difference between what the code map says and what the report found."""

    kind: str
    section: str
    subject: str
    detail: str


def compare_with_report(
    codemap: CodeMap,
    report: DependencyReport,
    *,
    root: Path | None = None,
) -> List[Discrepancy]:
    """Return the discrepancies between ``codemap`` and ``report``.

    External dependencies and file-level edges are compared in both
    directions. Entry points are only checked for existence.
    """
    discrepancies: List[Discrepancy] = []

    documented = {name.lower(): name for name in codemap.items("external_dependencies")}
    found = {name.lower(): name for name in report.external_dependencies()}
    for key in sorted(set(found) - set(documented)):
        discrepancies.append(
            Discrepancy(
                kind="missing-external",
                section="external_dependencies",
                subject=found[key],
                detail="imported by the code but not listed in the code map",
            )
        )
    for key in sorted(set(documented) - set(found)):
        discrepancies.append(
            Discrepancy(
                kind="stale-external",
                section="external_dependencies",
                subject=documented[key],
                detail="listed in the code map but no longer imported",
            )
        )

    documented_edges = _edge_set(codemap.edges())
    report_edges = _edge_set(report.dependency_graph.file_level)
    if documented_edges or codemap.section("dependencies"):
        for source, target in sorted(report_edges - documented_edges):
            discrepancies.append(
                Discrepancy(
                    kind="missing-dependency",
                    section="dependencies",
                    subject=f"{source} -> {target}",
                    detail="dependency found by analysis but not documented",
                )
            )
        for source, target in sorted(documented_edges - report_edges):
            discrepancies.append(
                Discrepancy(
                    kind="stale-dependency",
                    section="dependencies",
                    subject=f"{source} -> {target}",
                    detail="documented dependency not found by analysis",
                )
            )

    for entry in codemap.items("entry_points"):
        if entry in report.files:
            continue
        if root is not None and (root / entry).exists():
            continue
        discrepancies.append(
            Discrepancy(
                kind="missing-entry-point",
                section="entry_points",
                subject=entry,
                detail="entry point is not among the analysed files",
            )
        )

    return discrepancies


def render_dependency_sections(report: DependencyReport) -> Dict[str, str]:
    """Return markdown bodies for the report-derived code map sections."""
    edges: List[str] = []
    for source in sorted(report.dependency_graph.file_level):
        targets = report.dependency_graph.file_level[source]
        if targets:
            edges.append(f"- `{source}` -> {', '.join(f'`{target}`' for target in targets)}")
    externals = [f"- `{name}`" for name in report.external_dependencies()]
    return {
        "dependencies": "\n".join(edges) or "_No internal dependencies found._",
        "external_dependencies": "\n".join(externals) or "_No external dependencies found._",
    }


def update_from_report(markdown: str, report: DependencyReport) -> str:
    """Rewrite the managed dependency sections of ``markdown`` from ``report``.

    Sections without markers get their list items replaced by a managed
    block; missing sections are appended. Everything else is left untouched.
    """
    markers = MarkerManager()
    bodies = render_dependency_sections(report)
    updated = markdown if markdown.strip() else "# Code Map\n"

    for key in MANAGED_SECTIONS:
        body = bodies[key]
        if markers.has_block(updated, key):
            updated = markers.replace(updated, key, body)
            continue
        block = markers.wrap(SectionContent(name=key, title=SECTION_TITLES[key], body=body))
        updated = _replace_section_body(updated, SECTION_TITLES[key], block)

    return updated.rstrip() + "\n"


def _replace_section_body(markdown: str, title: str, block: str) -> str:
    """Put ``block`` into the ``## title`` section in place of its list items.

    Intro prose and fenced code stay above the block, ``###`` subsections
    below it. Headings inside code fences are ignored.
    """
    lines = markdown.splitlines()
    fenced = _fenced_lines(lines)
    heading = f"## {title.lower()}"
    start = next(
        (index for index, line in enumerate(lines) if not fenced[index] and line.strip().lower() == heading),
        None,
    )
    if start is None:
        return markdown.rstrip() + f"\n\n## {title}\n\n{block}\n"

    end = next(
        (
            index
            for index in range(start + 1, len(lines))
            if not fenced[index] and lines[index].startswith(("# ", "## "))
        ),
        len(lines),
    )
    body, body_fenced = lines[start + 1 : end], fenced[start + 1 : end]
    split = next(
        (index for index, line in enumerate(body) if not body_fenced[index] and line.startswith("### ")),
        len(body),
    )
    intro = _trim_blank(_drop_list_items(body[:split], body_fenced[:split]))
    rest = _trim_blank(body[split:])

    section = [""]
    if intro:
        section += intro + [""]
    section += [block, ""]
    if rest:
        section += rest + [""]
    return "\n".join(lines[: start + 1] + section + lines[end:])


def _fenced_lines(lines: Sequence[str]) -> List[bool]:
    flags: List[bool] = []
    in_code = False
    for line in lines:
        if line.strip().startswith("```"):
            flags.append(True)
            in_code = not in_code
            continue
        flags.append(in_code)
    return flags


def _drop_list_items(lines: Sequence[str], fenced: Sequence[bool]) -> List[str]:
    kept: List[str] = []
    in_item = False
    for line, is_fenced in zip(lines, fenced):
        if is_fenced:
            in_item = False
            kept.append(line)
        elif _LIST_ITEM.match(line):
            in_item = True
        elif in_item and (not line.strip() or line[:1].isspace()):
            continue
        else:
            in_item = False
            kept.append(line)
    return kept


def _trim_blank(lines: Sequence[str]) -> List[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return list(lines[start:end])




def _edge_set(adjacency: Dict[str, Sequence[str]]) -> set[tuple[str, str]]:
    return {(source, target) for source, targets in adjacency.items() for target in targets}


def check_codemap_file(path: Path, report: DependencyReport, *, root: Path | None = None) -> List[Discrepancy]:
    """Read a code map from disk and compare it with ``report``."""
    if not path.exists():
        raise FileNotFoundError(f"Code map not found: {path}")
    return compare_with_report(parse_codemap(path.read_text(encoding="utf-8")), report, root=root)


__all__ = [
    "Discrepancy",
    "check_codemap_file",
    "compare_with_report",
    "render_dependency_sections",
    "update_from_report",
]
