"""Structural checks for dependency reports received from the analysis service."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence

from ..models import DEPTH_FILE, DEPTH_FULL, DependencyReport, normalise_depth
from ..scanner import LANGUAGE_BY_SUFFIX


@dataclass
class ContractIssue:
    """Represents a single contract violation in a dependency report."""

    rule: str
    subject: str
    detail: str


class ContractError(RuntimeError):
    """Raised when a dependency report violates the contract."""

    def __init__(self, message: str, issues: Sequence[ContractIssue]) -> None:
        super().__init__(message)
        self.issues = list(issues)


def check_report(
    report: DependencyReport,
    *,
    root: Path | None = None,
    depth: str | None = None,
) -> List[ContractIssue]:
    """Return every contract violation found in ``report``.

    ``depth`` is the depth that was requested; it defaults to the depth the
    report itself declares. When ``root`` is given, file keys are also checked
    against the filesystem.
    """
    requested_depth = normalise_depth(depth or report.analysis.depth)
    issues: List[ContractIssue] = []

    base = _analysis_base(report.analysis.path, root)
    for key in report.files:
        issue = _check_membership(key, report.analysis.path, base, root)
        if issue is not None:
            issues.append(issue)

    for key, entry in report.files.items():
        overlap = sorted(set(entry.imports.external) & set(entry.imports.internal))
        if overlap:
            issues.append(
                ContractIssue(
                    rule="imports-disjoint",
                    subject=key,
                    detail=f"imports listed as both external and internal: {', '.join(overlap)}",
                )
            )

    if requested_depth == DEPTH_FILE:
        for key, entry in report.files.items():
            if entry.has_call_data():
                issues.append(
                    ContractIssue(
                        rule="depth-file-no-calls",
                        subject=key,
                        detail="call data present although depth 'file' was requested",
                    )
                )
        if report.dependency_graph.function_level:
            issues.append(
                ContractIssue(
                    rule="depth-file-no-calls",
                    subject="dependency_graph.function_level",
                    detail="function-level graph populated although depth 'file' was requested",
                )
            )

    if requested_depth == DEPTH_FULL:
        for key, entry in report.files.items():
            if entry.exports.functions and not entry.functions:
                issues.append(
                    ContractIssue(
                        rule="depth-full-functions",
                        subject=key,
                        detail="file exports functions but carries no function-level data",
                    )
                )

    if report.analysis.files_analyzed != len(report.files):
        issues.append(
            ContractIssue(
                rule="files-analyzed-count",
                subject="analysis.files_analyzed",
                detail=(
                    f"declares {report.analysis.files_analyzed} files but "
                    f"{len(report.files)} file entries are present"
                ),
            )
        )

    for node, targets in report.dependency_graph.file_level.items():
        if node not in report.files:
            issues.append(
                ContractIssue(
                    rule="graph-known-files",
                    subject=f"dependency_graph.file_level[{node}]",
                    detail="adjacency key is not an analysed file",
                )
            )
        # Module identifiers (src.utils) are not file keys; only path-shaped targets must resolve.
        unknown = sorted(
            {target for target in targets if _looks_like_path(target) and target not in report.files}
        )
        if unknown:
            issues.append(
                ContractIssue(
                    rule="graph-known-files",
                    subject=f"dependency_graph.file_level[{node}]",
                    detail=f"edges point at files that were not analysed: {', '.join(unknown)}",
                )
            )

    return issues


def validate_report(
    report: DependencyReport,
    *,
    root: Path | None = None,
    depth: str | None = None,
) -> DependencyReport:
    """Return ``report`` unchanged or raise :class:`ContractError`."""
    issues = check_report(report, root=root, depth=depth)
    if issues:
        summary = "; ".join(f"{issue.subject}: {issue.detail}" for issue in issues[:3])
        if len(issues) > 3:
            summary += f" (+{len(issues) - 3} more)"
        raise ContractError(f"Dependency report violates the contract: {summary}", issues)
    return report


def _analysis_base(analysis_path: str, root: Path | None) -> Optional[Path]:
    candidate = Path(analysis_path)
    if candidate.is_absolute():
        return candidate
    if root is None:
        return None
    return root / candidate


def _check_membership(
    key: str, analysis_path: str, base: Optional[Path], root: Path | None
) -> Optional[ContractIssue]:
    pure = PurePosixPath(key.replace("\\", "/"))
    if pure.is_absolute():
        analysis = PurePosixPath(analysis_path.replace("\\", "/"))
        if not analysis.is_absolute() or not _is_within(pure, analysis):
            return ContractIssue(
                rule="files-under-path",
                subject=key,
                detail=f"file is outside the analysed path '{analysis_path}'",
            )
    else:
        normalised = posixpath.normpath(pure.as_posix())
        if normalised == ".." or normalised.startswith("../"):
            return ContractIssue(
                rule="files-under-path",
                subject=key,
                detail=f"file escapes the analysed path '{analysis_path}'",
            )

    if root is None or base is None:
        return None

    resolved_base = base.resolve()
    for candidate in _candidates(key, base, root):
        if not candidate.is_file():
            continue
        resolved = candidate.resolve()
        if resolved_base == resolved or resolved_base in resolved.parents:
            return None
    return ContractIssue(
        rule="files-under-path",
        subject=key,
        detail="file does not exist under the analysed path",
    )


def _looks_like_path(target: str) -> bool:
    if "/" in target or "\\" in target:
        return True
    return PurePosixPath(target).suffix.lower() in LANGUAGE_BY_SUFFIX


def _candidates(key: str, base: Path, root: Path) -> List[Path]:
    path = Path(key)
    if path.is_absolute():
        return [path]
    return [base / path, root / path]


def _is_within(path: PurePosixPath, parent: PurePosixPath) -> bool:
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


__all__ = ["ContractError", "ContractIssue", "check_report", "validate_report"]
